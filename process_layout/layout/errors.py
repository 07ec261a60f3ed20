"""Exceptions raised by the layout pipeline.

User-input errors (scope/subset references) are raised before the diagram
is touched. Solver failures abort the run; mutations already applied are
not rolled back, but the solver is always called before the first one.
"""


class LayoutError(Exception):
    """Base class for layout pipeline errors."""
    pass


class ScopeNotFoundError(LayoutError, ValueError):
    """Raised when the scope element id does not resolve to a node."""

    def __init__(self, scope_id: str):
        self.scope_id = scope_id
        super().__init__(f"Scope element not found: {scope_id}")


class InvalidScopeError(LayoutError, ValueError):
    """Raised when the scope element is not a pool or sub-process."""

    def __init__(self, scope_id: str, element_type: str):
        self.scope_id = scope_id
        self.element_type = element_type
        super().__init__(
            f"Scope element must be a Participant or SubProcess, got: {element_type}"
        )


class ElementNotFoundError(LayoutError, ValueError):
    """Raised when subset layout ids do not resolve to nodes."""

    def __init__(self, element_ids):
        self.element_ids = list(element_ids)
        super().__init__(f"Elements not found: {', '.join(self.element_ids)}")


class SolverError(LayoutError, RuntimeError):
    """Raised when the layout solver fails or times out."""
    pass


__all__ = [
    "LayoutError",
    "ScopeNotFoundError",
    "InvalidScopeError",
    "ElementNotFoundError",
    "SolverError",
]
