"""Automatic layout for process diagrams.

Usage:
    from process_layout import ELKLayoutEngine, InMemoryDiagram, layout_diagram

    result = await layout_diagram(diagram, ELKLayoutEngine())
"""

from process_layout.core.diagram_model import DiagramModel, InMemoryDiagram
from process_layout.layout import (
    ELKLayoutEngine,
    ElementNotFoundError,
    InvalidScopeError,
    LayoutError,
    LayoutSolver,
    ScopeNotFoundError,
    SolverError,
    get_engine,
    layout_diagram,
    layout_subset,
)
from process_layout.models import (
    Connection,
    ConnectionKind,
    DiagramNode,
    ElementType,
    LayoutOptions,
    LayoutResult,
)

__version__ = "0.1.0"

__all__ = [
    "DiagramModel",
    "InMemoryDiagram",
    "LayoutSolver",
    "ELKLayoutEngine",
    "get_engine",
    "layout_diagram",
    "layout_subset",
    "LayoutError",
    "ScopeNotFoundError",
    "InvalidScopeError",
    "ElementNotFoundError",
    "SolverError",
    "DiagramNode",
    "Connection",
    "ConnectionKind",
    "ElementType",
    "LayoutOptions",
    "LayoutResult",
]
