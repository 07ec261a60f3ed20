"""Layout solver registry.

Available solvers:
- elk: ELK via elkjs (layered, orthogonal routing)
"""

from process_layout.layout.engines.base import LayoutSolver
from process_layout.layout.engines.elk import ELKLayoutEngine

# Solver registry
ENGINES = {
    "elk": ELKLayoutEngine,
}


def get_engine(name: str) -> type:
    """Get layout solver class by name.

    Args:
        name: Solver name ('elk')

    Returns:
        Layout solver class

    Raises:
        ValueError: If solver not found
    """
    if name not in ENGINES:
        raise ValueError(f"Unknown layout engine: {name}. Available: {list(ENGINES.keys())}")
    return ENGINES[name]


__all__ = [
    "LayoutSolver",
    "ELKLayoutEngine",
    "ENGINES",
    "get_engine",
]
