"""Layout module for automatic process-diagram positioning.

This module provides:
- Layout solver abstraction (LayoutSolver protocol)
- ELK integration via elkjs (layered, orthogonal routing)
- The post-layout pipeline: positions, containers, lanes, markers,
  alignment, decorations, routing, endpoint repair and crossing diagnostics

Architecture:
    - Abstract graph built from the containment tree, solved once
    - Parent-relative solver coordinates applied as absolute moves
    - Persistent Node.js worker for ELK
"""

from process_layout.layout.engines import ENGINES, get_engine
from process_layout.layout.engines.base import LayoutSolver
from process_layout.layout.engines.elk import ELKLayoutEngine
from process_layout.layout.errors import (
    ElementNotFoundError,
    InvalidScopeError,
    LayoutError,
    ScopeNotFoundError,
    SolverError,
)
from process_layout.layout.pipeline import (
    layout_diagram,
    layout_subset,
    resolve_layout_options,
)

__all__ = [
    "LayoutSolver",
    "ELKLayoutEngine",
    "ENGINES",
    "get_engine",
    "LayoutError",
    "ScopeNotFoundError",
    "InvalidScopeError",
    "ElementNotFoundError",
    "SolverError",
    "layout_diagram",
    "layout_subset",
    "resolve_layout_options",
]
