"""Data models for diagrams and solver graphs."""

from .diagram import (
    GATEWAY_TYPES,
    Bounds,
    Connection,
    ConnectionKind,
    DiagramNode,
    ElementType,
    NodeKind,
    Point,
    kind_of,
)
from .layout_graph import (
    AbstractGraphEdge,
    AbstractGraphNode,
    Direction,
    EdgeSection,
    LayoutOptions,
    LayoutResult,
    SectionRoute,
    StepRecord,
)

__all__ = [
    # Diagram elements
    "Point",
    "ElementType",
    "NodeKind",
    "ConnectionKind",
    "GATEWAY_TYPES",
    "kind_of",
    "Bounds",
    "DiagramNode",
    "Connection",
    # Solver graph
    "Direction",
    "EdgeSection",
    "AbstractGraphEdge",
    "AbstractGraphNode",
    "SectionRoute",
    # Run options / results
    "LayoutOptions",
    "StepRecord",
    "LayoutResult",
]
