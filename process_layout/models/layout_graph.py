"""Solver-facing graph schemas and layout run results.

The abstract graph mirrors the diagram's containment tree: each expanded
container becomes a compound node with nested children and the edges
between them. The same schema carries the solver output, with positions
(relative to the parent compound node), container sizes and edge sections
filled in.

Coordinates follow the solver's convention: top-left origin, px, relative
to the parent compound node.
"""

import logging
from typing import Any, Dict, Iterator, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from process_layout.models.diagram import Point

logger = logging.getLogger(__name__)

Direction = Literal["RIGHT", "DOWN", "LEFT", "UP"]


class EdgeSection(BaseModel):
    """A segment of a solver edge route.

    Each section has a start point, end point, and optional bend points,
    relative to the compound node that owns the edge.
    """

    id: Optional[str] = Field(default=None, description="Section ID (solver may omit)")
    start_point: Point = Field(..., description="Start point (x, y)")
    end_point: Point = Field(..., description="End point (x, y)")
    bend_points: List[Point] = Field(
        default_factory=list, description="Bend points for orthogonal routing"
    )

    def get_all_points(self) -> List[Point]:
        """Get all points in order: start -> bends -> end."""
        return [self.start_point] + self.bend_points + [self.end_point]


class AbstractGraphEdge(BaseModel):
    """Solver edge. ``id`` mirrors the diagram connection id."""

    id: str = Field(..., description="Edge ID")
    sources: List[str] = Field(..., description="Source node IDs (one in practice)")
    targets: List[str] = Field(..., description="Target node IDs (one in practice)")
    layout_options: Dict[str, str] = Field(
        default_factory=dict, description="Per-edge solver options (priority hints)"
    )
    sections: List[EdgeSection] = Field(
        default_factory=list, description="Routing computed by the solver"
    )

    @property
    def source_id(self) -> str:
        return self.sources[0]

    @property
    def target_id(self) -> str:
        return self.targets[0]


class AbstractGraphNode(BaseModel):
    """Solver node; compound when it has children."""

    id: str = Field(..., description="Node ID (mirrors the diagram node)")
    width: float = Field(default=0.0, description="Width")
    height: float = Field(default=0.0, description="Height")
    x: Optional[float] = Field(default=None, description="X relative to parent (result only)")
    y: Optional[float] = Field(default=None, description="Y relative to parent (result only)")
    children: List["AbstractGraphNode"] = Field(default_factory=list)
    edges: List[AbstractGraphEdge] = Field(default_factory=list)
    layout_options: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_compound(self) -> bool:
        return len(self.children) > 0

    def iter_nodes(self) -> Iterator["AbstractGraphNode"]:
        """Depth-first iteration over all descendants (excluding self)."""
        for child in self.children:
            yield child
            yield from child.iter_nodes()

    def iter_edges(self) -> Iterator[AbstractGraphEdge]:
        """All edges at this level and below."""
        yield from self.edges
        for child in self.children:
            yield from child.iter_edges()

    def find(self, node_id: str) -> Optional["AbstractGraphNode"]:
        for node in self.iter_nodes():
            if node.id == node_id:
                return node
        return None


AbstractGraphNode.model_rebuild()


class SectionRoute(BaseModel):
    """Solver sections for one edge plus the absolute origin of their frame."""

    sections: List[EdgeSection] = Field(default_factory=list)
    offset: Point = Field(default=(0.0, 0.0), description="Accumulated container origin")


class LayoutOptions(BaseModel):
    """Per-call overrides for a layout run."""

    direction: Optional[Direction] = Field(default=None, description="Primary flow direction")
    node_spacing: Optional[float] = Field(default=None, description="Gap between rank siblings")
    layer_spacing: Optional[float] = Field(default=None, description="Gap between ranks")
    compactness: Optional[Literal["compact", "spacious"]] = Field(
        default=None, description="Spacing preset; explicit spacing wins"
    )
    scope_element_id: Optional[str] = Field(
        default=None, description="Pool or sub-process to lay out in isolation"
    )
    preserve_happy_path: bool = Field(
        default=True, description="Bias the solver to keep the main path on one row"
    )


class StepRecord(BaseModel):
    """Timing and movement record for one pipeline step."""

    step: str
    duration_ms: float = 0.0
    notes: List[str] = Field(default_factory=list)
    moved_count: Optional[int] = None


class LayoutResult(BaseModel):
    """Outcome of a layout run.

    ``crossing_flows`` is None when the run short-circuited on an empty graph.
    """

    crossing_flows: Optional[int] = Field(default=None)
    crossing_flow_pairs: Optional[List[Tuple[str, str]]] = Field(default=None)
    node_count: int = Field(default=0, description="Nodes handed to the solver")
    edge_count: int = Field(default=0, description="Edges handed to the solver")
    happy_path_edge_ids: List[str] = Field(default_factory=list)
    steps: List[StepRecord] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.crossing_flows is None

    def to_dict(self) -> Dict[str, Any]:
        """Caller-facing diagnostic shape."""
        if self.is_empty:
            return {}
        return {
            "crossingFlows": self.crossing_flows,
            "crossingFlowPairs": [list(pair) for pair in self.crossing_flow_pairs or []],
        }


__all__ = [
    "Direction",
    "EdgeSection",
    "AbstractGraphEdge",
    "AbstractGraphNode",
    "SectionRoute",
    "LayoutOptions",
    "StepRecord",
    "LayoutResult",
]
