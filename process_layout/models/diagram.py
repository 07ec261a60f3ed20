"""Diagram element schemas: nodes, connections and geometry value types.

A diagram is an arena of nodes and connections addressed by id. Nodes carry
absolute geometry (top-left origin, px) and an explicit parent/child
adjacency; containers form a forest.

Every node has an ``ElementType`` (the process-notation type) from which its
layout ``NodeKind`` is derived:

- ``simple``: tasks, events, gateways
- ``container``: pools (participants) and sub-processes
- ``boundary_marker``: boundary events attached to a host node
- ``secondary_decoration``: text annotations, data objects/stores, groups
- ``lane`` / ``structural``: never laid out
"""

import logging
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

Point = Tuple[float, float]


class ElementType(str, Enum):
    """Process-notation element types understood by the layout engine."""

    START_EVENT = "bpmn:StartEvent"
    END_EVENT = "bpmn:EndEvent"
    INTERMEDIATE_CATCH_EVENT = "bpmn:IntermediateCatchEvent"
    INTERMEDIATE_THROW_EVENT = "bpmn:IntermediateThrowEvent"
    TASK = "bpmn:Task"
    USER_TASK = "bpmn:UserTask"
    SERVICE_TASK = "bpmn:ServiceTask"
    SCRIPT_TASK = "bpmn:ScriptTask"
    CALL_ACTIVITY = "bpmn:CallActivity"
    SUB_PROCESS = "bpmn:SubProcess"
    EXCLUSIVE_GATEWAY = "bpmn:ExclusiveGateway"
    PARALLEL_GATEWAY = "bpmn:ParallelGateway"
    INCLUSIVE_GATEWAY = "bpmn:InclusiveGateway"
    EVENT_BASED_GATEWAY = "bpmn:EventBasedGateway"
    PARTICIPANT = "bpmn:Participant"
    LANE = "bpmn:Lane"
    LANE_SET = "bpmn:LaneSet"
    BOUNDARY_EVENT = "bpmn:BoundaryEvent"
    TEXT_ANNOTATION = "bpmn:TextAnnotation"
    DATA_OBJECT = "bpmn:DataObjectReference"
    DATA_STORE = "bpmn:DataStoreReference"
    GROUP = "bpmn:Group"
    PROCESS = "bpmn:Process"
    COLLABORATION = "bpmn:Collaboration"
    DIAGRAM_PLANE = "bpmndi:BPMNPlane"
    LABEL = "label"


class NodeKind(str, Enum):
    """Layout role of a node."""

    SIMPLE = "simple"
    CONTAINER = "container"
    BOUNDARY_MARKER = "boundary_marker"
    SECONDARY_DECORATION = "secondary_decoration"
    LANE = "lane"
    STRUCTURAL = "structural"


class ConnectionKind(str, Enum):
    """Connection types."""

    SEQUENCE = "sequence"
    MESSAGE = "message"
    ASSOCIATION = "association"


_KIND_BY_TYPE = {
    ElementType.SUB_PROCESS: NodeKind.CONTAINER,
    ElementType.PARTICIPANT: NodeKind.CONTAINER,
    ElementType.BOUNDARY_EVENT: NodeKind.BOUNDARY_MARKER,
    ElementType.TEXT_ANNOTATION: NodeKind.SECONDARY_DECORATION,
    ElementType.DATA_OBJECT: NodeKind.SECONDARY_DECORATION,
    ElementType.DATA_STORE: NodeKind.SECONDARY_DECORATION,
    ElementType.GROUP: NodeKind.SECONDARY_DECORATION,
    ElementType.LANE: NodeKind.LANE,
    ElementType.LANE_SET: NodeKind.LANE,
    ElementType.PROCESS: NodeKind.STRUCTURAL,
    ElementType.COLLABORATION: NodeKind.STRUCTURAL,
    ElementType.DIAGRAM_PLANE: NodeKind.STRUCTURAL,
    ElementType.LABEL: NodeKind.STRUCTURAL,
}

GATEWAY_TYPES = frozenset({
    ElementType.EXCLUSIVE_GATEWAY,
    ElementType.PARALLEL_GATEWAY,
    ElementType.INCLUSIVE_GATEWAY,
    ElementType.EVENT_BASED_GATEWAY,
})


def kind_of(element_type: ElementType) -> NodeKind:
    """Map an element type to its layout kind."""
    return _KIND_BY_TYPE.get(element_type, NodeKind.SIMPLE)


class Bounds(BaseModel):
    """Axis-aligned rectangle.

    Attributes:
        min_x: Minimum x coordinate
        max_x: Maximum x coordinate
        min_y: Minimum y coordinate
        max_y: Maximum y coordinate
    """

    min_x: float = Field(..., description="Minimum x coordinate")
    max_x: float = Field(..., description="Maximum x coordinate")
    min_y: float = Field(..., description="Minimum y coordinate")
    max_y: float = Field(..., description="Maximum y coordinate")

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> Point:
        return (
            (self.min_x + self.max_x) / 2,
            (self.min_y + self.max_y) / 2
        )

    @classmethod
    def from_rect(cls, x: float, y: float, width: float, height: float) -> "Bounds":
        return cls(min_x=x, max_x=x + width, min_y=y, max_y=y + height)

    @classmethod
    def from_nodes(cls, nodes: Iterable["DiagramNode"]) -> "Bounds":
        """Compute the bounding box enclosing all nodes.

        Raises:
            ValueError: If nodes is empty
        """
        nodes = list(nodes)
        if not nodes:
            raise ValueError("Cannot compute bounds from empty node list")

        return cls(
            min_x=min(n.x for n in nodes),
            max_x=max(n.x + n.width for n in nodes),
            min_y=min(n.y for n in nodes),
            max_y=max(n.y + n.height for n in nodes),
        )

    def expanded(self, margin: float) -> "Bounds":
        """Return a copy grown by margin on every side."""
        return Bounds(
            min_x=self.min_x - margin,
            max_x=self.max_x + margin,
            min_y=self.min_y - margin,
            max_y=self.max_y + margin,
        )

    def contains_point(self, point: Point) -> bool:
        x, y = point
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def contains(self, other: "Bounds", tolerance: float = 0.0) -> bool:
        """Whether other lies fully inside this rectangle."""
        return (
            other.min_x >= self.min_x - tolerance
            and other.max_x <= self.max_x + tolerance
            and other.min_y >= self.min_y - tolerance
            and other.max_y <= self.max_y + tolerance
        )

    def overlaps(self, other: "Bounds") -> bool:
        """Strict overlap test (touching edges do not overlap)."""
        return (
            self.min_x < other.max_x
            and self.max_x > other.min_x
            and self.min_y < other.max_y
            and self.max_y > other.min_y
        )


class DiagramNode(BaseModel):
    """A rectangular diagram element in absolute coordinates."""

    id: str = Field(..., description="Element ID")
    type: ElementType = Field(..., description="Process-notation element type")
    x: float = Field(default=0.0, description="Left edge (absolute)")
    y: float = Field(default=0.0, description="Top edge (absolute)")
    width: float = Field(default=0.0, description="Width (0 = unknown)")
    height: float = Field(default=0.0, description="Height (0 = unknown)")
    parent_id: Optional[str] = Field(default=None, description="Containing element ID")
    host_id: Optional[str] = Field(default=None, description="Host of a boundary marker")
    child_ids: List[str] = Field(default_factory=list, description="Direct children")
    name: Optional[str] = Field(default=None, description="Label text")
    default_flow_id: Optional[str] = Field(
        default=None, description="Designated default outgoing connection (gateways)"
    )
    flow_node_refs: List[str] = Field(
        default_factory=list, description="Flow nodes assigned to a lane"
    )

    @property
    def kind(self) -> NodeKind:
        return kind_of(self.type)

    @property
    def is_primary(self) -> bool:
        """Whether the node takes part in the solver graph as a flow node."""
        return self.kind in (NodeKind.SIMPLE, NodeKind.CONTAINER)

    @property
    def is_gateway(self) -> bool:
        return self.type in GATEWAY_TYPES

    @property
    def center(self) -> Point:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def bounds(self) -> Bounds:
        return Bounds.from_rect(self.x, self.y, self.width, self.height)


class Connection(BaseModel):
    """A directed connection between two nodes."""

    id: str = Field(..., description="Connection ID")
    kind: ConnectionKind = Field(default=ConnectionKind.SEQUENCE, description="Connection type")
    source_id: str = Field(..., description="Source node ID")
    target_id: str = Field(..., description="Target node ID")
    waypoints: List[Point] = Field(default_factory=list, description="Ordered route points")
    name: Optional[str] = Field(default=None, description="Label / condition name")
    parent_id: Optional[str] = Field(default=None, description="Containing element ID")

    @property
    def is_degenerate(self) -> bool:
        """Fewer than two distinct coordinates in the waypoint list."""
        return len(set(self.waypoints)) < 2

    def segments(self) -> List[Tuple[Point, Point]]:
        """Consecutive waypoint pairs."""
        return list(zip(self.waypoints, self.waypoints[1:]))


__all__ = [
    "Point",
    "ElementType",
    "NodeKind",
    "ConnectionKind",
    "GATEWAY_TYPES",
    "kind_of",
    "Bounds",
    "DiagramNode",
    "Connection",
]
