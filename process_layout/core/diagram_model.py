"""Diagram Model - the geometry collaborator the layout pipeline mutates.

The pipeline reads topology (parents, hosts, sources/targets) and writes
geometry only: it never creates or deletes nodes or connections.

``DiagramModel`` is the contract. ``InMemoryDiagram`` is a thread-safe
id-addressed arena implementing it, used by the tests and by callers that
do not bring their own model.

Usage:
    from process_layout.core.diagram_model import InMemoryDiagram

    diagram = InMemoryDiagram()
    diagram.add_node(DiagramNode(id="start", type=ElementType.START_EVENT, width=36, height=36))
    diagram.add_node(DiagramNode(id="task", type=ElementType.TASK, width=100, height=80))
    diagram.add_connection(Connection(id="f1", source_id="start", target_id="task"))
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence, Set

from process_layout.models.diagram import (
    Bounds,
    Connection,
    ConnectionKind,
    DiagramNode,
    NodeKind,
    Point,
)

logger = logging.getLogger(__name__)

# Clearance of a self-loop route around its node (px)
SELF_LOOP_MARGIN = 35


class NodeNotFoundError(Exception):
    """Raised when a node id is not in the diagram."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node {node_id} not found")


class ConnectionNotFoundError(Exception):
    """Raised when a connection id is not in the diagram."""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(f"Connection {connection_id} not found")


class DiagramModel(ABC):
    """Abstract diagram model consumed by the layout pipeline.

    Implementations return live node objects from the mutation primitives so
    that callers observe any adjustment the model applied (e.g. markers
    following their host).
    """

    @abstractmethod
    def nodes(self) -> List[DiagramNode]:
        """All nodes, in model order."""
        pass

    @abstractmethod
    def connections(self) -> List[Connection]:
        """All connections, in model order."""
        pass

    @abstractmethod
    def get_node(self, node_id: str) -> DiagramNode:
        """Resolve a node.

        Raises:
            NodeNotFoundError: If the id is unknown
        """
        pass

    @abstractmethod
    def get_connection(self, connection_id: str) -> Connection:
        """Resolve a connection.

        Raises:
            ConnectionNotFoundError: If the id is unknown
        """
        pass

    @abstractmethod
    def move_node(self, node_id: str, dx: float, dy: float) -> DiagramNode:
        """Translate a node (and everything that follows it); return the live node."""
        pass

    @abstractmethod
    def resize_node(self, node_id: str, bounds: Bounds) -> DiagramNode:
        """Set absolute bounds of a node; return the live node."""
        pass

    @abstractmethod
    def update_waypoints(self, connection_id: str, points: Sequence[Point]) -> Connection:
        """Replace a connection's waypoint list."""
        pass

    @abstractmethod
    def layout_connection(self, connection_id: str) -> Connection:
        """Route a connection with the model's own boundary-aware routing."""
        pass

    def find_node(self, node_id: str) -> Optional[DiagramNode]:
        """Resolve a node, or None if it does not exist."""
        try:
            return self.get_node(node_id)
        except NodeNotFoundError:
            return None

    def children_of(self, parent_id: Optional[str]) -> List[DiagramNode]:
        """Direct children of a container (``None`` = diagram root)."""
        return [n for n in self.nodes() if n.parent_id == parent_id]

    def markers_of(self, host_id: str) -> List[DiagramNode]:
        """Boundary markers attached to a host."""
        return [
            n for n in self.nodes()
            if n.kind == NodeKind.BOUNDARY_MARKER and n.host_id == host_id
        ]


def _dedupe(points: Iterable[Point]) -> List[Point]:
    result: List[Point] = []
    for point in points:
        if not result or result[-1] != point:
            result.append(point)
    return result


class InMemoryDiagram(DiagramModel):
    """Thread-safe in-memory diagram.

    Nodes must be added parent-first; the parent/child adjacency is kept
    consistent by the diagram itself, so containers always form a forest.
    """

    def __init__(
        self,
        nodes: Optional[Iterable[DiagramNode]] = None,
        connections: Optional[Iterable[Connection]] = None,
    ):
        self._nodes: Dict[str, DiagramNode] = {}
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.RLock()

        for node in nodes or []:
            self.add_node(node)
        for connection in connections or []:
            self.add_connection(connection)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_node(self, node: DiagramNode) -> DiagramNode:
        """Insert a node.

        ``child_ids`` is maintained by the diagram: the node is registered
        with its parent, and any ids supplied on the node are ignored.

        Raises:
            ValueError: On duplicate ids, unknown parents/hosts, or a marker
                without a host
        """
        with self._lock:
            if node.id in self._nodes or node.id in self._connections:
                raise ValueError(f"Duplicate element id: {node.id}")

            if node.parent_id is not None:
                if node.parent_id == node.id:
                    raise ValueError(f"Node {node.id} cannot contain itself")
                if node.parent_id not in self._nodes:
                    raise ValueError(
                        f"Parent {node.parent_id} of node {node.id} must be added first"
                    )

            if node.kind == NodeKind.BOUNDARY_MARKER:
                if node.host_id is None:
                    raise ValueError(f"Boundary marker {node.id} has no host")
                host = self._nodes.get(node.host_id)
                if host is None:
                    raise ValueError(f"Host {node.host_id} of marker {node.id} must be added first")
                if host.kind == NodeKind.BOUNDARY_MARKER:
                    raise ValueError(f"Marker {node.id} cannot be hosted by marker {host.id}")

            stored = node.model_copy(deep=True)
            stored.child_ids = []
            self._nodes[stored.id] = stored
            if stored.parent_id is not None:
                self._nodes[stored.parent_id].child_ids.append(stored.id)

            logger.debug(f"Added node {stored.id} ({stored.type.value})")
            return stored

    def add_connection(self, connection: Connection) -> Connection:
        """Insert a connection.

        Raises:
            ValueError: On duplicate ids or unknown endpoints
        """
        with self._lock:
            if connection.id in self._connections or connection.id in self._nodes:
                raise ValueError(f"Duplicate element id: {connection.id}")
            for endpoint in (connection.source_id, connection.target_id):
                if endpoint not in self._nodes:
                    raise ValueError(
                        f"Connection {connection.id} references unknown node {endpoint}"
                    )

            stored = connection.model_copy(deep=True)
            self._connections[stored.id] = stored
            return stored

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def nodes(self) -> List[DiagramNode]:
        with self._lock:
            return list(self._nodes.values())

    def connections(self) -> List[Connection]:
        with self._lock:
            return list(self._connections.values())

    def get_node(self, node_id: str) -> DiagramNode:
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                raise NodeNotFoundError(node_id)
            return node

    def get_connection(self, connection_id: str) -> Connection:
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                raise ConnectionNotFoundError(connection_id)
            return connection

    def children_of(self, parent_id: Optional[str]) -> List[DiagramNode]:
        with self._lock:
            if parent_id is None:
                return [n for n in self._nodes.values() if n.parent_id is None]
            return [self._nodes[cid] for cid in self.get_node(parent_id).child_ids]

    def descendant_ids(self, node_id: str) -> List[str]:
        """All nodes nested (transitively) inside a container."""
        with self._lock:
            result: List[str] = []
            stack = list(reversed(self.get_node(node_id).child_ids))
            while stack:
                current = stack.pop()
                result.append(current)
                stack.extend(reversed(self._nodes[current].child_ids))
            return result

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def move_node(self, node_id: str, dx: float, dy: float) -> DiagramNode:
        """Translate a node, its descendants and every marker they host."""
        with self._lock:
            node = self.get_node(node_id)

            moving: List[str] = [node_id] + self.descendant_ids(node_id)
            moving_set: Set[str] = set(moving)
            for candidate in self._nodes.values():
                if (
                    candidate.kind == NodeKind.BOUNDARY_MARKER
                    and candidate.host_id in moving_set
                    and candidate.id not in moving_set
                ):
                    moving.append(candidate.id)
                    moving_set.add(candidate.id)

            for element_id in moving:
                element = self._nodes[element_id]
                element.x += dx
                element.y += dy

            logger.debug(f"Moved {node_id} by ({dx:.1f}, {dy:.1f}); {len(moving)} element(s)")
            return node

    def resize_node(self, node_id: str, bounds: Bounds) -> DiagramNode:
        with self._lock:
            node = self.get_node(node_id)
            node.x = bounds.min_x
            node.y = bounds.min_y
            node.width = bounds.width
            node.height = bounds.height
            logger.debug(f"Resized {node_id} to {bounds.width:.0f}x{bounds.height:.0f}")
            return node

    def update_waypoints(self, connection_id: str, points: Sequence[Point]) -> Connection:
        with self._lock:
            connection = self.get_connection(connection_id)
            connection.waypoints = [(float(x), float(y)) for x, y in points]
            return connection

    def layout_connection(self, connection_id: str) -> Connection:
        """Orthogonal routing that knows about markers and message flows.

        - From a boundary marker: leave through the host-facing side of the
          marker vertically, then turn horizontally into the target.
        - Message flows: vertical-first route between facing top/bottom edges.
        - Self-loops: out of the right edge, under the node, in through the bottom.
        - Otherwise: horizontal-first Z route from source right to target left.
        """
        with self._lock:
            connection = self.get_connection(connection_id)
            source = self.get_node(connection.source_id)
            target = self.get_node(connection.target_id)

            if source.id == target.id:
                points = self._self_loop_route(source)
            elif source.kind == NodeKind.BOUNDARY_MARKER:
                points = self._marker_route(source, target)
            elif connection.kind == ConnectionKind.MESSAGE:
                points = self._message_route(source, target)
            else:
                points = self._z_route(source, target)

            return self.update_waypoints(connection_id, _dedupe(points))

    @staticmethod
    def _marker_route(source: DiagramNode, target: DiagramNode) -> List[Point]:
        scx, scy = source.center
        tcx, tcy = target.center
        below = tcy >= scy
        start_y = source.bottom if below else source.y
        end_x = target.x if tcx >= scx else target.right
        if abs(tcx - scx) < 1:
            end_y = target.y if below else target.bottom
            return [(round(scx), round(start_y)), (round(scx), round(end_y))]
        return [
            (round(scx), round(start_y)),
            (round(scx), round(tcy)),
            (round(end_x), round(tcy)),
        ]

    @staticmethod
    def _self_loop_route(node: DiagramNode) -> List[Point]:
        cx, cy = node.center
        out_x = round(node.right + SELF_LOOP_MARGIN)
        low = round(node.bottom + SELF_LOOP_MARGIN)
        return [
            (round(node.right), round(cy)),
            (out_x, round(cy)),
            (out_x, low),
            (round(cx), low),
            (round(cx), round(node.bottom)),
        ]

    @staticmethod
    def _message_route(source: DiagramNode, target: DiagramNode) -> List[Point]:
        scx, scy = source.center
        tcx, tcy = target.center
        if tcy >= scy:
            start = (round(scx), round(source.bottom))
            end = (round(tcx), round(target.y))
        else:
            start = (round(scx), round(source.y))
            end = (round(tcx), round(target.bottom))
        if start[0] == end[0]:
            return [start, end]
        mid_y = round((start[1] + end[1]) / 2)
        return [start, (start[0], mid_y), (end[0], mid_y), end]

    @staticmethod
    def _z_route(source: DiagramNode, target: DiagramNode) -> List[Point]:
        _, scy = source.center
        _, tcy = target.center
        start = (round(source.right), round(scy))
        end = (round(target.x), round(tcy))
        if start[1] == end[1]:
            return [start, end]
        mid_x = round((start[0] + end[0]) / 2)
        return [start, (mid_x, start[1]), (mid_x, end[1]), end]


__all__ = [
    "NodeNotFoundError",
    "ConnectionNotFoundError",
    "DiagramModel",
    "InMemoryDiagram",
]
