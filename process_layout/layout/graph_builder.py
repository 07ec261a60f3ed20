"""Abstract graph construction from the diagram containment tree.

A container (diagram root, expanded pool, expanded sub-process) contributes
its includable direct children as solver nodes. Children that contain
includable nodes themselves become compound nodes with a nested sub-graph.

Excluded from the solver graph:
    - boundary markers (they follow their host)
    - secondary decorations (placed after layout)
    - lanes and structural elements (never laid out)

Only edges whose endpoints are both graph children of the same container are
included; cross-container flows are routed after layout.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

import networkx as nx

from process_layout.core.diagram_model import DiagramModel
from process_layout.layout.constants import (
    BOUNDARY_PROXY_PREFIX,
    CONTAINER_PADDING,
    DEFAULT_CONTAINER_HEIGHT,
    DEFAULT_CONTAINER_WIDTH,
    DEFAULT_TASK_HEIGHT,
    DEFAULT_TASK_WIDTH,
    ELK_BACK_EDGE_PRIORITY,
    ELK_LAYOUT_OPTIONS,
    PARTICIPANT_PADDING,
    PARTICIPANT_WITH_LANES_PADDING,
)
from process_layout.models.diagram import (
    Connection,
    ConnectionKind,
    DiagramNode,
    ElementType,
    NodeKind,
)
from process_layout.models.layout_graph import AbstractGraphEdge, AbstractGraphNode

logger = logging.getLogger(__name__)


def is_includable(node: DiagramNode) -> bool:
    """Whether a node takes part in the solver graph."""
    return node.is_primary


def is_boundary_proxy(edge_id: str) -> bool:
    return edge_id.startswith(BOUNDARY_PROXY_PREFIX)


def is_group(node: DiagramNode) -> bool:
    return node.type == ElementType.GROUP


def layout_parent_id(model: DiagramModel, node: DiagramNode) -> Optional[str]:
    """Nearest ancestor that is not a group.

    Groups are visual frames: their members are laid out as children of
    the group's own container.
    """
    parent_id = node.parent_id
    while parent_id is not None:
        parent = model.find_node(parent_id)
        if parent is None or not is_group(parent):
            break
        parent_id = parent.parent_id
    return parent_id


def detect_back_edges(connections: Iterable[Connection], node_ids: Iterable[str]) -> Set[str]:
    """Find loop-back connections with a depth-first search.

    The search starts from source nodes (no incoming connection among those
    given) so the DFS tree follows the forward flow; an edge to a node still
    on the DFS stack closes a cycle and is a back edge. Remaining unvisited
    nodes (pure cycles, disconnected fragments) are searched afterwards in
    model order.

    Args:
        connections: Connections between the given nodes
        node_ids: Node ids in model order

    Returns:
        Set of back-edge connection ids
    """
    graph = nx.MultiDiGraph()
    graph.add_nodes_from(node_ids)
    for conn in connections:
        graph.add_edge(conn.source_id, conn.target_id, key=conn.id)

    back_edges: Set[str] = set()
    if graph.number_of_edges() == 0:
        return back_edges

    # 0 = unvisited, 1 = on the DFS stack, 2 = done
    state: Dict[str, int] = {node: 0 for node in graph.nodes}

    def visit(root: str) -> None:
        state[root] = 1
        stack = [(root, iter(list(graph.out_edges(root, keys=True))))]
        while stack:
            node, neighbors = stack[-1]
            advanced = False
            for _, target, conn_id in neighbors:
                if state[target] == 1:
                    back_edges.add(conn_id)
                elif state[target] == 0:
                    state[target] = 1
                    stack.append((target, iter(list(graph.out_edges(target, keys=True)))))
                    advanced = True
                    break
            if not advanced:
                state[node] = 2
                stack.pop()

    sources = [node for node in graph.nodes if graph.in_degree(node) == 0]
    for node in sources + list(graph.nodes):
        if state[node] == 0:
            visit(node)

    return back_edges


def _leaf_size(node: DiagramNode) -> Tuple[float, float]:
    return (node.width or DEFAULT_TASK_WIDTH, node.height or DEFAULT_TASK_HEIGHT)


def build_container_graph(
    model: DiagramModel,
    container_id: Optional[str],
    layout_options: Optional[Dict[str, str]] = None,
    proxy_edges: bool = True,
    back_edge_priority: bool = True,
) -> Tuple[List[AbstractGraphNode], List[AbstractGraphEdge]]:
    """Build solver children and internal edges for one container.

    Args:
        model: Diagram to read (never mutated)
        container_id: Container node id, or None for the diagram root
        layout_options: Options copied onto every compound node (plus its
            padding); defaults to the layered preset
        proxy_edges: Represent flows leaving boundary markers by an edge
            from the marker's host
        back_edge_priority: Tag loop-back edges with the lowest priority

    Returns:
        Tuple of (children, edges)
    """
    compound_options = dict(layout_options or ELK_LAYOUT_OPTIONS)
    nodes = model.nodes()
    connections = model.connections()

    by_parent: Dict[Optional[str], List[DiagramNode]] = {}
    for node in nodes:
        if is_group(node):
            continue
        by_parent.setdefault(layout_parent_id(model, node), []).append(node)

    def build(parent_id: Optional[str]) -> Tuple[List[AbstractGraphNode], List[AbstractGraphEdge]]:
        children: List[AbstractGraphNode] = []
        node_ids: List[str] = []

        for shape in by_parent.get(parent_id, []):
            if not is_includable(shape):
                continue
            node_ids.append(shape.id)

            has_children = any(is_includable(c) for c in by_parent.get(shape.id, []))
            if has_children:
                nested_children, nested_edges = build(shape.id)
                if shape.type != ElementType.PARTICIPANT:
                    padding = CONTAINER_PADDING
                elif any(c.kind == NodeKind.LANE for c in by_parent.get(shape.id, [])):
                    padding = PARTICIPANT_WITH_LANES_PADDING
                else:
                    padding = PARTICIPANT_PADDING
                children.append(
                    AbstractGraphNode(
                        id=shape.id,
                        width=shape.width or DEFAULT_CONTAINER_WIDTH,
                        height=shape.height or DEFAULT_CONTAINER_HEIGHT,
                        children=nested_children,
                        edges=nested_edges,
                        layout_options={**compound_options, "elk.padding": padding},
                    )
                )
            else:
                width, height = _leaf_size(shape)
                children.append(AbstractGraphNode(id=shape.id, width=width, height=height))

        members = set(node_ids)
        internal = [
            conn for conn in connections
            if conn.source_id in members and conn.target_id in members
        ]
        back_edges = detect_back_edges(internal, node_ids) if back_edge_priority else set()

        edges: List[AbstractGraphEdge] = []
        for conn in internal:
            edge = AbstractGraphEdge(
                id=conn.id,
                sources=[conn.source_id],
                targets=[conn.target_id],
            )
            if conn.id in back_edges:
                edge.layout_options["elk.priority"] = ELK_BACK_EDGE_PRIORITY
            edges.append(edge)

        if proxy_edges:
            edges.extend(_boundary_proxy_edges(model, members, connections))

        if back_edges:
            logger.debug(f"Container {parent_id or 'root'}: back edges {sorted(back_edges)}")
        return children, edges

    return build(container_id)


def _boundary_proxy_edges(
    model: DiagramModel,
    members: Set[str],
    connections: List[Connection],
) -> List[AbstractGraphEdge]:
    """Synthetic host -> target edges standing in for marker-sourced flows."""
    proxies: List[AbstractGraphEdge] = []
    for conn in connections:
        if conn.kind != ConnectionKind.SEQUENCE or conn.target_id not in members:
            continue
        source = model.find_node(conn.source_id)
        if source is None or source.kind != NodeKind.BOUNDARY_MARKER:
            continue
        if source.host_id not in members:
            continue
        proxies.append(
            AbstractGraphEdge(
                id=f"{BOUNDARY_PROXY_PREFIX}{conn.id}",
                sources=[source.host_id],
                targets=[conn.target_id],
            )
        )
    return proxies


def count_graph(children: List[AbstractGraphNode], edges: List[AbstractGraphEdge]) -> Tuple[int, int]:
    """Total (nodes, edges) across all nesting levels."""
    node_count = 0
    edge_count = len(edges)
    for child in children:
        node_count += 1
        nested_nodes, nested_edges = count_graph(child.children, child.edges)
        node_count += nested_nodes
        edge_count += nested_edges
    return node_count, edge_count


__all__ = [
    "is_includable",
    "is_boundary_proxy",
    "is_group",
    "layout_parent_id",
    "detect_back_edges",
    "build_container_graph",
    "count_graph",
]
