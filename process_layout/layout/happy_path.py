"""Main-path detection.

The happy path is the chain of sequence flows walked from each entry node,
choosing one outgoing flow per node:

1. the node's designated default flow, when set
2. at a gateway with several outgoing flows, the first flow whose label is
   a positive outcome ("Yes", "Approved", "OK", ...)
3. otherwise the first outgoing flow in model order

A walk stops at a node without outgoing flows or at a node any walk has
already visited. Happy-path edges are given high straightness/direction
priority so the solver keeps the main path on one row.
"""

import logging
import re
from typing import Iterable, List, Optional, Set

import networkx as nx

from process_layout.core.diagram_model import DiagramModel
from process_layout.layout.constants import ELK_HIGH_PRIORITY, POSITIVE_LABEL_PATTERN
from process_layout.models.diagram import ConnectionKind, DiagramNode, ElementType
from process_layout.models.layout_graph import AbstractGraphEdge, AbstractGraphNode

logger = logging.getLogger(__name__)

_POSITIVE_LABELS = re.compile(POSITIVE_LABEL_PATTERN, re.IGNORECASE)


def build_flow_graph(model: DiagramModel) -> nx.MultiDiGraph:
    """Sequence-flow graph keyed by connection id, in model order."""
    graph = nx.MultiDiGraph()
    for node in model.nodes():
        graph.add_node(node.id, node=node)
    for conn in model.connections():
        if conn.kind != ConnectionKind.SEQUENCE:
            continue
        if conn.source_id not in graph or conn.target_id not in graph:
            continue
        graph.add_edge(conn.source_id, conn.target_id, key=conn.id, name=conn.name)
    return graph


def _entry_nodes(graph: nx.MultiDiGraph) -> List[str]:
    starts = [
        node_id for node_id, data in graph.nodes(data=True)
        if data["node"].type == ElementType.START_EVENT
    ]
    if starts:
        return starts
    return [
        node_id for node_id, data in graph.nodes(data=True)
        if data["node"].is_primary and graph.in_degree(node_id) == 0
        and graph.out_degree(node_id) > 0
    ]


def _choose_flow(node: DiagramNode, outgoing: list) -> Optional[tuple]:
    if not outgoing:
        return None

    if node.default_flow_id:
        for edge in outgoing:
            if edge[2] == node.default_flow_id:
                return edge

    if node.is_gateway and len(outgoing) > 1:
        for edge in outgoing:
            name = (edge[3].get("name") or "").strip()
            if name and _POSITIVE_LABELS.match(name):
                return edge

    return outgoing[0]


def detect_happy_path(model: DiagramModel) -> Set[str]:
    """Return the connection ids forming the happy path."""
    graph = build_flow_graph(model)
    happy: Set[str] = set()
    visited: Set[str] = set()

    for start in _entry_nodes(graph):
        current: Optional[str] = start
        while current is not None and current not in visited:
            visited.add(current)
            outgoing = list(graph.out_edges(current, keys=True, data=True))
            chosen = _choose_flow(graph.nodes[current]["node"], outgoing)
            if chosen is None:
                break
            _, target, conn_id, _ = chosen
            happy.add(conn_id)
            current = target

    logger.debug(f"Happy path: {len(happy)} edge(s)")
    return happy


def _iter_edges(children: Iterable[AbstractGraphNode], edges: Iterable[AbstractGraphEdge]):
    yield from edges
    for child in children:
        yield from child.iter_edges()


def tag_happy_path_edges(
    children: List[AbstractGraphNode],
    edges: List[AbstractGraphEdge],
    happy_edge_ids: Set[str],
) -> int:
    """Give happy-path edges high straightness/direction priority.

    Returns:
        Number of solver edges tagged
    """
    tagged = 0
    for edge in _iter_edges(children, edges):
        if edge.id in happy_edge_ids:
            edge.layout_options["elk.priority.straightness"] = ELK_HIGH_PRIORITY
            edge.layout_options["elk.priority.direction"] = ELK_HIGH_PRIORITY
            tagged += 1
    return tagged


__all__ = [
    "build_flow_graph",
    "detect_happy_path",
    "tag_happy_path_edges",
]
