"""Tests for abstract graph construction."""

import pytest

from process_layout.core.diagram_model import InMemoryDiagram
from process_layout.layout.constants import (
    CONTAINER_PADDING,
    DEFAULT_CONTAINER_HEIGHT,
    DEFAULT_CONTAINER_WIDTH,
    PARTICIPANT_PADDING,
    PARTICIPANT_WITH_LANES_PADDING,
)
from process_layout.layout.graph_builder import (
    build_container_graph,
    count_graph,
    detect_back_edges,
    is_boundary_proxy,
    layout_parent_id,
)
from process_layout.models.diagram import ElementType
from tests.fixtures.diagrams import association, collaboration, flow, message, node


def _ids(items):
    return [item.id for item in items]


class TestNodeSelection:
    """Test which diagram nodes become solver nodes."""

    def test_excludes_markers_decorations_and_lanes(self):
        diagram = InMemoryDiagram(
            nodes=[
                node("pool", ElementType.PARTICIPANT),
                node("lane", ElementType.LANE, parent_id="pool"),
                node("task", parent_id="pool"),
                node("timer", ElementType.BOUNDARY_EVENT, parent_id="pool", host_id="task"),
                node("note", ElementType.TEXT_ANNOTATION, parent_id="pool"),
                node("store", ElementType.DATA_STORE),
            ],
            connections=[association("a1", "note", "task")],
        )
        children, edges = build_container_graph(diagram, None)

        assert _ids(children) == ["pool"]
        assert _ids(children[0].children) == ["task"]
        assert edges == []
        assert children[0].edges == []

    def test_default_sizes(self):
        diagram = InMemoryDiagram(nodes=[
            node("sized", width=120, height=90),
            node("unsized", width=0, height=0),
            node("pool", ElementType.PARTICIPANT, width=0, height=0),
            node("inner", parent_id="pool"),
        ])
        children, _ = build_container_graph(diagram, None)
        by_id = {child.id: child for child in children}

        assert (by_id["sized"].width, by_id["sized"].height) == (120, 90)
        assert (by_id["unsized"].width, by_id["unsized"].height) == (100, 80)
        assert (by_id["pool"].width, by_id["pool"].height) == (
            DEFAULT_CONTAINER_WIDTH, DEFAULT_CONTAINER_HEIGHT,
        )

    def test_empty_container_is_a_leaf(self):
        """A sub-process without includable children is laid out as one box."""
        diagram = InMemoryDiagram(nodes=[node("sub", ElementType.SUB_PROCESS)])
        children, _ = build_container_graph(diagram, None)
        assert children[0].children == []
        assert (children[0].width, children[0].height) == (350, 200)

    def test_group_members_join_group_container(self):
        """Groups are frames: their members are laid out at the group's level."""
        diagram = InMemoryDiagram(
            nodes=[
                node("start", ElementType.START_EVENT),
                node("frame", ElementType.GROUP),
                node("grouped", parent_id="frame"),
            ],
            connections=[flow("f1", "start", "grouped")],
        )
        children, edges = build_container_graph(diagram, None)

        assert _ids(children) == ["start", "grouped"]
        assert _ids(edges) == ["f1"]
        assert layout_parent_id(diagram, diagram.get_node("grouped")) is None


class TestCompoundNodes:
    """Test container expansion into nested sub-graphs."""

    def test_padding_by_container_type(self):
        diagram = InMemoryDiagram(nodes=[
            node("pool", ElementType.PARTICIPANT),
            node("sub", ElementType.SUB_PROCESS, parent_id="pool"),
            node("inner", parent_id="sub"),
        ])
        children, _ = build_container_graph(diagram, None)
        pool = children[0]
        sub = pool.children[0]

        assert pool.layout_options["elk.padding"] == PARTICIPANT_PADDING
        assert sub.layout_options["elk.padding"] == CONTAINER_PADDING
        assert _ids(sub.children) == ["inner"]

    def test_pool_with_lanes_clears_lane_labels(self):
        diagram = InMemoryDiagram(nodes=[
            node("pool", ElementType.PARTICIPANT),
            node("lane", ElementType.LANE, parent_id="pool", flow_node_refs=["inner"]),
            node("inner", parent_id="pool"),
        ])
        children, _ = build_container_graph(diagram, None)
        assert children[0].layout_options["elk.padding"] == PARTICIPANT_WITH_LANES_PADDING
        assert _ids(children[0].children) == ["inner"]

    def test_compound_inherits_run_options(self):
        diagram = InMemoryDiagram(nodes=[
            node("pool", ElementType.PARTICIPANT),
            node("inner", parent_id="pool"),
        ])
        children, _ = build_container_graph(
            diagram, None, layout_options={"elk.direction": "DOWN"}
        )
        assert children[0].layout_options == {
            "elk.direction": "DOWN",
            "elk.padding": PARTICIPANT_PADDING,
        }

    def test_scoped_build_starts_at_container(self):
        children, edges = build_container_graph(collaboration(), "pool_1")
        assert _ids(children) == ["start_1", "task_1", "end_1", "escalate"]
        assert "f1" in _ids(edges)


class TestEdges:
    """Test edge selection and priority tagging."""

    def test_cross_container_edges_excluded(self):
        children, edges = build_container_graph(collaboration(), None)
        all_edge_ids = set(_ids(edges))
        for child in children:
            all_edge_ids.update(edge.id for edge in child.iter_edges())
        assert "m1" not in all_edge_ids
        assert {"f1", "f2"} <= all_edge_ids

    def test_boundary_proxy_edge(self):
        children, _ = build_container_graph(collaboration(), None)
        pool_edges = {edge.id: edge for edge in children[0].edges}

        proxy = pool_edges["__boundary_proxy__f3"]
        assert (proxy.source_id, proxy.target_id) == ("task_1", "escalate")
        assert is_boundary_proxy(proxy.id)
        assert "f3" not in pool_edges

    def test_proxy_edges_disabled(self):
        children, _ = build_container_graph(collaboration(), None, proxy_edges=False)
        assert not any(is_boundary_proxy(edge.id) for edge in children[0].edges)

    def test_back_edge_gets_low_priority(self):
        diagram = InMemoryDiagram(
            nodes=[node("s", ElementType.START_EVENT), node("a"), node("b"), node("c")],
            connections=[
                flow("s_a", "s", "a"),
                flow("a_b", "a", "b"),
                flow("b_c", "b", "c"),
                flow("c_a", "c", "a"),
            ],
        )
        _, edges = build_container_graph(diagram, None)
        priorities = {edge.id: edge.layout_options.get("elk.priority") for edge in edges}

        assert priorities == {"s_a": None, "a_b": None, "b_c": None, "c_a": "0"}

    def test_back_edge_priority_disabled(self):
        diagram = InMemoryDiagram(
            nodes=[node("a"), node("b")],
            connections=[flow("a_b", "a", "b"), flow("b_a", "b", "a")],
        )
        _, edges = build_container_graph(diagram, None, back_edge_priority=False)
        assert all("elk.priority" not in edge.layout_options for edge in edges)

    def test_message_flow_within_container_is_an_edge(self):
        diagram = InMemoryDiagram(
            nodes=[node("a"), node("b")],
            connections=[message("m", "a", "b")],
        )
        _, edges = build_container_graph(diagram, None)
        assert _ids(edges) == ["m"]


class TestDetectBackEdges:
    """Test depth-first loop-back detection."""

    def test_acyclic(self):
        conns = [flow("a_b", "a", "b"), flow("b_c", "b", "c"), flow("a_c", "a", "c")]
        assert detect_back_edges(conns, ["a", "b", "c"]) == set()

    def test_self_loop(self):
        assert detect_back_edges([flow("a_a", "a", "a")], ["a"]) == {"a_a"}

    def test_pure_cycle_searched_in_model_order(self):
        conns = [flow("a_b", "a", "b"), flow("b_a", "b", "a")]
        assert detect_back_edges(conns, ["a", "b"]) == {"b_a"}

    def test_parallel_edges_kept_apart(self):
        conns = [flow("x1", "a", "b"), flow("x2", "a", "b"), flow("back", "b", "a")]
        assert detect_back_edges(conns, ["a", "b"]) == {"back"}

    def test_no_edges(self):
        assert detect_back_edges([], ["a"]) == set()


class TestCountGraph:
    def test_counts_all_levels(self):
        children, edges = build_container_graph(collaboration(), None)
        # pools + (4 + 1) inner nodes; f1, f2 and the proxy edge
        assert count_graph(children, edges) == (7, 3)


@pytest.mark.parametrize("edge_id,expected", [
    ("__boundary_proxy__f1", True),
    ("f1", False),
])
def test_is_boundary_proxy(edge_id, expected):
    assert is_boundary_proxy(edge_id) is expected
