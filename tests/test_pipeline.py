"""End-to-end tests for the layout pipeline with a deterministic solver."""

from itertools import combinations

import pytest

from process_layout.config.settings import FEATURE_FLAGS
from process_layout.core.diagram_model import InMemoryDiagram
from process_layout.layout.errors import (
    ElementNotFoundError,
    InvalidScopeError,
    ScopeNotFoundError,
    SolverError,
)
from process_layout.layout.pipeline import (
    layout_diagram,
    layout_subset,
    resolve_layout_options,
)
from process_layout.models.diagram import ElementType
from process_layout.models.layout_graph import LayoutOptions
from tests.fixtures.diagrams import (
    association,
    collaboration,
    disconnected,
    flow,
    fork_join,
    gateway_with_default,
    linear_chain,
    node,
    scattered_chain,
    single_lane_pool,
    two_lane_pool,
)
from tests.fixtures.solvers import FailingSolver

FULL_STEPS = [
    "build_graph",
    "happy_path",
    "solver",
    "apply_positions",
    "resize_compound_nodes",
    "reposition_lanes",
    "fix_stranded_markers",
    "align_ranks",
    "place_decorations",
    "route_connections",
    "repair_endpoints",
    "snap_orthogonal",
    "detect_crossings",
]


def _positions(diagram):
    return {n.id: (n.x, n.y, n.width, n.height) for n in diagram.nodes()}


def _center_y(diagram, node_id):
    return diagram.get_node(node_id).center[1]


def _assert_orthogonal(diagram, connection_ids=None):
    for conn in diagram.connections():
        if connection_ids is not None and conn.id not in connection_ids:
            continue
        assert len(conn.waypoints) >= 2, f"{conn.id} has no route"
        for (x0, y0), (x1, y1) in conn.segments():
            assert x0 == x1 or y0 == y1, f"{conn.id} has a diagonal segment"


def _assert_contained(diagram):
    for container in diagram.nodes():
        if container.type not in (ElementType.PARTICIPANT, ElementType.SUB_PROCESS):
            continue
        for child_id in container.child_ids:
            child = diagram.get_node(child_id)
            assert container.bounds.contains(child.bounds), f"{child_id} outside {container.id}"


class TestResolveLayoutOptions:
    """Test per-call option merging."""

    def test_defaults(self, settings):
        options, effective = resolve_layout_options(LayoutOptions(), settings)
        assert options["elk.algorithm"] == "layered"
        assert options["elk.direction"] == "RIGHT"
        assert options["elk.spacing.nodeNode"] == "50"
        assert options["elk.layered.spacing.nodeNodeBetweenLayers"] == "60"
        assert options["elk.layered.crossingMinimization.thoroughness"] == "30"
        assert effective == settings

    def test_direction(self, settings):
        options, _ = resolve_layout_options(LayoutOptions(direction="DOWN"), settings)
        assert options["elk.direction"] == "DOWN"

    def test_compactness_preset(self, settings):
        options, effective = resolve_layout_options(LayoutOptions(compactness="compact"), settings)
        assert options["elk.spacing.nodeNode"] == "40"
        assert options["elk.layered.spacing.nodeNodeBetweenLayers"] == "50"
        assert effective.node_spacing == 40
        assert effective.layer_threshold == 20

    def test_explicit_spacing_beats_preset(self, settings):
        options, _ = resolve_layout_options(
            LayoutOptions(compactness="spacious", node_spacing=70), settings
        )
        assert options["elk.spacing.nodeNode"] == "70"
        assert options["elk.layered.spacing.nodeNodeBetweenLayers"] == "100"

    def test_fractional_spacing(self, settings):
        options, _ = resolve_layout_options(LayoutOptions(node_spacing=12.5), settings)
        assert options["elk.spacing.nodeNode"] == "12.5"

    def test_settings_not_mutated(self, settings):
        resolve_layout_options(LayoutOptions(node_spacing=99), settings)
        assert settings.node_spacing == 50


class TestLayoutScenarios:
    """Test full-diagram layout on reference diagrams."""

    @pytest.mark.asyncio
    async def test_linear_chain(self, stub_solver, settings):
        """Centers share one row, x follows flow order, gaps are positive."""
        diagram = linear_chain()
        result = await layout_diagram(diagram, stub_solver, settings=settings)

        order = ["start", "task_a", "task_b", "end"]
        nodes = [diagram.get_node(node_id) for node_id in order]
        assert len({n.center[1] for n in nodes}) == 1
        for left, right in zip(nodes, nodes[1:]):
            assert right.x - left.right > 0
        assert nodes[0].x == settings.origin_offset[0] + 12

        assert result.to_dict() == {"crossingFlows": 0, "crossingFlowPairs": []}
        assert result.happy_path_edge_ids == ["f1", "f2", "f3"]
        assert result.node_count == 4
        assert result.edge_count == 3
        assert [entry.step for entry in result.steps] == FULL_STEPS
        _assert_orthogonal(diagram)

    @pytest.mark.asyncio
    async def test_straight_routes_touch_borders(self, stub_solver, settings):
        diagram = linear_chain()
        await layout_diagram(diagram, stub_solver, settings=settings)

        start = diagram.get_node("start")
        task_a = diagram.get_node("task_a")
        assert diagram.get_connection("f1").waypoints == [
            (start.right, start.center[1]),
            (task_a.x, task_a.center[1]),
        ]

    @pytest.mark.asyncio
    async def test_fork_join(self, stub_solver, settings):
        diagram = fork_join()
        await layout_diagram(diagram, stub_solver, settings=settings)

        split = diagram.get_node("split")
        task_a = diagram.get_node("task_a")
        task_b = diagram.get_node("task_b")
        join = diagram.get_node("join")
        assert task_a.center[1] != task_b.center[1]
        assert split.x < task_a.x and split.x < task_b.x
        assert join.x > task_a.x and join.x > task_b.x
        _assert_orthogonal(diagram)

    @pytest.mark.asyncio
    async def test_default_flow_stays_on_main_row(self, stub_solver, settings):
        diagram = gateway_with_default()
        result = await layout_diagram(diagram, stub_solver, settings=settings)

        assert result.happy_path_edge_ids == ["f1", "f_no"]
        assert _center_y(diagram, "reject") == _center_y(diagram, "check")
        assert _center_y(diagram, "approve") != _center_y(diagram, "check")

        solver_edges = {edge.id: edge for edge in stub_solver.calls[0].edges}
        assert solver_edges["f_no"].layout_options["elk.priority.straightness"] == "10"
        assert "elk.priority.straightness" not in solver_edges["f_yes"].layout_options

    @pytest.mark.asyncio
    async def test_happy_path_disabled(self, stub_solver, settings):
        diagram = gateway_with_default()
        result = await layout_diagram(
            diagram, stub_solver, LayoutOptions(preserve_happy_path=False), settings
        )

        assert result.happy_path_edge_ids == []
        assert "happy_path" not in [entry.step for entry in result.steps]
        assert _center_y(diagram, "approve") == _center_y(diagram, "check")

    @pytest.mark.asyncio
    async def test_disconnected_input(self, stub_solver, settings):
        diagram = disconnected()
        result = await layout_diagram(diagram, stub_solver, settings=settings)

        nodes = diagram.nodes()
        for first, second in combinations(nodes, 2):
            assert not first.bounds.overlaps(second.bounds)
        assert result.crossing_flow_pairs == []
        assert result.to_dict()["crossingFlowPairs"] == []

    @pytest.mark.asyncio
    async def test_collaboration(self, stub_solver, settings):
        """Pools are resized around their content; every route is orthogonal."""
        diagram = collaboration()
        await layout_diagram(diagram, stub_solver, settings=settings)

        _assert_contained(diagram)
        _assert_orthogonal(diagram)

        timer = diagram.get_node("timer")
        task = diagram.get_node("task_1")
        assert task.bounds.expanded(settings.marker_proximity_tolerance).contains_point(timer.center)

        pool_1 = diagram.get_node("pool_1")
        assert (pool_1.width, pool_1.height) != (600, 250)

    @pytest.mark.asyncio
    async def test_options_reach_solver(self, stub_solver, settings):
        diagram = collaboration()
        await layout_diagram(
            diagram, stub_solver, LayoutOptions(direction="DOWN", layer_spacing=90), settings
        )

        graph = stub_solver.calls[0]
        assert graph.id == "root"
        assert graph.layout_options["elk.direction"] == "DOWN"
        assert graph.layout_options["elk.layered.spacing.nodeNodeBetweenLayers"] == "90"
        pool = graph.find("pool_1")
        assert pool.layout_options["elk.direction"] == "DOWN"
        assert "elk.padding" in pool.layout_options

    @pytest.mark.asyncio
    async def test_proxy_edges_follow_flag(self, stub_solver, settings, monkeypatch):
        monkeypatch.setitem(FEATURE_FLAGS, "boundary_proxy_edges", False)
        await layout_diagram(collaboration(), stub_solver, settings=settings)
        edge_ids = [edge.id for edge in stub_solver.calls[0].iter_edges()]
        assert not any(edge_id.startswith("__boundary_proxy__") for edge_id in edge_ids)

    @pytest.mark.asyncio
    async def test_decorations_placed(self, stub_solver, settings):
        diagram = fork_join()
        diagram.add_node(node("note", ElementType.TEXT_ANNOTATION))
        diagram.add_connection(association("a1", "note", "task_a"))
        await layout_diagram(diagram, stub_solver, settings=settings)

        note = diagram.get_node("note")
        task_a = diagram.get_node("task_a")
        assert note.bottom + settings.decoration_above_offset == task_a.y
        assert note.center[0] == task_a.center[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("build", [fork_join, collaboration])
    async def test_idempotent(self, stub_solver, settings, build):
        """A second run changes nothing beyond a few pixels."""
        diagram = build()
        diagram.add_node(node("note", ElementType.TEXT_ANNOTATION))
        await layout_diagram(diagram, stub_solver, settings=settings)
        positions = _positions(diagram)
        routes = {c.id: list(c.waypoints) for c in diagram.connections()}

        await layout_diagram(diagram, stub_solver, settings=settings)

        for node_id, (x, y, width, height) in _positions(diagram).items():
            px, py, pw, ph = positions[node_id]
            assert abs(x - px) <= 2 and abs(y - py) <= 2
            assert abs(width - pw) <= 2 and abs(height - ph) <= 2
        for conn in diagram.connections():
            before = routes[conn.id]
            assert len(conn.waypoints) == len(before)
            for (x, y), (bx, by) in zip(conn.waypoints, before):
                assert abs(x - bx) <= 2 and abs(y - by) <= 2

    @pytest.mark.asyncio
    async def test_empty_diagram(self, stub_solver, settings):
        result = await layout_diagram(InMemoryDiagram(), stub_solver, settings=settings)
        assert result.to_dict() == {}
        assert stub_solver.calls == []


class TestScopedLayout:
    """Test layout restricted to one pool or sub-process."""

    @pytest.mark.asyncio
    async def test_only_scope_moves(self, stub_solver, settings):
        diagram = collaboration()
        pool_2_before = _positions(diagram)["pool_2"]
        task_2_before = _positions(diagram)["task_2"]

        result = await layout_diagram(
            diagram, stub_solver, LayoutOptions(scope_element_id="pool_1"), settings
        )

        assert result.node_count == 4
        assert _positions(diagram)["pool_2"] == pool_2_before
        assert _positions(diagram)["task_2"] == task_2_before
        pool_1 = diagram.get_node("pool_1")
        assert (pool_1.x, pool_1.y) == (0, 0)
        for child_id in ("start_1", "task_1", "end_1", "escalate"):
            assert pool_1.bounds.contains(diagram.get_node(child_id).bounds)
        _assert_orthogonal(diagram, {"f1", "f2", "f3", "m1"})

    @pytest.mark.asyncio
    async def test_unknown_scope(self, stub_solver, settings):
        diagram = collaboration()
        before = _positions(diagram)
        with pytest.raises(ScopeNotFoundError, match="Scope element not found: ghost"):
            await layout_diagram(
                diagram, stub_solver, LayoutOptions(scope_element_id="ghost"), settings
            )
        assert _positions(diagram) == before
        assert stub_solver.calls == []

    @pytest.mark.asyncio
    async def test_scope_must_be_container(self, stub_solver, settings):
        diagram = collaboration()
        before = _positions(diagram)
        with pytest.raises(InvalidScopeError, match="bpmn:Task"):
            await layout_diagram(
                diagram, stub_solver, LayoutOptions(scope_element_id="task_1"), settings
            )
        assert _positions(diagram) == before
        assert stub_solver.calls == []

    @pytest.mark.asyncio
    async def test_empty_scope(self, stub_solver, settings):
        diagram = InMemoryDiagram(nodes=[node("sub", ElementType.SUB_PROCESS)])
        result = await layout_diagram(
            diagram, stub_solver, LayoutOptions(scope_element_id="sub"), settings
        )
        assert result.to_dict() == {}
        assert stub_solver.calls == []


class TestSubsetLayout:
    """Test layout of a set of nodes."""

    @pytest.mark.asyncio
    async def test_subset(self, stub_solver, settings):
        diagram = scattered_chain()
        result = await layout_subset(diagram, stub_solver, ["b", "c"], settings=settings)

        b = diagram.get_node("b")
        c = diagram.get_node("c")
        assert (b.x, b.y) == (312, 412)
        assert b.center[1] == c.center[1]
        assert b.right < c.x
        assert (diagram.get_node("a").x, diagram.get_node("a").y) == (0, 100)
        assert (diagram.get_node("d").x, diagram.get_node("d").y) == (1000, 100)
        assert (diagram.get_node("note").x, diagram.get_node("note").y) == (700, 300)

        assert result.node_count == 3
        assert result.edge_count == 1
        assert result.to_dict() == {"crossingFlows": 0, "crossingFlowPairs": []}
        _assert_orthogonal(diagram, {"ab", "bc", "cd"})
        assert diagram.get_connection("ab").waypoints[-1] == (b.x, b.center[1])

    @pytest.mark.asyncio
    async def test_linked_decorations_pinned(self, stub_solver, settings):
        diagram = scattered_chain()
        await layout_subset(diagram, stub_solver, ["b", "c"], settings=settings)

        graph = stub_solver.calls[0]
        pinned = graph.find("note")
        assert pinned.layout_options["org.eclipse.elk.noLayout"] == "true"
        assert pinned.layout_options["elk.position"] == "(400, -100)"
        assert graph.layout_options["elk.layered.crossingMinimization.semiInteractive"] == "true"
        assert [edge.id for edge in graph.edges] == ["bc"]

    @pytest.mark.asyncio
    async def test_shared_container_offset(self, stub_solver, settings):
        diagram = collaboration()
        await layout_subset(diagram, stub_solver, ["task_1", "end_1"], settings=settings)

        task = diagram.get_node("task_1")
        assert (task.x, task.y) == (32, 62)
        assert diagram.get_node("end_1").x > task.right

    @pytest.mark.asyncio
    async def test_marker_flow_follows_moved_host(self, stub_solver, settings):
        diagram = InMemoryDiagram(
            nodes=[
                node("a", x=600, y=460),
                node("timer", ElementType.BOUNDARY_EVENT, x=632, y=522, host_id="a"),
                node("b", x=0, y=0),
                node("x", x=700, y=600),
            ],
            connections=[
                flow("ab", "a", "b"),
                flow("escape", "timer", "x", waypoints=[(650, 558), (650, 640), (700, 640)]),
            ],
        )
        await layout_subset(diagram, stub_solver, ["a", "b"], settings=settings)

        timer = diagram.get_node("timer")
        assert (timer.x, timer.y) == (44, 74)
        waypoints = diagram.get_connection("escape").waypoints
        assert waypoints == [(62, 110), (62, 640), (700, 640)]
        assert waypoints[0] == (timer.center[0], timer.bottom)

    @pytest.mark.asyncio
    async def test_backward_neighbor_rerouted(self, stub_solver, settings):
        diagram = InMemoryDiagram(
            nodes=[node("b", x=900, y=400), node("c", x=0, y=0), node("p", x=100, y=300)],
            connections=[
                flow("bc", "b", "c"),
                flow("bp", "b", "p", waypoints=[(1000, 440), (1050, 440), (1050, 340), (200, 340)]),
            ],
        )
        await layout_subset(diagram, stub_solver, ["b", "c"], settings=settings)

        b = diagram.get_node("b")
        p = diagram.get_node("p")
        assert (b.x, b.y) == (12, 12)
        assert (p.x, p.y) == (100, 300)
        waypoints = diagram.get_connection("bp").waypoints
        assert waypoints == [(62, 92), (62, 196), (150, 196), (150, 300)]
        assert waypoints[0] == (b.center[0], b.bottom)
        assert waypoints[-1] == (p.center[0], p.y)

    @pytest.mark.asyncio
    async def test_connection_ids_ignored(self, stub_solver, settings):
        diagram = scattered_chain()
        result = await layout_subset(diagram, stub_solver, ["b", "c", "bc"], settings=settings)
        assert result.node_count == 3

    @pytest.mark.asyncio
    async def test_unknown_ids(self, stub_solver, settings):
        diagram = scattered_chain()
        before = _positions(diagram)
        with pytest.raises(ElementNotFoundError) as exc_info:
            await layout_subset(diagram, stub_solver, ["b", "ghost"], settings=settings)
        assert exc_info.value.element_ids == ["ghost"]
        assert _positions(diagram) == before
        assert stub_solver.calls == []

    @pytest.mark.asyncio
    async def test_no_shapes(self, stub_solver, settings):
        result = await layout_subset(scattered_chain(), stub_solver, ["note"], settings=settings)
        assert result.to_dict() == {}
        assert stub_solver.calls == []


class TestSolverFailures:
    """Test solver errors surface before any mutation."""

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, settings):
        diagram = linear_chain()
        before = _positions(diagram)
        solver = FailingSolver(RuntimeError("boom"))

        with pytest.raises(SolverError, match="boom") as exc_info:
            await layout_diagram(diagram, solver, settings=settings)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert solver.calls == 1
        assert _positions(diagram) == before

    @pytest.mark.asyncio
    async def test_solver_error_passes_through(self, settings):
        error = SolverError("worker died")
        with pytest.raises(SolverError) as exc_info:
            await layout_subset(scattered_chain(), FailingSolver(error), ["b", "c"], settings=settings)
        assert exc_info.value is error


def _assert_attached(diagram, connection_ids):
    for conn_id in connection_ids:
        conn = diagram.get_connection(conn_id)
        source = diagram.get_node(conn.source_id)
        target = diagram.get_node(conn.target_id)
        assert source.bounds.contains_point(conn.waypoints[0]), f"{conn_id} left its source"
        assert target.bounds.contains_point(conn.waypoints[-1]), f"{conn_id} left its target"


class TestLanes:
    """Test lanes tiled over their pool after layout."""

    @pytest.mark.asyncio
    async def test_lane_contains_its_tasks(self, stub_solver, settings):
        diagram = single_lane_pool()
        result = await layout_diagram(diagram, stub_solver, settings=settings)

        pool = diagram.get_node("pool")
        lane = diagram.get_node("lane")
        for i in range(1, 7):
            task = diagram.get_node(f"t{i}")
            assert lane.bounds.contains(task.bounds), f"t{i} outside its lane"
        assert (lane.x, lane.y) == (pool.x + settings.lane_label_band, pool.y)
        assert (lane.right, lane.bottom) == (pool.right, pool.bottom)
        assert lane.height == settings.min_lane_height
        _assert_contained(diagram)
        _assert_orthogonal(diagram)
        _assert_attached(diagram, [f"f{i}" for i in range(1, 6)])

        lane_step = next(entry for entry in result.steps if entry.step == "reposition_lanes")
        assert lane_step.notes == ["1 pool(s) tiled"]

    @pytest.mark.asyncio
    async def test_lanes_tile_the_pool(self, stub_solver, settings):
        diagram = two_lane_pool()
        await layout_diagram(diagram, stub_solver, settings=settings)

        pool = diagram.get_node("pool")
        upper = diagram.get_node("upper")
        lower = diagram.get_node("lower")
        assert upper.y == pool.y
        assert upper.bottom == lower.y
        assert lower.bottom == pool.bottom
        for lane_id, members in (("upper", ["start", "task_a"]), ("lower", ["task_b", "end"])):
            lane = diagram.get_node(lane_id)
            for member in members:
                assert lane.bounds.contains(diagram.get_node(member).bounds), f"{member} outside {lane_id}"

        assert _center_y(diagram, "start") == _center_y(diagram, "task_a")
        assert _center_y(diagram, "task_b") == _center_y(diagram, "end")
        assert _center_y(diagram, "task_b") > _center_y(diagram, "task_a")
        _assert_contained(diagram)
        _assert_orthogonal(diagram)
        _assert_attached(diagram, ["f1", "f2", "f3"])

        task_a = diagram.get_node("task_a")
        task_b = diagram.get_node("task_b")
        assert diagram.get_connection("f2").waypoints[0] == (task_a.right, task_a.center[1])
        assert diagram.get_connection("f2").waypoints[-1] == (task_b.x, task_b.center[1])

    @pytest.mark.asyncio
    async def test_pool_without_lanes_untouched_by_lane_pass(self, stub_solver, settings):
        result = await layout_diagram(collaboration(), stub_solver, settings=settings)
        lane_step = next(entry for entry in result.steps if entry.step == "reposition_lanes")
        assert lane_step.notes == []
        assert lane_step.moved_count == 0
