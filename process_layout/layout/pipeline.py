"""Layout pipeline entry points.

``layout_diagram`` lays out the whole diagram or one pool / sub-process:

1. build the abstract graph (and tag happy-path / loop-back edges)
2. run the solver
3. apply positions, resize containers, tile lanes, re-attach stranded markers
4. align same-rank rows, place decorations
5. route connections, repair endpoints left behind by the moves above,
   snap residual diagonals, report crossings

``layout_subset`` lays out an explicit set of nodes, leaving the rest of the
diagram untouched. Decorations linked to the subset are handed to the solver
as pinned nodes so routes avoid them.

Every user-input check happens before the solver runs, and the solver runs
before the first mutation.

Usage:
    from process_layout.layout import ELKLayoutEngine, layout_diagram

    result = await layout_diagram(diagram, ELKLayoutEngine())
    print(result.to_dict())   # {"crossingFlows": 0, "crossingFlowPairs": []}
"""

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from process_layout.config.settings import LayoutSettings, is_enabled, load_settings
from process_layout.core.diagram_model import DiagramModel
from process_layout.layout.alignment import align_ranks
from process_layout.layout.constants import (
    COMPACTNESS_PRESETS,
    DEFAULT_DECORATION_HEIGHT,
    DEFAULT_TASK_HEIGHT,
    DEFAULT_TASK_WIDTH,
    ELK_CROSSING_THOROUGHNESS,
    ELK_LAYOUT_OPTIONS,
    ROOT_NODE_ID,
)
from process_layout.layout.crossings import detect_crossings
from process_layout.layout.decorations import find_linked_node, place_decorations
from process_layout.layout.engines.base import LayoutSolver
from process_layout.layout.errors import (
    ElementNotFoundError,
    InvalidScopeError,
    ScopeNotFoundError,
    SolverError,
)
from process_layout.layout.graph_builder import build_container_graph, count_graph, is_group
from process_layout.layout.happy_path import detect_happy_path, tag_happy_path_edges
from process_layout.layout.lanes import reposition_lanes, save_lane_assignments
from process_layout.layout.logger import LayoutLogger, position_shifts, snapshot_positions
from process_layout.layout.positioning import (
    apply_positions,
    fix_stranded_markers,
    resize_compound_nodes,
)
from process_layout.layout.routing import (
    rebuild_neighbor_edges,
    repair_detached_connections,
    route_connections,
    snap_endpoints_to_centres,
    snap_orthogonal,
)
from process_layout.models.diagram import (
    ConnectionKind,
    DiagramNode,
    ElementType,
    NodeKind,
    Point,
)
from process_layout.models.layout_graph import (
    AbstractGraphEdge,
    AbstractGraphNode,
    LayoutOptions,
    LayoutResult,
)

logger = logging.getLogger(__name__)

SCOPE_TYPES = (ElementType.PARTICIPANT, ElementType.SUB_PROCESS)


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def resolve_layout_options(
    options: LayoutOptions,
    settings: LayoutSettings,
) -> Tuple[Dict[str, str], LayoutSettings]:
    """Merge per-call options into the solver preset.

    Compactness presets set both spacings; explicit spacing values win over
    a preset. The returned settings carry the effective spacing so the
    post-layout passes agree with what the solver was told.

    Returns:
        Tuple of (root solver options, effective settings)
    """
    layout_options = dict(ELK_LAYOUT_OPTIONS)

    if options.direction:
        layout_options["elk.direction"] = options.direction

    node_spacing = settings.node_spacing
    layer_spacing = settings.layer_spacing
    if options.compactness:
        node_spacing, layer_spacing = COMPACTNESS_PRESETS[options.compactness]
    if options.node_spacing is not None:
        node_spacing = options.node_spacing
    if options.layer_spacing is not None:
        layer_spacing = options.layer_spacing

    layout_options["elk.spacing.nodeNode"] = _fmt(node_spacing)
    layout_options["elk.layered.spacing.nodeNodeBetweenLayers"] = _fmt(layer_spacing)
    layout_options["elk.layered.crossingMinimization.thoroughness"] = ELK_CROSSING_THOROUGHNESS

    effective = settings.model_copy(
        update={"node_spacing": node_spacing, "layer_spacing": layer_spacing}
    )
    return layout_options, effective


async def _solve(
    solver: LayoutSolver,
    graph: AbstractGraphNode,
    log: LayoutLogger,
) -> AbstractGraphNode:
    with log.step("solver"):
        try:
            return await solver.layout(graph)
        except SolverError:
            raise
        except Exception as e:
            raise SolverError(f"Layout solver {solver.name} failed: {e}") from e


def _resolve_scope(model: DiagramModel, scope_id: Optional[str]) -> Optional[DiagramNode]:
    if scope_id is None:
        return None
    scope = model.find_node(scope_id)
    if scope is None:
        raise ScopeNotFoundError(scope_id)
    if scope.type not in SCOPE_TYPES:
        raise InvalidScopeError(scope_id, scope.type.value)
    return scope


def _attached_ids(model: DiagramModel, node_ids: Set[str]) -> Set[str]:
    """Markers hosted by, and decorations linked to, the given nodes."""
    attached: Set[str] = set()
    for node in model.nodes():
        if node.kind == NodeKind.BOUNDARY_MARKER and node.host_id in node_ids:
            attached.add(node.id)
        elif node.kind == NodeKind.SECONDARY_DECORATION and not is_group(node):
            anchor = find_linked_node(model, node)
            if anchor is not None and anchor.id in node_ids:
                attached.add(node.id)
    return attached


def _touching(model: DiagramModel, element_ids: Set[str]) -> Set[str]:
    return {
        c.id for c in model.connections()
        if c.source_id in element_ids or c.target_id in element_ids
    }


def _repair_endpoints(
    model: DiagramModel,
    settings: LayoutSettings,
    connection_ids: Optional[Set[str]],
    log: LayoutLogger,
) -> None:
    rebuilt = repair_detached_connections(model, settings, connection_ids)
    snapped = snap_endpoints_to_centres(model, settings, connection_ids)
    if rebuilt or snapped:
        log.note("repair_endpoints", f"{rebuilt} rebuilt, {snapped} snapped to centre")


def _result(
    report,
    log: LayoutLogger,
    node_count: int,
    edge_count: int,
    happy: Iterable[str] = (),
) -> LayoutResult:
    return LayoutResult(
        crossing_flows=report.count,
        crossing_flow_pairs=report.pairs,
        node_count=node_count,
        edge_count=edge_count,
        happy_path_edge_ids=sorted(happy),
        steps=list(log.entries),
    )


async def layout_diagram(
    model: DiagramModel,
    solver: LayoutSolver,
    options: Optional[LayoutOptions] = None,
    settings: Optional[LayoutSettings] = None,
) -> LayoutResult:
    """Lay out the whole diagram, or one pool / sub-process.

    Args:
        model: Diagram to lay out (geometry is mutated in place)
        solver: Layered layout solver
        options: Per-call overrides (direction, spacing, scope, happy path)
        settings: Tolerances and offsets; defaults to ``load_settings()``

    Returns:
        LayoutResult; empty (``to_dict() == {}``) when nothing is laid out

    Raises:
        ScopeNotFoundError: If ``scope_element_id`` does not resolve
        InvalidScopeError: If the scope is not a pool or sub-process
        SolverError: If the solver fails
    """
    options = options or LayoutOptions()
    settings = settings or load_settings()
    log = LayoutLogger("layout_diagram")

    scope = _resolve_scope(model, options.scope_element_id)
    container_id = scope.id if scope is not None else None
    origin: Point = (scope.x, scope.y) if scope is not None else settings.origin_offset

    layout_options, effective = resolve_layout_options(options, settings)

    with log.step("build_graph"):
        children, edges = build_container_graph(
            model,
            container_id,
            layout_options,
            proxy_edges=is_enabled("boundary_proxy_edges"),
            back_edge_priority=is_enabled("back_edge_priority"),
        )
    if not children:
        logger.info(f"Nothing to lay out in {container_id or 'diagram'}")
        return LayoutResult(steps=list(log.entries))

    happy: Set[str] = set()
    if options.preserve_happy_path:
        with log.step("happy_path"):
            happy = detect_happy_path(model)
            tagged = tag_happy_path_edges(children, edges, happy)
            log.note("happy_path", f"{tagged} solver edge(s) prioritised")

    node_count, edge_count = count_graph(children, edges)
    log.note("solver", f"{node_count} nodes, {edge_count} edges")
    graph = AbstractGraphNode(
        id=ROOT_NODE_ID,
        children=children,
        edges=edges,
        layout_options=layout_options,
    )
    result = await _solve(solver, graph, log)

    # Scoped runs only touch what the solver laid out
    if scope is None:
        laid_out: Optional[Set[str]] = None
        connection_ids: Optional[Set[str]] = None
    else:
        laid_out = {node.id for node in result.iter_nodes()}
        connection_ids = _touching(model, laid_out | _attached_ids(model, laid_out))

    lanes = save_lane_assignments(model, {scope.id} if scope is not None else None)

    with log.step("apply_positions", model):
        apply_positions(model, result.children, origin, effective)
    with log.step("resize_compound_nodes", model):
        resize_compound_nodes(model, result.children, effective)
    with log.step("reposition_lanes", model):
        before_lanes = snapshot_positions(model)
        tiled = reposition_lanes(
            model, lanes, effective, layout_options["elk.direction"], push_siblings=scope is None
        )
        shifts = position_shifts(model, before_lanes)
        if tiled:
            log.note("reposition_lanes", f"{tiled} pool(s) tiled")
    with log.step("fix_stranded_markers", model):
        fix_stranded_markers(model, effective, laid_out)
    with log.step("align_ranks", model):
        align_ranks(model, effective, laid_out)
    with log.step("place_decorations", model):
        place_decorations(model, effective, laid_out)
    with log.step("route_connections"):
        routed = route_connections(model, result, origin, effective, connection_ids, shifts)
        log.note("route_connections", f"{routed} from solver sections")
    with log.step("repair_endpoints"):
        _repair_endpoints(model, effective, connection_ids, log)
    with log.step("snap_orthogonal"):
        snap_orthogonal(model, effective, connection_ids)
    with log.step("detect_crossings"):
        report = detect_crossings(model, connection_ids)

    log.finish()
    logger.info(
        f"Laid out {container_id or 'diagram'}: {node_count} nodes, "
        f"{edge_count} edges, {report.count} crossing(s)"
    )
    return _result(report, log, node_count, edge_count, happy)


def _shared_container(model: DiagramModel, shapes: List[DiagramNode]) -> Optional[DiagramNode]:
    """The pool / sub-process all shapes sit in directly, if there is one."""
    if len(shapes) < 2:
        return None
    parent_ids = {shape.parent_id for shape in shapes}
    if len(parent_ids) != 1:
        return None
    (parent_id,) = parent_ids
    if parent_id is None:
        return None
    parent = model.find_node(parent_id)
    if parent is None or parent.type not in SCOPE_TYPES:
        return None
    return parent


async def layout_subset(
    model: DiagramModel,
    solver: LayoutSolver,
    element_ids: Iterable[str],
    options: Optional[LayoutOptions] = None,
    settings: Optional[LayoutSettings] = None,
) -> LayoutResult:
    """Lay out a set of nodes and their inter-connections.

    Connection ids in ``element_ids`` are accepted and ignored. When all
    nodes share one pool / sub-process, the layout is placed inside it;
    otherwise it starts at the nodes' current top-left corner.

    Raises:
        ElementNotFoundError: If any id resolves to neither a node nor a connection
        SolverError: If the solver fails
    """
    options = options or LayoutOptions()
    settings = settings or load_settings()
    log = LayoutLogger("layout_subset")

    requested = list(dict.fromkeys(element_ids))
    connection_ids_known = {c.id for c in model.connections()}
    missing = [
        element_id for element_id in requested
        if model.find_node(element_id) is None and element_id not in connection_ids_known
    ]
    if missing:
        raise ElementNotFoundError(missing)

    shapes = [
        node for node in (model.find_node(i) for i in requested)
        if node is not None and node.is_primary
    ]
    if not shapes:
        return LayoutResult(steps=list(log.entries))
    subset_ids = {shape.id for shape in shapes}

    container = _shared_container(model, shapes)
    if container is not None:
        origin: Point = (
            container.x + settings.subset_start_offset[0],
            container.y + settings.subset_start_offset[1],
        )
    else:
        origin = (min(s.x for s in shapes), min(s.y for s in shapes))

    layout_options, effective = resolve_layout_options(options, settings)
    layout_options["elk.layered.crossingMinimization.semiInteractive"] = "true"

    with log.step("build_graph"):
        children = [
            AbstractGraphNode(
                id=shape.id,
                width=shape.width or DEFAULT_TASK_WIDTH,
                height=shape.height or DEFAULT_TASK_HEIGHT,
            )
            for shape in shapes
        ]

        pinned: Set[str] = set()
        for node in model.nodes():
            if node.kind != NodeKind.SECONDARY_DECORATION or is_group(node):
                continue
            anchor = find_linked_node(model, node)
            if anchor is None or anchor.id not in subset_ids:
                continue
            pinned.add(node.id)
            children.append(
                AbstractGraphNode(
                    id=node.id,
                    width=node.width or DEFAULT_TASK_WIDTH,
                    height=node.height or DEFAULT_DECORATION_HEIGHT,
                    layout_options={
                        "elk.position": f"({_fmt(node.x - origin[0])}, {_fmt(node.y - origin[1])})",
                        "org.eclipse.elk.noLayout": "true",
                    },
                )
            )

        internal = [
            c for c in model.connections()
            if c.kind != ConnectionKind.ASSOCIATION
            and c.source_id in subset_ids and c.target_id in subset_ids
        ]
        edges = [
            AbstractGraphEdge(id=c.id, sources=[c.source_id], targets=[c.target_id])
            for c in internal
        ]
    log.note("solver", f"{len(shapes)} nodes, {len(pinned)} pinned, {len(edges)} edges")

    graph = AbstractGraphNode(
        id=ROOT_NODE_ID,
        children=children,
        edges=edges,
        layout_options=layout_options,
    )
    result = await _solve(solver, graph, log)

    internal_ids = {c.id for c in internal}
    touching = _touching(model, subset_ids | _attached_ids(model, subset_ids))

    with log.step("apply_positions", model):
        movable = [child for child in result.children if child.id not in pinned]
        apply_positions(model, movable, origin, effective)
    with log.step("fix_stranded_markers", model):
        fix_stranded_markers(model, effective, subset_ids)
    with log.step("route_connections"):
        route_connections(model, result, origin, effective, internal_ids)
    with log.step("rebuild_neighbor_edges"):
        rebuilt = rebuild_neighbor_edges(model, subset_ids, effective)
        log.note("rebuild_neighbor_edges", f"{rebuilt} rebuilt")
    with log.step("repair_endpoints"):
        _repair_endpoints(model, effective, touching - internal_ids, log)
    with log.step("snap_orthogonal"):
        snap_orthogonal(model, effective, touching)
    with log.step("detect_crossings"):
        report = detect_crossings(model, touching)

    log.finish()
    logger.info(
        f"Laid out subset of {len(shapes)} node(s): {report.count} crossing(s)"
    )
    return _result(report, log, len(children), len(edges))


__all__ = [
    "resolve_layout_options",
    "layout_diagram",
    "layout_subset",
]
