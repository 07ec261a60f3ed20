"""Connection routing after layout.

``route_connections`` turns solver edge sections into absolute waypoints.
Connections the solver did not route fall back to:

- the diagram model's own ``layout_connection`` for flows leaving a
  boundary marker and for message flows (both need boundary-aware routing
  the solver does not model)
- a synthesized orthogonal route between the element midpoints otherwise

Nodes keep moving after the solver (rank alignment, lane tiling, subset
placement), so two repair passes run on the written routes:
``repair_detached_connections`` rebuilds routes whose endpoints ended up
away from their element, and ``snap_endpoints_to_centres`` pulls endpoints
that drifted a few pixels back onto the element's center line.

``snap_orthogonal`` is the final pass that removes residual near-diagonal
segments. ``rebuild_neighbor_edges`` repairs connections crossing the
border of a subset layout.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set

from process_layout.config.settings import LayoutSettings
from process_layout.core.diagram_model import DiagramModel
from process_layout.models.diagram import (
    Connection,
    ConnectionKind,
    DiagramNode,
    NodeKind,
    Point,
)
from process_layout.models.layout_graph import (
    AbstractGraphEdge,
    AbstractGraphNode,
    SectionRoute,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Waypoint helpers
# ---------------------------------------------------------------------------

def dedupe_waypoints(points: Sequence[Point], tolerance: float = 0) -> List[Point]:
    """Drop consecutive points within ``tolerance`` of the previous kept point."""
    result: List[Point] = []
    for point in points:
        if not result:
            result.append(point)
            continue
        prev = result[-1]
        if abs(prev[0] - point[0]) > tolerance or abs(prev[1] - point[1]) > tolerance:
            result.append(point)
    return result


def orthogonal_waypoints(source: Point, target: Point, straight_tolerance: float = 2) -> List[Point]:
    """Straight segment when aligned, otherwise an L-shape.

    The L goes horizontal-first when the horizontal displacement dominates,
    vertical-first otherwise.
    """
    sx, sy = source
    tx, ty = target
    dx = abs(tx - sx)
    dy = abs(ty - sy)

    if dx < straight_tolerance:
        return [(sx, sy), (sx, ty)]
    if dy < straight_tolerance:
        return [(sx, sy), (tx, sy)]
    if dx >= dy:
        return [(sx, sy), (tx, sy), (tx, ty)]
    return [(sx, sy), (sx, ty), (tx, ty)]


def z_route(source_right: float, source_cy: float, target_left: float, target_cy: float) -> List[Point]:
    """Four-point route: right, down/up at the horizontal midpoint, right."""
    mid_x = round((source_right + target_left) / 2)
    return [
        (round(source_right), round(source_cy)),
        (mid_x, round(source_cy)),
        (mid_x, round(target_cy)),
        (round(target_left), round(target_cy)),
    ]


def rebuild_route(source: DiagramNode, target: DiagramNode, settings: LayoutSettings) -> List[Point]:
    """Fresh orthogonal route attached to both element borders.

    Right-to-left when the target is to the right, bottom-to-top when it
    is below (or top-to-bottom when above), otherwise a loop-back that
    leaves the source's right edge, passes under both elements and enters
    the target from the left.
    """
    scx, scy = (round(v) for v in source.center)
    tcx, tcy = (round(v) for v in target.center)
    tolerance = settings.repair_same_row_tolerance

    if target.x > source.right:
        if abs(scy - tcy) <= tolerance:
            return [(round(source.right), scy), (round(target.x), scy)]
        return z_route(source.right, scy, target.x, tcy)

    if target.y > source.bottom or target.bottom < source.y:
        below = target.y > source.bottom
        start_y = round(source.bottom if below else source.y)
        end_y = round(target.y if below else target.bottom)
        if abs(scx - tcx) <= tolerance:
            return [(scx, start_y), (scx, end_y)]
        mid_y = round((start_y + end_y) / 2)
        return [(scx, start_y), (scx, mid_y), (tcx, mid_y), (tcx, end_y)]

    margin = settings.loopback_margin
    low = round(max(source.bottom, target.bottom) + margin)
    out_x = round(source.right + margin)
    in_x = round(target.x - margin)
    return [
        (round(source.right), scy),
        (out_x, scy),
        (out_x, low),
        (in_x, low),
        (in_x, tcy),
        (round(target.x), tcy),
    ]


# ---------------------------------------------------------------------------
# Solver sections
# ---------------------------------------------------------------------------

def collect_sections(
    edges: Iterable[AbstractGraphEdge],
    children: Iterable[AbstractGraphNode],
    origin: Point,
) -> Dict[str, SectionRoute]:
    """Map edge id -> sections plus the absolute origin of their frame.

    Edges are expressed relative to the compound node that lists them, so
    each nesting level adds its node's position to the origin.
    """
    lookup: Dict[str, SectionRoute] = {}
    for edge in edges:
        if edge.sections:
            lookup[edge.id] = SectionRoute(sections=edge.sections, offset=origin)

    for child in children:
        if not child.children:
            continue
        child_origin = (origin[0] + (child.x or 0), origin[1] + (child.y or 0))
        lookup.update(collect_sections(child.edges, child.children, child_origin))

    return lookup


def section_waypoints(route: SectionRoute, snap_tolerance: float) -> List[Point]:
    """Absolute, noise-free waypoints from the first section of a route."""
    ox, oy = route.offset
    section = route.sections[0]
    points = [
        [round(ox + x), round(oy + y)]
        for x, y in section.get_all_points()
    ]

    for i in range(1, len(points)):
        prev = points[i - 1]
        curr = points[i]
        if abs(curr[1] - prev[1]) < snap_tolerance:
            curr[1] = prev[1]
        if abs(curr[0] - prev[0]) < snap_tolerance:
            curr[0] = prev[0]

    return dedupe_waypoints([(x, y) for x, y in points])


def snap_straight_endpoints(
    points: List[Point],
    source: DiagramNode,
    target: DiagramNode,
    tolerance: float,
) -> List[Point]:
    """Pin a straight horizontal 2-point route to the live element borders.

    The pinned route stays horizontal on the source's center line.
    """
    if len(points) != 2:
        return points
    source_cy = round(source.y + source.height / 2)
    target_cy = round(target.y + target.height / 2)
    (x0, y0), (x1, y1) = points
    if (
        abs(y0 - y1) <= tolerance
        and abs(y0 - source_cy) <= tolerance
        and abs(y1 - target_cy) <= tolerance
        and abs(source_cy - target_cy) <= tolerance
    ):
        return [(round(source.right), source_cy), (round(target.x), source_cy)]
    return points


def _uses_model_routing(connection: Connection, source: DiagramNode) -> bool:
    return (
        source.kind == NodeKind.BOUNDARY_MARKER
        or connection.kind == ConnectionKind.MESSAGE
        or connection.source_id == connection.target_id
    )


def route_connections(
    model: DiagramModel,
    result: AbstractGraphNode,
    origin: Point,
    settings: LayoutSettings,
    connection_ids: Optional[Set[str]] = None,
    shifts: Optional[Dict[str, Point]] = None,
) -> int:
    """Write waypoints for every connection.

    Args:
        model: Diagram to mutate
        result: Solver result root
        origin: Absolute position of the result root's (0, 0)
        settings: Layout settings (snap tolerances)
        connection_ids: Restrict routing to these connections (None = all)
        shifts: Per-node (dx, dy) applied after the solver ran; a section
            whose endpoints moved together is translated with them, one
            whose endpoints moved apart is rebuilt

    Returns:
        Number of connections that used a solver section
    """
    shifts = shifts or {}
    lookup = collect_sections(result.edges, result.children, origin)
    from_solver = 0

    for connection in model.connections():
        if connection_ids is not None and connection.id not in connection_ids:
            continue
        source = model.find_node(connection.source_id)
        target = model.find_node(connection.target_id)
        if source is None or target is None:
            continue

        route = lookup.get(connection.id)
        if route is not None:
            points = section_waypoints(route, settings.segment_snap_tolerance)
            source_shift = shifts.get(source.id, (0, 0))
            target_shift = shifts.get(target.id, (0, 0))
            if source_shift != target_shift:
                if _uses_model_routing(connection, source):
                    model.layout_connection(connection.id)
                else:
                    model.update_waypoints(connection.id, rebuild_route(source, target, settings))
                continue
            if source_shift != (0, 0):
                dx, dy = source_shift
                points = [(round(x + dx), round(y + dy)) for x, y in points]
            points = snap_straight_endpoints(
                points, source, target, settings.endpoint_snap_tolerance
            )
            model.update_waypoints(connection.id, points)
            from_solver += 1
            continue

        if _uses_model_routing(connection, source):
            model.layout_connection(connection.id)
            continue

        points = orthogonal_waypoints(
            source.center, target.center, settings.straight_route_tolerance
        )
        points = dedupe_waypoints([(round(x), round(y)) for x, y in points])
        if len(points) >= 2:
            model.update_waypoints(connection.id, points)
        else:
            # Coincident midpoints
            model.layout_connection(connection.id)

    return from_solver


# ---------------------------------------------------------------------------
# Endpoint repair
# ---------------------------------------------------------------------------

def distance_to_node(node: DiagramNode, point: Point) -> float:
    """Distance from a point to a node's rectangle (0 on or inside it)."""
    x, y = point
    dx = max(node.x - x, 0, x - node.right)
    dy = max(node.y - y, 0, y - node.bottom)
    return (dx * dx + dy * dy) ** 0.5


def repair_detached_connections(
    model: DiagramModel,
    settings: LayoutSettings,
    connection_ids: Optional[Set[str]] = None,
) -> int:
    """Rebuild routes whose first or last waypoint left its element.

    An endpoint is detached when it lies more than ``disconnect_threshold``
    outside the element's rectangle. Marker, message and self-loop
    connections go back to the model's own routing; everything else gets
    a ``rebuild_route``.

    Returns:
        Number of connections rebuilt
    """
    threshold = settings.disconnect_threshold
    repaired = 0
    for connection in model.connections():
        if connection_ids is not None and connection.id not in connection_ids:
            continue
        if len(connection.waypoints) < 2:
            continue
        source = model.find_node(connection.source_id)
        target = model.find_node(connection.target_id)
        if source is None or target is None:
            continue

        if (
            distance_to_node(source, connection.waypoints[0]) <= threshold
            and distance_to_node(target, connection.waypoints[-1]) <= threshold
        ):
            continue

        if _uses_model_routing(connection, source):
            model.layout_connection(connection.id)
        else:
            model.update_waypoints(connection.id, rebuild_route(source, target, settings))
        logger.debug(f"Rebuilt detached connection {connection.id}")
        repaired += 1
    return repaired


def _snap_end_segment(points: List[List[float]], end: int, neighbor: int, center: Point, tolerance: float) -> bool:
    point = points[end]
    other = points[neighbor]
    if point[1] == other[1]:
        axis = 1
    elif point[0] == other[0]:
        axis = 0
    else:
        return False

    target = round(center[axis])
    offset = abs(point[axis] - target)
    if offset == 0 or offset > tolerance:
        return False
    point[axis] = target
    other[axis] = target
    return True


def snap_endpoints_to_centres(
    model: DiagramModel,
    settings: LayoutSettings,
    connection_ids: Optional[Set[str]] = None,
) -> int:
    """Pull sequence-flow endpoints back onto their element's center line.

    The first and last segments are shifted perpendicular to themselves,
    so a horizontal end segment moves onto the element's vertical center
    and a vertical one onto its horizontal center. Both points of the
    segment move, which keeps the adjacent segment orthogonal. Offsets
    above ``centre_snap_tolerance`` are left alone. Two-point routes,
    self-loops and flows leaving a boundary marker are skipped.

    Returns:
        Number of connections rewritten
    """
    tolerance = settings.centre_snap_tolerance
    changed = 0
    for connection in model.connections():
        if connection_ids is not None and connection.id not in connection_ids:
            continue
        if connection.kind != ConnectionKind.SEQUENCE or len(connection.waypoints) < 3:
            continue
        if connection.source_id == connection.target_id:
            continue
        source = model.find_node(connection.source_id)
        target = model.find_node(connection.target_id)
        if source is None or target is None or source.kind == NodeKind.BOUNDARY_MARKER:
            continue

        points = [list(point) for point in connection.waypoints]
        last = len(points) - 1
        moved_start = _snap_end_segment(points, 0, 1, source.center, tolerance)
        moved_end = _snap_end_segment(points, last, last - 1, target.center, tolerance)
        if moved_start or moved_end:
            model.update_waypoints(connection.id, dedupe_waypoints([(x, y) for x, y in points]))
            changed += 1
    return changed


# ---------------------------------------------------------------------------
# Orthogonal correction
# ---------------------------------------------------------------------------

def snap_segments(points: Sequence[Point], tolerance: float) -> List[Point]:
    """Snap near-orthogonal segments; returns a new list.

    A segment that is already orthogonal (a delta below 1 px) or genuinely
    diagonal (both deltas at least ``tolerance``) is left alone; otherwise
    the smaller delta is zeroed by moving the segment's end point.
    """
    snapped = [list(point) for point in points]
    for i in range(1, len(snapped)):
        prev = snapped[i - 1]
        curr = snapped[i]
        dx = abs(curr[0] - prev[0])
        dy = abs(curr[1] - prev[1])

        if dx < 1 or dy < 1:
            continue
        if dx >= tolerance and dy >= tolerance:
            continue

        if dx <= dy:
            curr[0] = prev[0]
        else:
            curr[1] = prev[1]
    return [(x, y) for x, y in snapped]


def snap_orthogonal(
    model: DiagramModel,
    settings: LayoutSettings,
    connection_ids: Optional[Set[str]] = None,
) -> int:
    """Snap every connection's near-diagonal segments to horizontal/vertical.

    Returns:
        Number of connections rewritten
    """
    changed = 0
    for connection in model.connections():
        if connection_ids is not None and connection.id not in connection_ids:
            continue
        if len(connection.waypoints) < 2:
            continue
        snapped = snap_segments(connection.waypoints, settings.ortho_snap_tolerance)
        if snapped != list(connection.waypoints):
            model.update_waypoints(connection.id, snapped)
            changed += 1
    return changed


# ---------------------------------------------------------------------------
# Subset neighbors
# ---------------------------------------------------------------------------

def rebuild_neighbor_edges(
    model: DiagramModel,
    subset_ids: Set[str],
    settings: LayoutSettings,
) -> int:
    """Reroute connections with exactly one endpoint inside the subset.

    Only forward connections (target left edge right of the source right
    edge) are rebuilt: a straight route when both centers are on one row,
    a Z-route otherwise. Loop-backs keep their route.

    Returns:
        Number of connections rebuilt
    """
    rebuilt = 0
    for connection in model.connections():
        if len(connection.waypoints) < 2:
            continue
        if (connection.source_id in subset_ids) == (connection.target_id in subset_ids):
            continue
        source = model.find_node(connection.source_id)
        target = model.find_node(connection.target_id)
        if source is None or target is None:
            continue

        source_cy = round(source.y + source.height / 2)
        target_cy = round(target.y + target.height / 2)
        if target.x <= source.right:
            continue

        if abs(source_cy - target_cy) <= settings.subset_same_row_threshold:
            points = [(round(source.right), source_cy), (round(target.x), source_cy)]
        else:
            points = z_route(source.right, source_cy, target.x, target_cy)
        model.update_waypoints(connection.id, points)
        rebuilt += 1
    return rebuilt


__all__ = [
    "dedupe_waypoints",
    "orthogonal_waypoints",
    "z_route",
    "rebuild_route",
    "collect_sections",
    "section_waypoints",
    "snap_straight_endpoints",
    "route_connections",
    "distance_to_node",
    "repair_detached_connections",
    "snap_endpoints_to_centres",
    "snap_segments",
    "snap_orthogonal",
    "rebuild_neighbor_edges",
]
