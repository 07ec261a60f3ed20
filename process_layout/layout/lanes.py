"""Lane tiling after pool layout.

Lanes are not part of the solver graph: the solver lays out a pool's flow
nodes as one block and resizes the pool around them. This pass then splits
the pool into one band per lane, moves each lane's flow nodes into its band
and resizes lanes and pool so that the lanes tile the pool exactly.

Lane membership comes from each lane's ``flow_node_refs``. Flow nodes no
lane lists are assigned to the lane they sit in before layout (or the
nearest one). Assignments must be captured before positions are applied,
hence the two calls:

    snapshots = save_lane_assignments(model)
    ...  # apply positions, resize containers
    reposition_lanes(model, snapshots, settings, "RIGHT")

Horizontal flows stack lanes as rows below the pool's top edge, right of
the pool label band. Vertical flows (``DOWN`` / ``UP``) place lanes as
columns left to right.
"""

import logging
from typing import Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from process_layout.config.settings import LayoutSettings
from process_layout.core.diagram_model import DiagramModel
from process_layout.layout.graph_builder import layout_parent_id
from process_layout.models.diagram import Bounds, DiagramNode, ElementType

logger = logging.getLogger(__name__)

VERTICAL_DIRECTIONS = ("DOWN", "UP")


class LaneSnapshot(BaseModel):
    """A lane's pre-layout position and the flow nodes assigned to it."""

    lane_id: str = Field(..., description="Lane ID")
    pool_id: str = Field(..., description="Pool the lane belongs to")
    original_x: float = Field(..., description="Lane left edge before layout")
    original_y: float = Field(..., description="Lane top edge before layout")
    node_ids: List[str] = Field(default_factory=list, description="Flow nodes in the lane")


def _nearest_lane(lanes: List[DiagramNode], node: DiagramNode) -> DiagramNode:
    cx, cy = node.center
    for lane in lanes:
        if lane.bounds.contains_point((cx, cy)):
            return lane

    def distance(lane: DiagramNode) -> float:
        lx, ly = lane.center
        return (lx - cx) ** 2 + (ly - cy) ** 2

    return min(lanes, key=distance)


def save_lane_assignments(
    model: DiagramModel,
    pool_ids: Optional[Set[str]] = None,
) -> List[LaneSnapshot]:
    """Record lane membership for every pool with lanes.

    Args:
        model: Diagram, read before any layout mutation
        pool_ids: Only these pools (None = all)

    Returns:
        One snapshot per lane, in model order
    """
    snapshots: List[LaneSnapshot] = []
    for pool in model.nodes():
        if pool.type != ElementType.PARTICIPANT:
            continue
        if pool_ids is not None and pool.id not in pool_ids:
            continue
        lanes = [n for n in model.children_of(pool.id) if n.type == ElementType.LANE]
        if not lanes:
            continue

        flow_nodes = [
            n for n in model.nodes()
            if n.is_primary and layout_parent_id(model, n) == pool.id
        ]
        flow_ids = {n.id for n in flow_nodes}
        assigned: Dict[str, List[str]] = {lane.id: [] for lane in lanes}
        seen: Set[str] = set()
        for lane in lanes:
            for ref in lane.flow_node_refs:
                if ref in flow_ids and ref not in seen:
                    assigned[lane.id].append(ref)
                    seen.add(ref)

        for flow_node in flow_nodes:
            if flow_node.id not in seen:
                assigned[_nearest_lane(lanes, flow_node).id].append(flow_node.id)
                seen.add(flow_node.id)

        for lane in lanes:
            snapshots.append(
                LaneSnapshot(
                    lane_id=lane.id,
                    pool_id=pool.id,
                    original_x=lane.x,
                    original_y=lane.y,
                    node_ids=assigned[lane.id],
                )
            )
    return snapshots


def _start(node: DiagramNode, axis: int) -> float:
    return node.x if axis == 0 else node.y


def _size(node: DiagramNode, axis: int) -> float:
    return node.width if axis == 0 else node.height


def _span(nodes: List[DiagramNode], axis: int) -> Tuple[float, float]:
    return (
        min(_start(n, axis) for n in nodes),
        max(_start(n, axis) + _size(n, axis) for n in nodes),
    )


def _shift(model: DiagramModel, nodes: List[DiagramNode], axis: int, delta: float) -> None:
    for node in nodes:
        model.move_node(node.id, delta if axis == 0 else 0, delta if axis == 1 else 0)


def _rect(axis: int, start: float, size: float, cross_start: float, cross_size: float) -> Bounds:
    if axis == 1:
        return Bounds.from_rect(cross_start, start, cross_size, size)
    return Bounds.from_rect(start, cross_start, size, cross_size)


def _tile_pool(
    model: DiagramModel,
    pool: DiagramNode,
    snapshots: List[LaneSnapshot],
    settings: LayoutSettings,
    vertical_flow: bool,
    push_siblings: bool,
) -> bool:
    # Bands stack along band_axis; the lanes all span the cross axis
    band_axis = 0 if vertical_flow else 1
    cross_axis = 1 - band_axis
    padding = settings.lane_padding

    ordered = sorted(
        snapshots,
        key=lambda s: (s.original_x, s.original_y) if vertical_flow else (s.original_y, s.original_x),
    )
    members: List[List[DiagramNode]] = [
        [n for n in (model.find_node(i) for i in snapshot.node_ids) if n is not None]
        for snapshot in ordered
    ]
    everyone = [n for group in members for n in group]
    if not everyone:
        return False

    cross_start = pool.x + settings.lane_label_band if cross_axis == 0 else pool.y
    low, high = _span(everyone, cross_axis)
    if low < cross_start + padding:
        delta = round(cross_start + padding - low)
        _shift(model, everyone, cross_axis, delta)
        high += delta
    cross_end = max(_start(pool, cross_axis) + _size(pool, cross_axis), high + padding)
    if vertical_flow:
        cross_end = max(cross_end, pool.y + settings.min_lane_height)

    min_band = settings.min_lane_width if vertical_flow else settings.min_lane_height
    band_start = pool.x + settings.lane_label_band if vertical_flow else pool.y
    cursor = band_start
    bands: List[Tuple[str, float, float]] = []
    for snapshot, group in zip(ordered, members):
        if group:
            low, high = _span(group, band_axis)
            size = max(high - low + 2 * padding, min_band)
            delta = round(cursor + size / 2 - (low + high) / 2)
            if delta:
                _shift(model, group, band_axis, delta)
        else:
            size = min_band
        bands.append((snapshot.lane_id, cursor, size))
        cursor += size

    old_end = _start(pool, band_axis) + _size(pool, band_axis)
    for lane_id, start, size in bands:
        model.resize_node(
            lane_id, _rect(band_axis, start, size, cross_start, cross_end - cross_start)
        )

    if vertical_flow:
        pool_bounds = Bounds.from_rect(pool.x, pool.y, cursor - pool.x, cross_end - pool.y)
    else:
        pool_bounds = Bounds.from_rect(pool.x, pool.y, cross_end - pool.x, cursor - pool.y)
    model.resize_node(pool.id, pool_bounds)
    logger.debug(f"Tiled {len(bands)} lane(s) in {pool.id}")

    growth = _start(pool, band_axis) + _size(pool, band_axis) - old_end
    if push_siblings and growth > 0:
        _make_room(model, pool, band_axis, old_end, growth)
    return True


def _make_room(model: DiagramModel, pool: DiagramNode, axis: int, old_end: float, growth: float) -> None:
    """Push siblings that started past the pool's old far edge out by its growth."""
    for sibling in model.children_of(pool.parent_id):
        if sibling.id == pool.id or not sibling.is_primary:
            continue
        if _start(sibling, axis) >= old_end:
            model.move_node(sibling.id, growth if axis == 0 else 0, growth if axis == 1 else 0)
            logger.debug(f"Moved {sibling.id} clear of {pool.id}")


def reposition_lanes(
    model: DiagramModel,
    snapshots: List[LaneSnapshot],
    settings: LayoutSettings,
    direction: str = "RIGHT",
    push_siblings: bool = True,
) -> int:
    """Move flow nodes into their lane bands and tile the lanes over each pool.

    Each band is as deep as its content plus ``lane_padding`` on both
    sides, and at least the minimum lane size. Content is centered in its
    band, so every flow node ends up inside its lane and every lane inside
    its pool. With ``push_siblings``, a pool that grew along the band axis
    pushes the siblings lying beyond its old edge out by the same amount.

    Returns:
        Number of pools tiled
    """
    by_pool: Dict[str, List[LaneSnapshot]] = {}
    for snapshot in snapshots:
        by_pool.setdefault(snapshot.pool_id, []).append(snapshot)

    vertical_flow = direction.upper() in VERTICAL_DIRECTIONS
    band_axis = 0 if vertical_flow else 1
    pools = [p for p in (model.find_node(pool_id) for pool_id in by_pool) if p is not None]
    # Nearest pool first, so a push cascades onto the pools beyond it
    pools.sort(key=lambda p: _start(p, band_axis))

    tiled = 0
    for pool in pools:
        if _tile_pool(model, pool, by_pool[pool.id], settings, vertical_flow, push_siblings):
            tiled += 1
    return tiled


__all__ = [
    "LaneSnapshot",
    "save_lane_assignments",
    "reposition_lanes",
]
