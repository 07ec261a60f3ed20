"""Applying solver geometry to the diagram.

- ``apply_positions``: parent-relative solver coordinates to absolute
  diagram positions, recursing through compound nodes.
- ``resize_compound_nodes``: containers take the solver's computed size.
- ``fix_stranded_markers``: boundary markers left away from their host are
  re-attached to the host's bottom edge.
"""

import logging
from typing import List, Optional, Set

from process_layout.config.settings import LayoutSettings
from process_layout.core.diagram_model import DiagramModel
from process_layout.models.diagram import Bounds, NodeKind, Point
from process_layout.models.layout_graph import AbstractGraphNode

logger = logging.getLogger(__name__)


def apply_positions(
    model: DiagramModel,
    children: List[AbstractGraphNode],
    origin: Point,
    settings: LayoutSettings,
) -> int:
    """Move every positioned result node to ``origin + (x, y)``.

    The origin handed to a compound node's children is the node's live
    position after its own move, so any adjustment the model applied to
    the move carries through to the nested level.

    Args:
        model: Diagram to mutate
        children: Result-graph children at this level
        origin: Absolute position of the level's (0, 0)
        settings: Layout settings (movement dead-zone)

    Returns:
        Number of move calls issued
    """
    moves = 0
    origin_x, origin_y = origin

    for child in children:
        if child.x is None or child.y is None:
            continue
        node = model.find_node(child.id)
        if node is None:
            continue

        desired_x = round(origin_x + child.x)
        desired_y = round(origin_y + child.y)
        dx = desired_x - node.x
        dy = desired_y - node.y

        if abs(dx) > settings.movement_threshold or abs(dy) > settings.movement_threshold:
            node = model.move_node(node.id, dx, dy)
            moves += 1

        if child.children:
            moves += apply_positions(model, child.children, (node.x, node.y), settings)

    return moves


def resize_compound_nodes(
    model: DiagramModel,
    children: List[AbstractGraphNode],
    settings: LayoutSettings,
) -> int:
    """Resize containers to the solver's size, anchored at their current origin.

    Must run after ``apply_positions`` so the anchor is already final.

    Returns:
        Number of resize calls issued
    """
    resized = 0
    for child in children:
        if not child.children:
            continue

        node = model.find_node(child.id)
        if node is not None and child.width and child.height:
            desired_w = round(child.width)
            desired_h = round(child.height)
            if (
                abs(node.width - desired_w) > settings.resize_threshold
                or abs(node.height - desired_h) > settings.resize_threshold
            ):
                model.resize_node(
                    node.id, Bounds.from_rect(node.x, node.y, desired_w, desired_h)
                )
                resized += 1

        resized += resize_compound_nodes(model, child.children, settings)

    return resized


def fix_stranded_markers(
    model: DiagramModel,
    settings: LayoutSettings,
    host_ids: Optional[Set[str]] = None,
) -> int:
    """Re-attach boundary markers whose center drifted away from the host.

    A marker is stranded when its center lies outside the host's box grown
    by ``marker_proximity_tolerance``. It is moved so its center sits at
    ``marker_attach_factor`` along the host's bottom edge.

    Args:
        model: Diagram to mutate
        settings: Layout settings (tolerance and attachment point)
        host_ids: Only check markers attached to these hosts (None = all)

    Returns:
        Number of markers moved
    """
    fixed = 0
    for marker in model.nodes():
        if marker.kind != NodeKind.BOUNDARY_MARKER or marker.host_id is None:
            continue
        if host_ids is not None and marker.host_id not in host_ids:
            continue
        host = model.find_node(marker.host_id)
        if host is None:
            continue

        zone = host.bounds.expanded(settings.marker_proximity_tolerance)
        if zone.contains_point(marker.center):
            continue

        target_cx = host.x + host.width * settings.marker_attach_factor
        target_cy = host.bottom
        cx, cy = marker.center
        model.move_node(marker.id, target_cx - cx, target_cy - cy)
        fixed += 1
        logger.debug(f"Re-attached stranded marker {marker.id} to {host.id}")

    return fixed


__all__ = [
    "apply_positions",
    "resize_compound_nodes",
    "fix_stranded_markers",
]
