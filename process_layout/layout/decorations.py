"""Placement of secondary decorations after layout.

Decorations (text annotations, data objects, data stores) are not part of
the solver graph. Once the flow has its final positions:

- Linked decorations (associated with a primary node) are spread
  horizontally, centered on that node: annotations above it, data objects
  and data stores below it.
- Unlinked decorations are lined up left to right outside the bounding box
  of the flow (annotations above, others below).
- Groups with members are fitted around them; empty groups stay put.

Each placement is checked against the rectangles placed so far. On overlap,
a linked decoration first shifts right past the conflicting rectangle (as
long as it stays within the search margin of the flow's right edge) and
otherwise shifts vertically away from it. Unlinked decorations only shift
vertically.
"""

import logging
from typing import Dict, List, Optional, Set

from process_layout.config.settings import LayoutSettings
from process_layout.core.diagram_model import DiagramModel
from process_layout.layout.constants import (
    DEFAULT_DECORATION_HEIGHT,
    DEFAULT_DECORATION_WIDTH,
)
from process_layout.layout.graph_builder import is_group
from process_layout.models.diagram import (
    Bounds,
    ConnectionKind,
    DiagramNode,
    ElementType,
    NodeKind,
)

logger = logging.getLogger(__name__)


def _size(node: DiagramNode):
    return (node.width or DEFAULT_DECORATION_WIDTH, node.height or DEFAULT_DECORATION_HEIGHT)


def _is_annotation(node: DiagramNode) -> bool:
    return node.type == ElementType.TEXT_ANNOTATION


def find_linked_node(model: DiagramModel, decoration: DiagramNode) -> Optional[DiagramNode]:
    """First primary node associated with the decoration, if any."""
    for conn in model.connections():
        if conn.kind != ConnectionKind.ASSOCIATION:
            continue
        if conn.source_id == decoration.id:
            other_id = conn.target_id
        elif conn.target_id == decoration.id:
            other_id = conn.source_id
        else:
            continue
        other = model.find_node(other_id)
        if other is not None and other.is_primary:
            return other
    return None


def fit_groups(
    model: DiagramModel,
    settings: LayoutSettings,
    node_ids: Optional[Set[str]] = None,
) -> int:
    """Resize every group with members to surround them with padding.

    With ``node_ids``, only groups holding at least one of those nodes are fitted.

    Returns:
        Number of groups resized
    """
    fitted = 0
    for group in model.nodes():
        if not is_group(group):
            continue
        members = [
            model.get_node(child_id) for child_id in group.child_ids
            if model.get_node(child_id).kind != NodeKind.BOUNDARY_MARKER
        ]
        if not members:
            continue
        if node_ids is not None and not any(m.id in node_ids for m in members):
            continue
        bounds = Bounds.from_nodes(members).expanded(settings.group_padding)
        model.resize_node(group.id, bounds)
        fitted += 1
    return fitted


class DecorationPlacer:
    """Places decorations next to the flow, tracking occupied rectangles."""

    def __init__(self, model: DiagramModel, settings: LayoutSettings):
        self.model = model
        self.settings = settings
        self.occupied: List[Bounds] = []
        self.moved = 0

    def _flow_bounds(self, node_ids: Optional[Set[str]]) -> Optional[Bounds]:
        flow = [
            n for n in self.model.nodes()
            if n.is_primary and (node_ids is None or n.id in node_ids)
        ]
        if not flow:
            return None
        return Bounds.from_nodes(flow)

    def _move_to(self, decoration: DiagramNode, x: float, y: float) -> None:
        dx = x - decoration.x
        dy = y - decoration.y
        if abs(dx) > self.settings.movement_threshold or abs(dy) > self.settings.movement_threshold:
            self.model.move_node(decoration.id, dx, dy)
            self.moved += 1

    def _resolve_overlap(
        self,
        x: float,
        y: float,
        width: float,
        height: float,
        annotation: bool,
        flow_max_x: Optional[float],
    ):
        """Shift a candidate rectangle off every occupied rectangle it hits.

        ``flow_max_x`` of None disables the rightward shift.
        """
        padding = self.settings.decoration_padding
        for rect in self.occupied:
            candidate = Bounds.from_rect(x, y, width, height)
            if not candidate.overlaps(rect):
                continue
            right_shift = rect.max_x + padding
            if annotation:
                vertical_shift = rect.min_y - height - padding
            else:
                vertical_shift = rect.max_y + padding

            if (
                flow_max_x is not None
                and right_shift + width <= flow_max_x + self.settings.decoration_search_margin
            ):
                x = right_shift
            else:
                y = vertical_shift
        return x, y

    def place_linked(
        self,
        linked: Dict[str, List[DiagramNode]],
        flow_max_x: float,
    ) -> None:
        padding = self.settings.decoration_padding
        for linked_id, group in linked.items():
            anchor = self.model.get_node(linked_id)
            anchor_cx = anchor.x + anchor.width / 2
            total_width = sum(_size(d)[0] + padding for d in group) - padding
            start_x = anchor_cx - total_width / 2

            for decoration in group:
                width, height = _size(decoration)
                annotation = _is_annotation(decoration)
                if annotation:
                    y = anchor.y - height - self.settings.decoration_above_offset
                else:
                    y = anchor.bottom + self.settings.decoration_below_offset
                x = start_x
                start_x += width + padding

                x, y = self._resolve_overlap(x, y, width, height, annotation, flow_max_x)
                self._move_to(decoration, x, y)
                self.occupied.append(Bounds.from_rect(x, y, width, height))

    def place_unlinked(self, unlinked: List[DiagramNode], flow: Bounds) -> None:
        cursor_x = flow.min_x
        for decoration in unlinked:
            width, height = _size(decoration)
            annotation = _is_annotation(decoration)
            if annotation:
                y = flow.min_y - height - self.settings.decoration_above_offset
            else:
                y = flow.max_y + self.settings.decoration_below_offset
            x, y = self._resolve_overlap(cursor_x, y, width, height, annotation, None)

            self._move_to(decoration, x, y)
            self.occupied.append(Bounds.from_rect(x, y, width, height))
            cursor_x += width + self.settings.decoration_padding

    def place(self, node_ids: Optional[Set[str]] = None) -> int:
        """Place all decorations.

        Args:
            node_ids: Limit the flow (and the decorations linked to it) to
                these primary nodes; None = whole diagram

        Returns:
            Number of decorations moved
        """
        flow = self._flow_bounds(node_ids)
        if flow is None:
            return 0

        linked: Dict[str, List[DiagramNode]] = {}
        unlinked: List[DiagramNode] = []
        for node in self.model.nodes():
            if node.kind != NodeKind.SECONDARY_DECORATION or is_group(node):
                continue
            anchor = find_linked_node(self.model, node)
            if anchor is not None:
                if node_ids is None or anchor.id in node_ids:
                    linked.setdefault(anchor.id, []).append(node)
            elif node_ids is None:
                unlinked.append(node)

        self.place_linked(linked, flow.max_x)
        self.place_unlinked(unlinked, flow)
        return self.moved


def place_decorations(
    model: DiagramModel,
    settings: LayoutSettings,
    node_ids: Optional[Set[str]] = None,
) -> int:
    """Place linked and unlinked decorations, then fit groups around the result.

    Returns:
        Number of decorations moved or groups resized
    """
    moved = DecorationPlacer(model, settings).place(node_ids)
    fitted = fit_groups(model, settings, node_ids)
    if moved or fitted:
        logger.debug(f"Decorations: {moved} moved, {fitted} group(s) fitted")
    return moved + fitted


__all__ = [
    "find_linked_node",
    "fit_groups",
    "DecorationPlacer",
    "place_decorations",
]
