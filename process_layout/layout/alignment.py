"""Same-rank vertical alignment.

The solver can leave nodes of one rank at vertical centers a few pixels
apart. This pass groups primary nodes into ranks (by horizontal center) and
rows (by vertical center) and snaps each row to its median center, moving
nodes vertically only.

Nodes are aligned per direct parent container so nesting levels never mix.
Inside sub-processes a wider row threshold applies.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional, Set

from process_layout.config.settings import LayoutSettings
from process_layout.core.diagram_model import DiagramModel
from process_layout.layout.graph_builder import layout_parent_id
from process_layout.models.diagram import DiagramNode, ElementType

logger = logging.getLogger(__name__)


def _greedy_groups(
    nodes: List[DiagramNode],
    key: Callable[[DiagramNode], float],
    threshold: float,
) -> List[List[DiagramNode]]:
    """Partition nodes sorted by key; consecutive keys within threshold share a group."""
    ordered = sorted(nodes, key=key)
    groups: List[List[DiagramNode]] = []
    for node in ordered:
        if groups and abs(key(node) - key(groups[-1][-1])) <= threshold:
            groups[-1].append(node)
        else:
            groups.append([node])
    return groups


def _center_x(node: DiagramNode) -> float:
    return node.x + node.width / 2


def _center_y(node: DiagramNode) -> float:
    return node.y + node.height / 2


def group_into_ranks(nodes: Iterable[DiagramNode], layer_threshold: float) -> List[List[DiagramNode]]:
    """Ranks (layers) by horizontal center proximity."""
    return _greedy_groups(list(nodes), _center_x, layer_threshold)


def group_into_rows(rank: Iterable[DiagramNode], row_threshold: float) -> List[List[DiagramNode]]:
    """Rows within one rank by vertical center proximity."""
    return _greedy_groups(list(rank), _center_y, row_threshold)


def align_level(
    model: DiagramModel,
    nodes: List[DiagramNode],
    settings: LayoutSettings,
    row_threshold: float,
) -> int:
    """Snap rows of one nesting level to their median vertical center.

    Returns:
        Number of nodes moved
    """
    if len(nodes) < 2:
        return 0

    moved = 0
    for rank in group_into_ranks(nodes, settings.layer_threshold):
        if len(rank) < 2:
            continue
        for row in group_into_rows(rank, row_threshold):
            if len(row) < 2:
                continue
            centres = sorted(_center_y(node) for node in row)
            median = centres[len(centres) // 2]
            for node in row:
                dy = median - _center_y(node)
                if abs(dy) > settings.movement_threshold:
                    model.move_node(node.id, 0, dy)
                    moved += 1
    return moved


def align_ranks(
    model: DiagramModel,
    settings: LayoutSettings,
    node_ids: Optional[Set[str]] = None,
) -> int:
    """Align same-rank rows for every container level.

    Args:
        model: Diagram to mutate
        settings: Layout settings (spacing and row thresholds)
        node_ids: Restrict alignment to these nodes (None = all)

    Returns:
        Number of nodes moved
    """
    levels: Dict[Optional[str], List[str]] = {}
    for node in model.nodes():
        if not node.is_primary:
            continue
        if node_ids is not None and node.id not in node_ids:
            continue
        levels.setdefault(layout_parent_id(model, node), []).append(node.id)

    moved = 0
    for parent_id, member_ids in levels.items():
        parent = model.find_node(parent_id) if parent_id is not None else None
        if parent is not None and parent.type == ElementType.SUB_PROCESS:
            threshold = settings.subprocess_row_threshold
        else:
            threshold = settings.same_row_threshold

        # Re-read live nodes; moving an earlier level may have shifted these
        members = [model.get_node(member_id) for member_id in member_ids]
        moved += align_level(model, members, settings, threshold)

    if moved:
        logger.debug(f"Rank alignment moved {moved} node(s)")
    return moved


__all__ = [
    "group_into_ranks",
    "group_into_rows",
    "align_level",
    "align_ranks",
]
