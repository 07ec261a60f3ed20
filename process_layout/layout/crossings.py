"""Crossing detection between connection routes.

Purely diagnostic: never mutates the diagram and never raises. Two
connections cross when any segment of one properly intersects any segment
of the other. Shared endpoints and collinear touching are not crossings.
"""

import logging
from typing import Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from process_layout.core.diagram_model import DiagramModel
from process_layout.models.diagram import Connection, Point

logger = logging.getLogger(__name__)


class CrossingReport(BaseModel):
    """Crossing connection pairs, each listed once in model order."""

    count: int = Field(default=0)
    pairs: List[Tuple[str, str]] = Field(default_factory=list)


def _cross(o: Point, a: Point, b: Point) -> float:
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def segments_intersect(a1: Point, a2: Point, b1: Point, b2: Point) -> bool:
    """Strict orientation test: the endpoints of each segment lie on opposite sides of the other."""
    d1 = _cross(b1, b2, a1)
    d2 = _cross(b1, b2, a2)
    d3 = _cross(a1, a2, b1)
    d4 = _cross(a1, a2, b2)
    return (d1 * d2 < 0) and (d3 * d4 < 0)


def routes_cross(a: Connection, b: Connection) -> bool:
    for a1, a2 in a.segments():
        for b1, b2 in b.segments():
            if segments_intersect(a1, a2, b1, b2):
                return True
    return False


def find_crossings(connections: Iterable[Connection]) -> CrossingReport:
    """Check all unordered connection pairs for crossing routes."""
    routed = [c for c in connections if len(c.waypoints) >= 2]
    pairs: List[Tuple[str, str]] = []
    for i, first in enumerate(routed):
        for second in routed[i + 1:]:
            if routes_cross(first, second):
                pairs.append((first.id, second.id))
    return CrossingReport(count=len(pairs), pairs=pairs)


def detect_crossings(
    model: DiagramModel,
    connection_ids: Optional[Set[str]] = None,
) -> CrossingReport:
    """Crossing report for the diagram (optionally limited to some connections)."""
    connections = [
        c for c in model.connections()
        if connection_ids is None or c.id in connection_ids
    ]
    report = find_crossings(connections)
    if report.count:
        logger.debug(f"{report.count} crossing pair(s): {report.pairs}")
    return report


__all__ = [
    "CrossingReport",
    "segments_intersect",
    "routes_cross",
    "find_crossings",
    "detect_crossings",
]
