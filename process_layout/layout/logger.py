"""Per-step timing and movement records for the layout pipeline.

Entries are always recorded so callers and tests can inspect them; they are
additionally written to the log at INFO level when the ``layout_debug``
flag is on (``LAYOUT_DEBUG=true``).

Usage:
    log = LayoutLogger("layout_diagram")
    with log.step("apply_positions", model):
        apply_positions(model, result.children, origin, settings)
    log.note("init", "12 nodes")
    log.finish()
"""

import logging
import time
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from process_layout.config.settings import is_enabled
from process_layout.core.diagram_model import DiagramModel
from process_layout.models.layout_graph import StepRecord

logger = logging.getLogger(__name__)

PositionSnapshot = Dict[str, Tuple[float, float]]

# Moves at or below this distance (px) are not counted
MOVED_TOLERANCE = 1.0


def snapshot_positions(model: DiagramModel) -> PositionSnapshot:
    return {node.id: (node.x, node.y) for node in model.nodes()}


def count_moved(model: DiagramModel, before: PositionSnapshot) -> int:
    """Nodes that moved more than 1 px on either axis since the snapshot."""
    moved = 0
    for node in model.nodes():
        previous = before.get(node.id)
        if previous is None:
            continue
        if abs(node.x - previous[0]) > MOVED_TOLERANCE or abs(node.y - previous[1]) > MOVED_TOLERANCE:
            moved += 1
    return moved


def position_shifts(model: DiagramModel, before: PositionSnapshot) -> Dict[str, Tuple[float, float]]:
    """Per-node (dx, dy) since the snapshot, for nodes that moved at all."""
    shifts: Dict[str, Tuple[float, float]] = {}
    for node in model.nodes():
        previous = before.get(node.id)
        if previous is None:
            continue
        dx = node.x - previous[0]
        dy = node.y - previous[1]
        if dx or dy:
            shifts[node.id] = (dx, dy)
    return shifts


class LayoutLogger:
    """Structured step log for one pipeline run."""

    def __init__(self, pipeline_name: str):
        self.pipeline_name = pipeline_name
        self.entries: List[StepRecord] = []
        self._start = time.perf_counter()
        self._pending_notes: Dict[str, List[str]] = {}
        self._current: Optional[StepRecord] = None

    @property
    def debug(self) -> bool:
        return is_enabled("layout_debug")

    def note(self, step: str, message: str) -> None:
        """Attach a note to a step (the running one, a finished one, or a future one)."""
        if self._current is not None and self._current.step == step:
            self._current.notes.append(message)
            return
        for entry in reversed(self.entries):
            if entry.step == step:
                entry.notes.append(message)
                return
        self._pending_notes.setdefault(step, []).append(message)

    @contextmanager
    def step(self, name: str, model: Optional[DiagramModel] = None) -> Iterator[StepRecord]:
        """Time a step; with a model, also count the nodes it moved."""
        before = snapshot_positions(model) if model is not None else None
        record = StepRecord(step=name, notes=self._pending_notes.pop(name, []))
        self._current = record
        started = time.perf_counter()
        try:
            yield record
            if model is not None:
                record.moved_count = count_moved(model, before)
        finally:
            record.duration_ms = round((time.perf_counter() - started) * 1000, 3)
            self._current = None
            self.entries.append(record)
            self._emit(record)

    def _emit(self, record: StepRecord) -> None:
        message = f"[{self.pipeline_name}] {record.step} {record.duration_ms:.1f}ms"
        if record.moved_count:
            message += f", moved {record.moved_count}"
        if record.notes:
            message += " - " + "; ".join(record.notes)
        if self.debug:
            logger.info(message)
        else:
            logger.debug(message)

    def finish(self) -> float:
        """Log and return the total elapsed time in ms."""
        total_ms = (time.perf_counter() - self._start) * 1000
        if self.debug:
            logger.info(f"[{self.pipeline_name}] total {total_ms:.1f}ms over {len(self.entries)} steps")
        return total_ms


__all__ = [
    "PositionSnapshot",
    "snapshot_positions",
    "count_moved",
    "position_shifts",
    "LayoutLogger",
]
