from __future__ import annotations

from dataclasses import dataclass

from boardtask_graph.core.defaults import DONE_STATUS_ID, IN_PROGRESS_STATUS_ID, TODO_STATUS_ID
from boardtask_graph.core.derive.attributes import compute_blocked
from boardtask_graph.core.graph.mirror import GraphMirror


@dataclass(frozen=True)
class BlockedCounts:
    total: int
    todo: int
    in_progress: int


@dataclass(frozen=True)
class Progress:
    done: int
    total: int

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 0
        return self.done * 100 // self.total


def count_blocked(
    mirror: GraphMirror,
    *,
    done_status_id: str = DONE_STATUS_ID,
    todo_status_id: str = TODO_STATUS_ID,
    in_progress_status_id: str = IN_PROGRESS_STATUS_ID,
) -> BlockedCounts:
    blocked = compute_blocked(mirror, done_status_id)
    total = todo = in_progress = 0
    for node in mirror.nodes():
        if not blocked[node.id]:
            continue
        total += 1
        if node.status_id == todo_status_id:
            todo += 1
        elif node.status_id == in_progress_status_id:
            in_progress += 1
    return BlockedCounts(total=total, todo=todo, in_progress=in_progress)


def progress(mirror: GraphMirror, *, done_status_id: str = DONE_STATUS_ID) -> Progress:
    nodes = mirror.nodes()
    done = sum(1 for n in nodes if n.status_id == done_status_id)
    return Progress(done=done, total=len(nodes))


def format_estimated_minutes(minutes: int | None) -> str:
    """Format an estimate for display: "—", "45 min", "2 h", "1 h 30 min"."""
    if not minutes:
        return "—"
    if minutes < 60:
        return f"{minutes} min"
    h, m = divmod(minutes, 60)
    if m == 0:
        return f"{h} h"
    return f"{h} h {m} min"
