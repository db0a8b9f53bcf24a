"""Task phase state machine.

Phases move forward only: todo -> in_progress -> testing -> review -> done.
`block` is allowed from any phase; `restart` returns to todo and `retry`
re-enters the phase a task was in. review -> done is observed on the board,
never written by the runner.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from .errors import IllegalTransitionError
from .models import BoardStatus, TaskPhase


class TaskEvent(str, Enum):
    START = "start"
    ITEMS_COMPLETE = "items_complete"
    VALIDATION_PASSED = "validation_passed"
    VALIDATION_FAILED = "validation_failed"
    REVIEW_APPROVED = "review_approved"
    BLOCK = "block"
    RETRY = "retry"
    RESTART = "restart"


_TRANSITIONS: dict[tuple[TaskPhase, TaskEvent], TaskPhase] = {
    (TaskPhase.TODO, TaskEvent.START): TaskPhase.IN_PROGRESS,
    (TaskPhase.IN_PROGRESS, TaskEvent.ITEMS_COMPLETE): TaskPhase.TESTING,
    (TaskPhase.TESTING, TaskEvent.VALIDATION_PASSED): TaskPhase.REVIEW,
    (TaskPhase.TESTING, TaskEvent.VALIDATION_FAILED): TaskPhase.TESTING,
    (TaskPhase.REVIEW, TaskEvent.REVIEW_APPROVED): TaskPhase.DONE,
}

_PHASE_STATUS: dict[TaskPhase, BoardStatus] = {
    TaskPhase.TODO: BoardStatus.TODO,
    TaskPhase.IN_PROGRESS: BoardStatus.IN_PROGRESS,
    TaskPhase.TESTING: BoardStatus.TESTING,
    TaskPhase.REVIEW: BoardStatus.REVIEW,
    TaskPhase.DONE: BoardStatus.DONE,
}

# Statuses automated code may write. Done is set by a human reviewer only.
WRITABLE_STATUSES = frozenset({BoardStatus.TODO, BoardStatus.IN_PROGRESS, BoardStatus.TESTING, BoardStatus.REVIEW})


def next_phase(phase: TaskPhase, event: TaskEvent, *, resume_phase: Optional[TaskPhase] = None) -> TaskPhase:
    """Apply `event` to `phase`.

    Args:
        phase: Current phase.
        event: Event to apply.
        resume_phase: Phase to re-enter when retrying a blocked task.

    Returns:
        The new phase.

    Raises:
        IllegalTransitionError: If the event is not allowed in `phase`.
    """
    if event == TaskEvent.BLOCK:
        return TaskPhase.BLOCKED
    if event == TaskEvent.RESTART:
        return TaskPhase.TODO
    if event == TaskEvent.RETRY:
        if phase == TaskPhase.BLOCKED:
            return resume_phase if resume_phase not in (None, TaskPhase.BLOCKED) else TaskPhase.TODO
        if phase in (TaskPhase.IN_PROGRESS, TaskPhase.TESTING):
            return phase
        raise IllegalTransitionError(phase.value, event.value)

    target = _TRANSITIONS.get((phase, event))
    if target is None:
        raise IllegalTransitionError(phase.value, event.value)
    return target


def phase_for_status(status: Optional[str], *, blocked: bool = False) -> TaskPhase:
    """Map a raw board status to a task phase; unknown and empty values are todo."""
    if blocked:
        return TaskPhase.BLOCKED
    parsed = BoardStatus.parse(status)
    for phase, board_status in _PHASE_STATUS.items():
        if board_status == parsed:
            return phase
    return TaskPhase.TODO


def status_for_phase(phase: TaskPhase) -> Optional[BoardStatus]:
    """Return the board status shown for `phase` (None for blocked)."""
    return _PHASE_STATUS.get(phase)
