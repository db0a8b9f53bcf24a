"""Drive one task through todo -> in progress -> testing -> review.

The controller is resumable from whatever the board shows: it re-reads the
issue and status on every call and only works on unchecked items. It stops
at review; moving a task to Done is left to the human reviewer.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger

from .constants import (
    BLOCKED_LABEL,
    BLOCKED_MARKER,
    REVIEW_READY_MARKER,
    STARTED_MARKER,
    VALIDATION_FAILED_MARKER,
)
from .errors import IllegalTransitionError
from .fsm import WRITABLE_STATUSES, TaskEvent, next_phase, phase_for_status, status_for_phase
from .models import (
    AlreadyDone,
    BoardStatus,
    CommandResult,
    LifecycleOutcome,
    Mismatch,
    ReachedReview,
    StatusMismatch,
    TaskPhase,
    ToggleResult,
    ValidationFailed,
    WorkFailed,
)
from .sync import ChecklistSynchronizer
from .tracker import IssueStore
from .validation import ValidationRunner
from .verifier import StatusVerifier
from .worker import TaskWorker


def _format_failure(result: CommandResult) -> str:
    lines = [
        f"{VALIDATION_FAILED_MARKER}: `{result.command}` exited {result.exit_code}"
        + (" (timed out)" if result.timed_out else ""),
    ]
    if result.output_tail:
        lines.extend(["", "```", result.output_tail.rstrip(), "```"])
    return "\n".join(lines)


class TaskLifecycleController:
    def __init__(
        self,
        store: IssueStore,
        worker: TaskWorker,
        validator: Optional[ValidationRunner] = None,
        *,
        sync: Optional[ChecklistSynchronizer] = None,
        verifier: Optional[StatusVerifier] = None,
    ):
        self.store = store
        self.worker = worker
        self.validator = validator
        self.sync = sync or ChecklistSynchronizer(store)
        self.verifier = verifier or StatusVerifier(store)

    def phase(self, number: int) -> TaskPhase:
        """Read the task's current phase from the tracker."""
        issue = self.store.get_issue(number)
        return phase_for_status(self.store.get_board_status(number), blocked=issue.has_label(BLOCKED_LABEL))

    def _write_status(self, number: int, status: BoardStatus) -> None:
        if status not in WRITABLE_STATUSES:
            raise IllegalTransitionError(status.value, "write")
        self.store.set_board_status(number, status.value)

    def _transition(self, number: int, phase: TaskPhase, event: TaskEvent) -> TaskPhase:
        target = next_phase(phase, event)
        board_status = status_for_phase(target)
        if target != phase and board_status is not None:
            self._write_status(number, board_status)
        logger.info("#{} {} -> {} ({})", number, phase.value, target.value, event.value)
        return target

    def start(self, number: int) -> TaskPhase:
        """Move a todo task to in progress and post the started marker."""
        phase = self.phase(number)
        if phase != TaskPhase.TODO:
            logger.debug("#{} already started ({})", number, phase.value)
            return phase
        self.store.comment(number, STARTED_MARKER)
        return self._transition(number, phase, TaskEvent.START)

    def drive(self, number: int) -> LifecycleOutcome:
        """Work the task from its current phase up to review.

        Each unchecked item is handed to the worker and checked off in the
        tracker as soon as it finishes, before the next item starts.

        Returns:
            `ReachedReview` when the task is waiting for the human reviewer,
            or the outcome that stopped it.
        """
        phase = self.phase(number)
        if phase == TaskPhase.BLOCKED:
            return WorkFailed(number, None, "Task is blocked; answer `retry` once the blocker is resolved")
        if phase == TaskPhase.DONE:
            return AlreadyDone(number)
        if phase == TaskPhase.TODO:
            phase = self.start(number)

        issue = self.store.get_issue(number)
        for item in issue.checklist.unchecked():
            current = self.store.get_issue(number)
            work = self.worker.perform(current, item)
            if not work.ok:
                logger.warning("#{} item {!r} not completed: {}", number, item, work.detail)
                return WorkFailed(number, item, work.detail or "Work on item did not complete")
            toggle: ToggleResult = self.sync.toggle_item(number, item, True)
            if not toggle.found:
                return WorkFailed(number, item, "Checklist drift: the item is no longer in the issue body")

        remaining = self.sync.get_unchecked_items(number)
        if remaining:
            return WorkFailed(number, remaining[0], f"{len(remaining)} checklist item(s) still unchecked")

        if phase == TaskPhase.REVIEW:
            failure = self._check(number, phase)
            return failure or ReachedReview(number)
        if phase == TaskPhase.IN_PROGRESS:
            phase = self._transition(number, phase, TaskEvent.ITEMS_COMPLETE)
        return self.validate(number)

    def _check(self, number: int, phase: TaskPhase) -> Optional[ValidationFailed]:
        results = self.validator.run(number) if self.validator else []
        failed = next((result for result in results if not result.passed), None)
        if failed is None:
            return None
        # Review keeps its status on failure; there is no regression to Testing.
        stays = next_phase(phase, TaskEvent.VALIDATION_FAILED) if phase == TaskPhase.TESTING else phase
        logger.warning("#{} failed validation at `{}`; stays in {}", number, failed.command, stays.value)
        self.store.comment(number, _format_failure(failed))
        return ValidationFailed(number, results)

    def validate(self, number: int) -> LifecycleOutcome:
        """Run validation for a task in testing and hand it to review on success."""
        failure = self._check(number, TaskPhase.TESTING)
        if failure is not None:
            return failure

        self._transition(number, TaskPhase.TESTING, TaskEvent.VALIDATION_PASSED)
        check = self.verifier.verify(number, BoardStatus.REVIEW.value)
        if isinstance(check, Mismatch):
            return StatusMismatch(number, check)
        self.store.comment(number, REVIEW_READY_MARKER)
        return ReachedReview(number)

    def block(self, number: int, reason: str) -> TaskPhase:
        """Record a blocker on the task. Checklist progress is kept.

        Raises:
            ValueError: If no reason is given.
        """
        if not reason or not reason.strip():
            raise ValueError("A reason is required to block or skip a task")
        target = next_phase(self.phase(number), TaskEvent.BLOCK)
        self.store.comment(number, f"{BLOCKED_MARKER}: {reason.strip()}")
        self.store.add_label(number, BLOCKED_LABEL)
        logger.warning("#{} blocked: {}", number, reason.strip())
        return target

    def retry(self, number: int) -> TaskPhase:
        """Clear a blocker so the task can be driven again from its board phase."""
        issue = self.store.get_issue(number)
        status = self.store.get_board_status(number)
        resume_phase = phase_for_status(status)
        if issue.has_label(BLOCKED_LABEL):
            self.store.remove_label(number, BLOCKED_LABEL)
            return next_phase(TaskPhase.BLOCKED, TaskEvent.RETRY, resume_phase=resume_phase)
        if resume_phase in (TaskPhase.IN_PROGRESS, TaskPhase.TESTING):
            return next_phase(resume_phase, TaskEvent.RETRY)
        return resume_phase

    def restart(self, number: int) -> TaskPhase:
        """Force the task back to todo, clearing any blocker."""
        issue = self.store.get_issue(number)
        previous = phase_for_status(self.store.get_board_status(number), blocked=issue.has_label(BLOCKED_LABEL))
        if issue.has_label(BLOCKED_LABEL):
            self.store.remove_label(number, BLOCKED_LABEL)
        self._write_status(number, BoardStatus.TODO)
        return next_phase(previous, TaskEvent.RESTART)

    def reopen_item(self, number: int, item_text: str) -> ToggleResult:
        """Uncheck one item as a correction; the board status is left alone."""
        return self.sync.toggle_item(number, item_text, False)
