"""Sequence the tasks of a sprint behind human confirmation gates.

`SprintController.run` is stateless: every call re-derives the sprint from
the tracker and either advances as far as the next human gate or stops.
The caller keeps the returned `WaitingForConfirmation` and passes its
`gate` and `task` back with the human's answer on the next call.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from .config import get_compact_every, get_sprint_name
from .detector import SprintStateDetector
from .errors import DuplicateChecklistItemError
from .lifecycle import TaskLifecycleController
from .models import (
    AlreadyDone,
    BoardStatus,
    Held,
    LifecycleOutcome,
    Mismatch,
    ReachedReview,
    SprintCompleted,
    SprintSnapshot,
    StatusMismatch,
    StepResult,
    TaskCategory,
    TaskPhase,
    TaskSnapshot,
    ValidationFailed,
    WaitingForConfirmation,
    WorkFailed,
)
from .report import build_report
from .signals import HOLD_SIGNALS, ParsedSignal, Signal, parse_signal
from .tracker import IssueStore
from .verifier import StatusVerifier


class Gate(str, Enum):
    RESUME_CHOICE = "resume_choice"
    START_SPRINT = "start_sprint"
    START_TASK = "start_task"
    REVIEW = "review"
    VALIDATION_FAILED = "validation_failed"
    WORK_FAILED = "work_failed"
    STATUS_MISMATCH = "status_mismatch"
    COMPACT = "compact"


_CONTINUE = [Signal.YES, Signal.READY, Signal.NEXT, Signal.DONE]
_HOLD = [Signal.NO, Signal.HOLD, Signal.WAIT]

GATE_SIGNALS: dict[Gate, list[Signal]] = {
    Gate.RESUME_CHOICE: [Signal.RESUME, Signal.RESTART, Signal.VERIFY, *_HOLD],
    Gate.START_SPRINT: [*_CONTINUE, *_HOLD],
    Gate.START_TASK: [*_CONTINUE, Signal.SKIP, *_HOLD],
    Gate.REVIEW: [*_CONTINUE, Signal.VERIFY, Signal.SKIP, *_HOLD],
    Gate.VALIDATION_FAILED: [Signal.RETRY, Signal.SKIP, *_HOLD],
    Gate.WORK_FAILED: [Signal.RETRY, Signal.SKIP, *_HOLD],
    Gate.STATUS_MISMATCH: [Signal.VERIFY, Signal.RETRY, Signal.SKIP, *_HOLD],
    Gate.COMPACT: [Signal.COMPACT, Signal.SKIP_COMPACT, *_HOLD],
}


def _pending(snapshot: SprintSnapshot) -> list[TaskSnapshot]:
    return [
        task
        for task in snapshot.work_tasks
        if task.category in (TaskCategory.IN_PROGRESS, TaskCategory.NOT_STARTED)
    ]


def _describe(task: TaskSnapshot) -> str:
    return f"{task.ref.label} {task.ref.title!r} ({task.progress_label} checked, status {task.status or 'not on board'})"


class SprintController:
    def __init__(
        self,
        store: IssueStore,
        lifecycle: TaskLifecycleController,
        config: Optional[dict[str, Any]] = None,
        *,
        detector: Optional[SprintStateDetector] = None,
        verifier: Optional[StatusVerifier] = None,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.config = config or {}
        self.detector = detector or SprintStateDetector(store, self.config)
        self.verifier = verifier or StatusVerifier(store)
        self._handlers: dict[Gate, Callable[[int, Optional[int], ParsedSignal], StepResult]] = {
            Gate.RESUME_CHOICE: self._on_resume_choice,
            Gate.START_SPRINT: self._on_start_sprint,
            Gate.START_TASK: self._on_start_task,
            Gate.REVIEW: self._on_review,
            Gate.VALIDATION_FAILED: self._on_failure,
            Gate.WORK_FAILED: self._on_failure,
            Gate.STATUS_MISMATCH: self._on_status_mismatch,
            Gate.COMPACT: self._on_compact,
        }

    def run(
        self,
        sprint_number: int,
        signal: Optional[str] = None,
        *,
        gate: Optional[str] = None,
        task: Optional[int] = None,
    ) -> StepResult:
        """Advance the sprint to the next human gate.

        Args:
            sprint_number: Sprint to drive.
            signal: Human answer to the pending gate (ignored on entry).
            gate: Gate name from the previous `WaitingForConfirmation`; None on entry.
            task: Task number from the previous `WaitingForConfirmation`.

        Returns:
            `WaitingForConfirmation`, `Held` or `SprintCompleted`.

        Raises:
            ValueError: If `gate` is not a known gate name.
            TrackerError: If the tracker cannot be reached.
        """
        if gate is None:
            return self._enter(sprint_number)

        pending = Gate(gate)
        parsed = parse_signal(signal)
        allowed = GATE_SIGNALS[pending]
        if parsed.signal not in allowed:
            return self._reprompt(sprint_number, pending, task, f"Unrecognized reply {parsed.raw!r}.")
        if parsed.signal == Signal.SKIP and not parsed.reason:
            return self._reprompt(sprint_number, pending, task, "A skip needs a reason, e.g. `skip: waiting on API keys`.")
        if parsed.signal in HOLD_SIGNALS:
            logger.info("Sprint {} held at {} (task {})", sprint_number, pending.value, task)
            return Held(
                sprint=sprint_number,
                message="Holding. Run again to pick up where the sprint left off.",
                gate=pending.value,
                task=task,
            )
        return self._handlers[pending](sprint_number, task, parsed)

    # Results

    def _waiting(
        self,
        gate: Gate,
        sprint: int,
        message: str,
        *,
        task: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> WaitingForConfirmation:
        return WaitingForConfirmation(
            gate=gate.value,
            sprint=sprint,
            message=message,
            allowed=[signal.value for signal in GATE_SIGNALS[gate]],
            task=task,
            context=context or {},
        )

    def _reprompt(self, sprint: int, gate: Gate, task: Optional[int], problem: str) -> WaitingForConfirmation:
        options = ", ".join(signal.value for signal in GATE_SIGNALS[gate])
        return self._waiting(gate, sprint, f"{problem} Reply with one of: {options}.", task=task)

    def _complete(self, snapshot: SprintSnapshot) -> SprintCompleted:
        report = build_report(snapshot, name=get_sprint_name(self.config, snapshot.sprint))
        logger.info(
            "Sprint {} complete: {} incomplete task(s), gate eligible={}",
            snapshot.sprint,
            len(report.incomplete),
            report.gate_eligible,
        )
        return SprintCompleted(sprint=snapshot.sprint, report=report)

    # Entry and branching

    def _enter(self, sprint: int) -> StepResult:
        snapshot = self.detector.detect(sprint)
        if not snapshot.work_tasks:
            return Held(sprint=sprint, message=f"No tasks found in milestone {snapshot.milestone!r}.")
        if not _pending(snapshot):
            return self._complete(snapshot)
        if snapshot.has_progress:
            return self._resume_prompt(snapshot)
        return self._fresh_start(snapshot)

    def _resume_prompt(self, snapshot: SprintSnapshot) -> WaitingForConfirmation:
        counts = snapshot.counts()
        lines = [
            f"Sprint {snapshot.sprint} already has progress: "
            f"{counts['done']} done, {counts['in_progress']} in progress, "
            f"{counts['not_started']} not started, {counts['blocked']} blocked.",
        ]
        if snapshot.current is not None:
            lines.append(f"Current task: {_describe(snapshot.current)}.")
        else:
            lines.append("No task is in progress.")
        lines.append("Reply `resume` to continue, `restart` to reset every task to Todo, or `verify` to re-scan.")
        return self._waiting(
            Gate.RESUME_CHOICE,
            snapshot.sprint,
            "\n".join(lines),
            task=snapshot.current.number if snapshot.current else None,
            context={"snapshot": snapshot.to_dict()},
        )

    def _fresh_start(self, snapshot: SprintSnapshot) -> StepResult:
        for task in snapshot.tasks:
            self.lifecycle.restart(task.number)
        logger.info("Sprint {}: {} task(s) reset to {}", snapshot.sprint, len(snapshot.tasks), BoardStatus.TODO.value)
        first = snapshot.work_tasks[0]
        return self._waiting(
            Gate.START_SPRINT,
            snapshot.sprint,
            f"Sprint {snapshot.sprint} is ready: {len(snapshot.work_tasks)} task(s) set to Todo. "
            f"Start with {first.ref.label} {first.ref.title!r}?",
            task=first.number,
        )

    # Gate handlers

    def _on_resume_choice(self, sprint: int, task: Optional[int], parsed: ParsedSignal) -> StepResult:
        if parsed.signal == Signal.VERIFY:
            return self._enter(sprint)
        snapshot = self.detector.detect(sprint)
        if parsed.signal == Signal.RESTART:
            return self._fresh_start(snapshot)

        pending = _pending(snapshot)
        target = snapshot.current if snapshot.current in pending else next(iter(pending), None)
        if target is None:
            return self._complete(snapshot)
        logger.info("Resuming sprint {} at {}", sprint, _describe(target))
        return self._drive(sprint, target.number)

    def _on_start_sprint(self, sprint: int, task: Optional[int], parsed: ParsedSignal) -> StepResult:
        snapshot = self.detector.detect(sprint)
        pending = _pending(snapshot)
        if not pending:
            return self._complete(snapshot)
        return self._drive(sprint, pending[0].number)

    def _on_start_task(self, sprint: int, task: Optional[int], parsed: ParsedSignal) -> StepResult:
        if task is None:
            return self._enter(sprint)
        if parsed.signal == Signal.SKIP:
            return self._skip(sprint, task, parsed.reason or "")
        return self._drive(sprint, task)

    def _on_review(self, sprint: int, task: Optional[int], parsed: ParsedSignal) -> StepResult:
        if task is None:
            return self._enter(sprint)
        if parsed.signal == Signal.SKIP:
            return self._skip(sprint, task, parsed.reason or "")

        check = self.verifier.verify(task, BoardStatus.DONE.value)
        if isinstance(check, Mismatch):
            return self._waiting(
                Gate.REVIEW,
                sprint,
                f"#{task} is not Done on the board: {check.describe()}. "
                "Move it to Done once the review is complete, then reply `ready` or `verify`.",
                task=task,
                context={"expected": check.expected, "actual": check.actual},
            )
        logger.info("#{} confirmed Done by reviewer", task)
        return self._after_task(sprint, task)

    def _on_failure(self, sprint: int, task: Optional[int], parsed: ParsedSignal) -> StepResult:
        if task is None:
            return self._enter(sprint)
        if parsed.signal == Signal.SKIP:
            return self._skip(sprint, task, parsed.reason or "")
        self.lifecycle.retry(task)
        return self._drive(sprint, task)

    def _on_status_mismatch(self, sprint: int, task: Optional[int], parsed: ParsedSignal) -> StepResult:
        if task is None:
            return self._enter(sprint)
        if parsed.signal != Signal.VERIFY:
            return self._on_failure(sprint, task, parsed)
        check = self.verifier.verify(task, BoardStatus.REVIEW.value)
        if isinstance(check, Mismatch):
            return self._mismatch_prompt(sprint, StatusMismatch(task, check))
        return self._review_prompt(sprint, task)

    def _on_compact(self, sprint: int, task: Optional[int], parsed: ParsedSignal) -> StepResult:
        snapshot = self.detector.detect(sprint)
        pending = _pending(snapshot)
        if not pending:
            return self._complete(snapshot)
        nxt = snapshot.find(task) if task is not None else None
        nxt = nxt if nxt is not None and nxt in pending else pending[0]
        prefix = "Compact the agent context now. " if parsed.signal == Signal.COMPACT else ""
        return self._start_prompt(sprint, nxt, prefix=prefix, context={"compact": parsed.signal == Signal.COMPACT})

    # Task driving

    def _start_prompt(
        self,
        sprint: int,
        task: TaskSnapshot,
        *,
        prefix: str = "",
        context: Optional[dict[str, Any]] = None,
    ) -> WaitingForConfirmation:
        return self._waiting(
            Gate.START_TASK,
            sprint,
            f"{prefix}Next task: {_describe(task)}. Reply `yes` to start, `skip: <reason>` or `hold`.",
            task=task.number,
            context=context,
        )

    def _review_prompt(self, sprint: int, number: int) -> WaitingForConfirmation:
        return self._waiting(
            Gate.REVIEW,
            sprint,
            f"#{number} is in Review. Review it, move it to Done on the board, then reply `ready`. "
            "`ready` and `verify` only re-read the board status; nothing is changed.",
            task=number,
            context={"url": self.store.issue_url(number)},
        )

    def _mismatch_prompt(self, sprint: int, outcome: StatusMismatch) -> WaitingForConfirmation:
        return self._waiting(
            Gate.STATUS_MISMATCH,
            sprint,
            f"#{outcome.number}: {outcome.mismatch.describe()}. Fix the board, then reply `verify`.",
            task=outcome.number,
            context={"expected": outcome.mismatch.expected, "actual": outcome.mismatch.actual},
        )

    def _drive(self, sprint: int, number: int) -> StepResult:
        try:
            outcome: LifecycleOutcome = self.lifecycle.drive(number)
        except DuplicateChecklistItemError as exc:
            logger.error("{}", exc)
            return self._waiting(
                Gate.WORK_FAILED,
                sprint,
                f"{exc}. Make the item text unique in the issue, then reply `retry`.",
                task=number,
                context={"item": exc.text, "reason": str(exc)},
            )

        if isinstance(outcome, ReachedReview):
            return self._review_prompt(sprint, number)
        if isinstance(outcome, AlreadyDone):
            return self._after_task(sprint, number)
        if isinstance(outcome, ValidationFailed):
            failed = outcome.failed
            context = failed.to_dict() if failed else {}
            command = failed.command if failed else "validation"
            return self._waiting(
                Gate.VALIDATION_FAILED,
                sprint,
                f"#{number} failed validation at `{command}`; its board status is unchanged. "
                "Fix the problem and reply `retry`, or `skip: <reason>`.",
                task=number,
                context=context,
            )
        if isinstance(outcome, StatusMismatch):
            return self._mismatch_prompt(sprint, outcome)
        assert isinstance(outcome, WorkFailed)
        return self._waiting(
            Gate.WORK_FAILED,
            sprint,
            f"#{number} stopped{f' at {outcome.item!r}' if outcome.item else ''}: {outcome.reason}. "
            "Reply `retry` or `skip: <reason>`.",
            task=number,
            context={"item": outcome.item, "reason": outcome.reason},
        )

    def _skip(self, sprint: int, number: int, reason: str) -> StepResult:
        if self.lifecycle.phase(number) == TaskPhase.DONE:
            logger.info("#{} is already Done; not blocking it", number)
            return self._after_task(sprint, number)
        self.lifecycle.block(number, reason)
        return self._after_task(sprint, number)

    def _after_task(self, sprint: int, finished: int) -> StepResult:
        snapshot = self.detector.detect(sprint)
        pending = _pending(snapshot)
        if not pending:
            return self._complete(snapshot)

        nxt = pending[0]
        compact_every = get_compact_every(self.config)
        finished_task = snapshot.find(finished)
        done_count = len([task for task in snapshot.work_tasks if task.category == TaskCategory.DONE])
        if (
            compact_every
            and finished_task is not None
            and finished_task.category == TaskCategory.DONE
            and done_count % compact_every == 0
        ):
            return self._waiting(
                Gate.COMPACT,
                sprint,
                f"{done_count} task(s) done. Compact the agent context before {nxt.ref.label}? "
                "Reply `compact` or `skip compact`.",
                task=nxt.number,
            )
        return self._start_prompt(sprint, nxt)
