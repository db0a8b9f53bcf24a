"""Define tracker-backed sprint models and the result types returned by the engine."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .constants import (
    BOARD_STATUS_DONE,
    BOARD_STATUS_IN_PROGRESS,
    BOARD_STATUS_REVIEW,
    BOARD_STATUS_TESTING,
    BOARD_STATUS_TODO,
    GATE_LABEL,
)


class BoardStatus(str, Enum):
    """Enumerate the single-select values of the board's status field."""

    TODO = BOARD_STATUS_TODO
    IN_PROGRESS = BOARD_STATUS_IN_PROGRESS
    TESTING = BOARD_STATUS_TESTING
    REVIEW = BOARD_STATUS_REVIEW
    DONE = BOARD_STATUS_DONE

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["BoardStatus"]:
        """Map a raw board value to a `BoardStatus`.

        Args:
            raw: Value read from the board, or None when the issue is not on the board.

        Returns:
            The matching status, or None for empty and unknown values.
        """
        if raw is None:
            return None
        value = " ".join(str(raw).split()).lower()
        if not value:
            return None
        if value.startswith("testing"):
            return cls.TESTING
        for member in cls:
            if member.value.lower() == value:
                return member
        return None


class TaskPhase(str, Enum):
    """Represent the lifecycle phase of a single task."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    TESTING = "testing"
    REVIEW = "review"
    DONE = "done"
    BLOCKED = "blocked"


class TaskCategory(str, Enum):
    """Group tasks in a sprint snapshot."""

    DONE = "done"
    IN_PROGRESS = "in_progress"
    NOT_STARTED = "not_started"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class ChecklistItem:
    text: str
    checked: bool = False


@dataclass
class Checklist:
    """Ordered checklist parsed from an issue body."""

    items: list[ChecklistItem] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def checked(self) -> int:
        return sum(1 for item in self.items if item.checked)

    def unchecked(self) -> list[str]:
        return [item.text for item in self.items if not item.checked]

    def is_complete(self) -> bool:
        return not self.unchecked()

    def progress_label(self) -> str:
        return f"{self.checked}/{self.total}"


@dataclass
class Issue:
    """Tracker issue as seen by the engine."""

    number: int
    title: str = ""
    body: str = ""
    state: str = "OPEN"
    labels: list[str] = field(default_factory=list)
    url: Optional[str] = None
    milestone: Optional[str] = None

    @property
    def checklist(self) -> Checklist:
        from .checklist import parse_checklist

        return parse_checklist(self.body)

    def has_label(self, label: str) -> bool:
        wanted = label.lower()
        return any(str(name).lower() == wanted for name in self.labels)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_TASK_ID_RE = re.compile(r"\bSprint\s*(?P<sprint>\d+)\.(?P<task>[\w-]+)", re.I)
_GATE_RE = re.compile(r"\bgate\b", re.I)


@dataclass(frozen=True)
class TaskRef:
    """Reference to a task issue inside a sprint."""

    number: int
    title: str
    task_id: Optional[str] = None
    is_gate: bool = False

    @classmethod
    def from_issue(cls, issue: Issue, *, gate_issue: Optional[int] = None) -> "TaskRef":
        match = _TASK_ID_RE.search(issue.title or "")
        task_id = f"Sprint{match.group('sprint')}.{match.group('task')}" if match else None
        if gate_issue is not None:
            is_gate = issue.number == gate_issue
        else:
            is_gate = bool(_GATE_RE.search(issue.title or "")) or issue.has_label(GATE_LABEL)
        return cls(number=issue.number, title=issue.title, task_id=task_id, is_gate=is_gate)

    @property
    def label(self) -> str:
        return f"#{self.number} {self.task_id}" if self.task_id else f"#{self.number}"


@dataclass
class TaskSnapshot:
    ref: TaskRef
    status: Optional[str]
    checked: int
    total: int
    category: TaskCategory
    url: Optional[str] = None
    unchecked_items: list[str] = field(default_factory=list)

    @property
    def number(self) -> int:
        return self.ref.number

    @property
    def progress_label(self) -> str:
        return f"{self.checked}/{self.total}"

    @property
    def fully_checked(self) -> bool:
        return self.checked == self.total

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.ref.number,
            "task_id": self.ref.task_id,
            "title": self.ref.title,
            "is_gate": self.ref.is_gate,
            "status": self.status,
            "progress": self.progress_label,
            "category": self.category.value,
            "url": self.url,
            "unchecked_items": list(self.unchecked_items),
        }


@dataclass
class SprintSnapshot:
    """Derived, non-persisted view of every task in a sprint."""

    sprint: int
    milestone: str
    tasks: list[TaskSnapshot] = field(default_factory=list)
    current: Optional[TaskSnapshot] = None
    has_progress: bool = False

    def _in(self, category: TaskCategory) -> list[TaskSnapshot]:
        return [task for task in self.tasks if task.category == category]

    @property
    def done(self) -> list[TaskSnapshot]:
        return self._in(TaskCategory.DONE)

    @property
    def in_progress(self) -> list[TaskSnapshot]:
        return self._in(TaskCategory.IN_PROGRESS)

    @property
    def not_started(self) -> list[TaskSnapshot]:
        return self._in(TaskCategory.NOT_STARTED)

    @property
    def blocked(self) -> list[TaskSnapshot]:
        return self._in(TaskCategory.BLOCKED)

    @property
    def gate(self) -> Optional[TaskSnapshot]:
        for task in self.tasks:
            if task.ref.is_gate:
                return task
        return None

    @property
    def work_tasks(self) -> list[TaskSnapshot]:
        return [task for task in self.tasks if not task.ref.is_gate]

    def find(self, number: int) -> Optional[TaskSnapshot]:
        for task in self.tasks:
            if task.number == number:
                return task
        return None

    def counts(self) -> dict[str, int]:
        return {category.value: len(self._in(category)) for category in TaskCategory}

    def to_dict(self) -> dict[str, Any]:
        return {
            "sprint": self.sprint,
            "milestone": self.milestone,
            "has_progress": self.has_progress,
            "current": self.current.number if self.current else None,
            "counts": self.counts(),
            "tasks": [task.to_dict() for task in self.tasks],
        }


# Verifier results


@dataclass(frozen=True)
class Verified:
    status: str


@dataclass(frozen=True)
class Mismatch:
    expected: str
    actual: Optional[str]

    def describe(self) -> str:
        actual = self.actual if self.actual else "not on board"
        return f"expected board status {self.expected!r}, found {actual!r}"


VerifyResult = Union[Verified, Mismatch]


@dataclass(frozen=True)
class ToggleResult:
    """Outcome of a single checklist toggle."""

    found: bool
    changed: bool = False
    line: Optional[str] = None


# Task lifecycle outcomes


@dataclass
class CommandResult:
    command: str
    exit_code: int
    log_path: Optional[str] = None
    output_tail: str = ""
    timed_out: bool = False

    @property
    def passed(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ReachedReview:
    number: int


@dataclass
class AlreadyDone:
    number: int


@dataclass
class ValidationFailed:
    number: int
    results: list[CommandResult] = field(default_factory=list)

    @property
    def failed(self) -> Optional[CommandResult]:
        for result in self.results:
            if not result.passed:
                return result
        return None


@dataclass
class WorkFailed:
    number: int
    item: Optional[str]
    reason: str


@dataclass
class StatusMismatch:
    number: int
    mismatch: Mismatch


LifecycleOutcome = Union[ReachedReview, AlreadyDone, ValidationFailed, WorkFailed, StatusMismatch]


# Sprint controller results


@dataclass
class WaitingForConfirmation:
    """Returned whenever the engine needs a human signal before continuing.

    The caller holds this between invocations and passes `gate` and `task`
    back together with the signal.
    """

    gate: str
    sprint: int
    message: str
    allowed: list[str] = field(default_factory=list)
    task: Optional[int] = None
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"result": "waiting", **asdict(self)}


@dataclass
class Held:
    sprint: int
    message: str
    gate: Optional[str] = None
    task: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {"result": "held", **asdict(self)}


@dataclass
class SprintCompleted:
    sprint: int
    report: Any

    def to_dict(self) -> dict[str, Any]:
        return {"result": "completed", "sprint": self.sprint, "report": self.report.to_dict()}


StepResult = Union[WaitingForConfirmation, Held, SprintCompleted]
