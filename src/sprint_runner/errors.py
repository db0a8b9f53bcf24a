"""Exception types raised by the sprint runner."""

from __future__ import annotations

from typing import Optional


class SprintRunnerError(Exception):
    """Base class for sprint runner errors."""


class ConfigError(SprintRunnerError):
    """Raised when the board or sprint configuration cannot be used."""


class TrackerError(SprintRunnerError):
    """Raised when the issue tracker is unreachable or rejects a request.

    The runner never retries; recovery is by re-invocation.
    """

    def __init__(self, operation: str, number: Optional[int], detail: str):
        self.operation = operation
        self.number = number
        self.detail = detail
        target = f" #{number}" if number is not None else ""
        super().__init__(f"{operation}{target} failed: {detail}")


class DuplicateChecklistItemError(SprintRunnerError):
    """Raised when a checklist item text matches more than one line."""

    def __init__(self, number: int, text: str, count: int):
        self.number = number
        self.text = text
        self.count = count
        super().__init__(
            f"Checklist item {text!r} appears {count} times in issue #{number}; item text must be unique"
        )


class IllegalTransitionError(SprintRunnerError):
    """Raised when a task phase transition is not allowed."""

    def __init__(self, phase: str, event: str):
        self.phase = phase
        self.event = event
        super().__init__(f"Event {event!r} is not allowed in phase {phase!r}")
