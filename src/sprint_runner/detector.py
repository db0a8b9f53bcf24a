"""Derive a sprint snapshot from the tracker so interrupted sprints can resume."""

from __future__ import annotations

from typing import Any, Optional

from loguru import logger

from .config import get_gate_issue, get_milestone
from .constants import BLOCKED_LABEL
from .models import BoardStatus, Issue, SprintSnapshot, TaskCategory, TaskRef, TaskSnapshot
from .tracker import IssueStore


def classify(status: Optional[str], unchecked: int, *, blocked: bool = False) -> TaskCategory:
    """Classify a task from its board status and remaining checklist items.

    A task in Review with nothing left unchecked counts as done; a task in
    Review with open items is still in progress.
    """
    if blocked:
        return TaskCategory.BLOCKED
    parsed = BoardStatus.parse(status)
    if parsed == BoardStatus.DONE:
        return TaskCategory.DONE
    if parsed == BoardStatus.REVIEW:
        return TaskCategory.DONE if unchecked == 0 else TaskCategory.IN_PROGRESS
    if parsed in (BoardStatus.IN_PROGRESS, BoardStatus.TESTING):
        return TaskCategory.IN_PROGRESS
    if parsed is None and status:
        logger.warning("Unknown board status {!r}; treating task as not started", status)
    return TaskCategory.NOT_STARTED


class SprintStateDetector:
    """Build a fresh `SprintSnapshot` on every call; nothing is cached."""

    def __init__(self, store: IssueStore, config: Optional[dict[str, Any]] = None):
        self.store = store
        self.config = config or {}

    def _snapshot_task(self, issue: Issue, gate_issue: Optional[int]) -> TaskSnapshot:
        checklist = issue.checklist
        status = self.store.get_board_status(issue.number)
        unchecked = checklist.unchecked()
        category = classify(status, len(unchecked), blocked=issue.has_label(BLOCKED_LABEL))
        return TaskSnapshot(
            ref=TaskRef.from_issue(issue, gate_issue=gate_issue),
            status=status,
            checked=checklist.checked,
            total=checklist.total,
            category=category,
            url=issue.url or self.store.issue_url(issue.number),
            unchecked_items=unchecked,
        )

    def detect(self, sprint_number: int) -> SprintSnapshot:
        """Scan every issue of the sprint milestone (open and closed).

        Args:
            sprint_number: Sprint number from the sprint config.

        Returns:
            The categorized snapshot, including the current in-progress task
            and whether the sprint has any progress at all.
        """
        milestone = get_milestone(self.config, sprint_number)
        gate_issue = get_gate_issue(self.config, sprint_number)
        issues = self.store.list_by_milestone(milestone)
        tasks = [self._snapshot_task(issue, gate_issue) for issue in issues]

        current = next((task for task in tasks if task.category == TaskCategory.IN_PROGRESS), None)
        # Unknown non-empty statuses also count as a change from Todo.
        has_progress = any(
            task.checked > 0 or (bool(task.status) and BoardStatus.parse(task.status) != BoardStatus.TODO)
            for task in tasks
        )
        snapshot = SprintSnapshot(
            sprint=sprint_number,
            milestone=milestone,
            tasks=tasks,
            current=current,
            has_progress=has_progress,
        )
        logger.info(
            "Sprint {} ({}): {} tasks, counts={}, current={}, has_progress={}",
            sprint_number,
            milestone,
            len(tasks),
            snapshot.counts(),
            current.ref.label if current else None,
            has_progress,
        )
        return snapshot
