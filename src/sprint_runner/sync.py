"""Keep issue-body checklists in step with completed work, one item at a time."""

from __future__ import annotations

from loguru import logger

from .checklist import set_item_state
from .models import ToggleResult
from .tracker import IssueStore


class ChecklistSynchronizer:
    """Read and toggle individual checklist items inside an issue body.

    Every toggle reloads the current body and writes the full document back,
    so progress is visible in the tracker after each item rather than at the
    end of a task.
    """

    def __init__(self, store: IssueStore):
        self.store = store

    def toggle_item(self, number: int, item_text: str, checked: bool) -> ToggleResult:
        """Set one checklist item to the requested state.

        Args:
            number: Issue number.
            item_text: Exact text of the item (without the `- [ ]` prefix).
            checked: Requested state.

        Returns:
            The toggle result. `found` is False when no line matches; the
            body is left untouched in that case.

        Raises:
            DuplicateChecklistItemError: If the text matches more than one line.
            TrackerError: If the tracker read or write fails.
        """
        issue = self.store.get_issue(number)
        new_body, result = set_item_state(issue.body, item_text, checked, number=number)
        if not result.found:
            logger.warning(
                "Checklist drift on #{}: no item {!r}; issue body left unchanged",
                number,
                item_text,
            )
            return result
        if not result.changed:
            logger.debug("#{} item {!r} already {}", number, item_text, "checked" if checked else "unchecked")
            return result

        self.store.set_body(number, new_body)
        logger.info("#{} {} {!r}", number, "checked" if checked else "unchecked", item_text)
        return result

    def get_progress(self, number: int) -> tuple[int, int]:
        checklist = self.store.get_issue(number).checklist
        return checklist.checked, checklist.total

    def get_unchecked_items(self, number: int) -> list[str]:
        return self.store.get_issue(number).checklist.unchecked()
