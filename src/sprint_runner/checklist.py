"""Parse and rewrite markdown task-list lines inside issue bodies.

This is the only place that knows the raw `- [ ]` / `- [x]` line format;
everything above the store boundary works with `Checklist` records.
"""

from __future__ import annotations

import re

from .errors import DuplicateChecklistItemError
from .models import Checklist, ChecklistItem, ToggleResult

_ITEM_RE = re.compile(r"^(?P<lead>\s*[-*]\s+\[)(?P<mark>[ xX])(?P<sep>\]\s+)(?P<text>.*?)\s*$")


def parse_checklist(body: str) -> Checklist:
    """Parse every task-list line of an issue body, in document order."""
    items: list[ChecklistItem] = []
    for line in (body or "").splitlines():
        match = _ITEM_RE.match(line)
        if not match or not match.group("text"):
            continue
        items.append(ChecklistItem(text=match.group("text"), checked=match.group("mark") != " "))
    return Checklist(items=items)


def _item_pattern(text: str) -> re.Pattern[str]:
    return re.compile(
        r"^(?P<lead>\s*[-*]\s+\[)(?P<mark>[ xX])(?P<sep>\]\s+)" + re.escape(text.strip()) + r"\s*$"
    )


def find_item_lines(body: str, text: str) -> list[int]:
    """Return the indexes of the lines whose item text equals `text`."""
    pattern = _item_pattern(text)
    return [idx for idx, line in enumerate((body or "").splitlines()) if pattern.match(line)]


def set_item_state(body: str, text: str, checked: bool, *, number: int = 0) -> tuple[str, ToggleResult]:
    """Rewrite the single checklist line matching `text` to the requested state.

    Args:
        body: Full issue body.
        text: Exact item text (regex metacharacters are escaped).
        checked: Requested state.
        number: Issue number, used for error reporting.

    Returns:
        A tuple of `(new_body, result)`. When no line matches, the body is
        returned unchanged with `result.found` set to False.

    Raises:
        DuplicateChecklistItemError: If more than one line matches.
    """
    body = body or ""
    pattern = _item_pattern(text)
    lines = body.splitlines(keepends=True)
    matches = find_item_lines(body, text)
    if not matches:
        return body, ToggleResult(found=False)
    if len(matches) > 1:
        raise DuplicateChecklistItemError(number, text, len(matches))

    idx = matches[0]
    raw = lines[idx]
    content = raw.rstrip("\r\n")
    ending = raw[len(content):]
    match = pattern.match(content)
    assert match is not None
    is_checked = match.group("mark") != " "
    if is_checked == checked:
        return body, ToggleResult(found=True, changed=False, line=content)

    mark = "x" if checked else " "
    start, end = match.span("mark")
    updated = content[:start] + mark + content[end:]
    lines[idx] = updated + ending
    return "".join(lines), ToggleResult(found=True, changed=True, line=updated)
