"""Test the GitHub issue store adapter and the in-memory store contract."""

from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))
sys.path.insert(0, str(PROJECT_ROOT))

from sprint_runner import tracker
from sprint_runner.config import BoardConfig
from sprint_runner.errors import ConfigError, TrackerError
from sprint_runner.models import Issue
from sprint_runner.tracker import GitHubIssueStore, InMemoryIssueStore


BOARD = BoardConfig(
    owner="acme",
    repo="storefront",
    project_id="PVT_1",
    project_number=4,
    status_field_id="FIELD_1",
    status_options={"Todo": "opt-todo", "In Progress": "opt-progress", "Review": "opt-review"},
)


class FakeGh:
    """Record `gh` invocations and answer them through a responder."""

    def __init__(self, responder: Callable[[list[str], Optional[str]], Any]):
        self.responder = responder
        self.calls: list[tuple[list[str], Optional[str]]] = []

    def __call__(self, cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        self.calls.append((cmd, kwargs.get("input")))
        result = self.responder(cmd, kwargs.get("input"))
        if isinstance(result, subprocess.CompletedProcess):
            return result
        stdout = result if isinstance(result, str) else json.dumps(result)
        return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")

    def graphql_queries(self) -> list[str]:
        queries = []
        for cmd, _ in self.calls:
            if "graphql" in cmd:
                queries.extend(arg for arg in cmd if arg.startswith("query="))
        return queries


def _project_item(status: Optional[str], *, on_board: bool = True, project_id: str = "PVT_1") -> dict[str, Any]:
    nodes = []
    if on_board:
        nodes.append(
            {
                "id": "ITEM_12",
                "project": {"id": project_id, "number": 4},
                "fieldValueByName": {"name": status} if status else None,
            }
        )
    return {"data": {"repository": {"issue": {"id": "ISSUE_12", "projectItems": {"nodes": nodes}}}}}


def _install(monkeypatch: pytest.MonkeyPatch, responder: Callable[[list[str], Optional[str]], Any]) -> FakeGh:
    fake = FakeGh(responder)
    monkeypatch.setattr(tracker.subprocess, "run", fake)
    return fake


def test_get_issue_parses_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure `gh issue view` JSON is converted into an Issue."""
    payload = {
        "number": 12,
        "title": "Sprint2.3 Logout",
        "body": "- [ ] Add button\n",
        "state": "OPEN",
        "labels": [{"name": "frontend"}, {"name": "blocked"}],
        "url": "https://github.com/acme/storefront/issues/12",
        "milestone": {"title": "Sprint 2"},
    }
    fake = _install(monkeypatch, lambda cmd, _: payload)

    issue = GitHubIssueStore(BOARD).get_issue(12)

    assert issue.number == 12
    assert issue.milestone == "Sprint 2"
    assert issue.has_label("blocked")
    assert issue.checklist.unchecked() == ["Add button"]
    cmd = fake.calls[0][0]
    assert cmd[:4] == ["gh", "issue", "view", "12"]
    assert "acme/storefront" in cmd


def test_set_body_sends_full_document_on_stdin(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure body writes go through `--body-file -` with the whole body."""
    fake = _install(monkeypatch, lambda cmd, _: "")

    GitHubIssueStore(BOARD).set_body(12, "- [x] Add button\n")

    cmd, stdin = fake.calls[0]
    assert cmd[1:3] == ["issue", "edit"]
    assert cmd[-2:] == ["--body-file", "-"]
    assert stdin == "- [x] Add button\n"


def test_comment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure comments are posted on the issue."""
    fake = _install(monkeypatch, lambda cmd, _: "")

    GitHubIssueStore(BOARD).comment(12, "Ready for review")

    cmd, stdin = fake.calls[0]
    assert cmd[1:4] == ["issue", "comment", "12"]
    assert stdin == "Ready for review"


def test_list_by_milestone_includes_closed_and_sorts(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure listing asks for all states and returns issues in number order."""
    payload = [
        {"number": 13, "title": "b", "state": "OPEN"},
        {"number": 11, "title": "a", "state": "CLOSED"},
    ]
    fake = _install(monkeypatch, lambda cmd, _: payload)

    issues = GitHubIssueStore(BOARD).list_by_milestone("Sprint 2")

    assert [issue.number for issue in issues] == [11, 13]
    cmd = fake.calls[0][0]
    assert cmd[cmd.index("--state") + 1] == "all"
    assert cmd[cmd.index("--milestone") + 1] == "Sprint 2"


def test_gh_failure_raises_tracker_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure a non-zero `gh` exit surfaces the operation and stderr."""
    _install(
        monkeypatch,
        lambda cmd, _: subprocess.CompletedProcess(cmd, 1, stdout="", stderr="HTTP 502: Bad Gateway"),
    )

    with pytest.raises(TrackerError) as excinfo:
        GitHubIssueStore(BOARD).get_issue(12)

    assert excinfo.value.operation == "get_issue"
    assert excinfo.value.number == 12
    assert "502" in str(excinfo.value)


def test_missing_gh_binary_raises_tracker_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure an unavailable CLI is a tracker error, not a crash."""

    def _boom(cmd: list[str], _: Optional[str]) -> Any:
        raise FileNotFoundError("gh")

    _install(monkeypatch, _boom)

    with pytest.raises(TrackerError):
        GitHubIssueStore(BOARD).comment(12, "hi")


def test_get_board_status(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure the status comes from the configured project's item."""
    fake = _install(monkeypatch, lambda cmd, _: _project_item("In Progress"))

    assert GitHubIssueStore(BOARD).get_board_status(12) == "In Progress"
    cmd = fake.calls[0][0]
    assert "-F" in cmd
    assert cmd[cmd.index("-F") + 1] == "number=12"
    assert "field=Status" in cmd


def test_get_board_status_not_on_board(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure an issue missing from the board has no status."""
    _install(monkeypatch, lambda cmd, _: _project_item(None, on_board=False))

    assert GitHubIssueStore(BOARD).get_board_status(12) is None


def test_get_board_status_ignores_other_projects(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure items from other boards are not mistaken for ours."""
    _install(monkeypatch, lambda cmd, _: _project_item("Done", project_id="PVT_OTHER"))

    assert GitHubIssueStore(BOARD).get_board_status(12) is None


def test_set_board_status_is_idempotent(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure no mutation is sent when the board already shows the target."""
    fake = _install(monkeypatch, lambda cmd, _: _project_item("Review"))

    GitHubIssueStore(BOARD).set_board_status(12, "Review")

    assert len(fake.calls) == 1
    assert "updateProjectV2ItemFieldValue" not in fake.graphql_queries()[0]


def test_set_board_status_sends_option_id(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure a status change writes the configured single-select option."""

    def _respond(cmd: list[str], _: Optional[str]) -> Any:
        if any("updateProjectV2ItemFieldValue" in arg for arg in cmd):
            return {"data": {"updateProjectV2ItemFieldValue": {"projectV2Item": {"id": "ITEM_12"}}}}
        return _project_item("In Progress")

    fake = _install(monkeypatch, _respond)

    GitHubIssueStore(BOARD).set_board_status(12, "Review")

    assert len(fake.calls) == 2
    mutation = fake.calls[1][0]
    assert "option=opt-review" in mutation
    assert "item=ITEM_12" in mutation
    assert "field=FIELD_1" in mutation


def test_set_board_status_adds_missing_item(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure an issue not yet on the board is added before its status is set."""

    def _respond(cmd: list[str], _: Optional[str]) -> Any:
        if any("addProjectV2ItemById" in arg for arg in cmd):
            return {"data": {"addProjectV2ItemById": {"item": {"id": "ITEM_NEW"}}}}
        if any("updateProjectV2ItemFieldValue" in arg for arg in cmd):
            return {"data": {}}
        return _project_item(None, on_board=False)

    fake = _install(monkeypatch, _respond)

    GitHubIssueStore(BOARD).set_board_status(12, "Todo")

    assert len(fake.calls) == 3
    assert "content=ISSUE_12" in fake.calls[1][0]
    assert "item=ITEM_NEW" in fake.calls[2][0]


def test_set_board_status_requires_field_config(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure writes without project ids fail with a config error."""
    _install(monkeypatch, lambda cmd, _: _project_item("Todo"))
    board = BoardConfig(owner="acme", repo="storefront", project_number=4)

    with pytest.raises(ConfigError):
        GitHubIssueStore(board).set_board_status(12, "In Progress")


def test_graphql_errors_raise(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure GraphQL error payloads are not treated as success."""
    _install(monkeypatch, lambda cmd, _: {"errors": [{"message": "Could not resolve to a node"}]})

    with pytest.raises(TrackerError) as excinfo:
        GitHubIssueStore(BOARD).get_board_status(12)

    assert "Could not resolve" in str(excinfo.value)


def test_in_memory_store_contract() -> None:
    """Ensure the in-memory store keeps the adapter's write semantics."""
    store = InMemoryIssueStore([Issue(number=1, title="Sprint1.1 Setup", milestone="Sprint 1")])

    store.set_board_status(1, "Todo")
    store.set_board_status(1, "todo")
    store.add_label(1, "blocked")
    store.add_label(1, "blocked")
    store.remove_label(1, "Blocked")
    store.comment(1, "started")

    assert store.get_board_status(1) == "Todo"
    assert [op for op, _, _ in store.calls] == ["set_board_status", "add_label", "add_label", "remove_label", "comment"]
    assert store.get_issue(1).labels == []
    assert store.comments[1] == ["started"]
    assert [issue.number for issue in store.list_by_milestone("Sprint 1")] == [1]
    assert store.list_by_milestone("Sprint 2") == []


def test_in_memory_store_returns_copies() -> None:
    """Ensure callers cannot mutate stored issues without a write."""
    store = InMemoryIssueStore([Issue(number=1, title="Sprint1.1 Setup", body="- [ ] a\n")])

    issue = store.get_issue(1)
    issue.body = "changed"

    assert store.get_issue(1).body == "- [ ] a\n"


def test_in_memory_store_unknown_issue() -> None:
    """Ensure unknown issues raise a tracker error."""
    with pytest.raises(TrackerError):
        InMemoryIssueStore().get_issue(404)
