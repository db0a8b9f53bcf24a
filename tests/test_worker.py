"""Test the checklist item workers."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))
sys.path.insert(0, str(PROJECT_ROOT))

from sprint_runner import worker as worker_module
from sprint_runner.models import Issue
from sprint_runner.worker import CommandWorker, ConsoleWorker, build_item_prompt


ISSUE = Issue(number=12, title="Sprint2.3 Logout", body="## Tasks\n- [ ] Add logout button\n")


def test_build_item_prompt_names_single_item() -> None:
    """Ensure the prompt scopes the agent to one checklist item."""
    prompt = build_item_prompt(ISSUE, "Add logout button")

    assert "#12" in prompt
    assert "Add logout button" in prompt
    assert ISSUE.body in prompt


def test_command_worker_requires_prompt_input(tmp_path: Path) -> None:
    """Ensure agent commands must accept the prompt somehow."""
    with pytest.raises(ValueError, match="prompt_file"):
        CommandWorker("codex exec", tmp_path, log_dir=tmp_path / "logs")


def test_command_worker_prompt_file(tmp_path: Path) -> None:
    """Ensure `{prompt_file}` receives the written prompt path."""
    worker = CommandWorker("cat {prompt_file}", tmp_path, log_dir=tmp_path / "logs")

    result = worker.perform(ISSUE, "Add logout button")

    assert result.ok
    prompt_files = list((tmp_path / "logs" / "issue-12").glob("*.prompt.txt"))
    assert len(prompt_files) == 1
    log_text = (tmp_path / "logs" / "issue-12" / "Add-logout-button.log").read_text()
    assert "Complete exactly this checklist item" in log_text


def test_command_worker_stdin(tmp_path: Path) -> None:
    """Ensure a bare `-` pipes the prompt through stdin."""
    worker = CommandWorker("cat -", tmp_path, log_dir=tmp_path / "logs")

    result = worker.perform(ISSUE, "Add logout button")

    assert result.ok
    assert "Add logout button" in (tmp_path / "logs" / "issue-12" / "Add-logout-button.log").read_text()


@pytest.mark.parametrize("body", ["User's login\n- [ ] Add form\n", "Don't break the user's session\n- [ ] Add form\n"])
def test_command_worker_inline_prompt_keeps_quotes(tmp_path: Path, body: str) -> None:
    """Ensure `{prompt}` passes issue text with apostrophes through as one argument."""
    issue = Issue(number=12, title="Sprint2.3 Logout", body=body)
    worker = CommandWorker("echo {prompt}", tmp_path, log_dir=tmp_path / "logs")

    result = worker.perform(issue, "Add form")

    assert result.ok
    log_text = (tmp_path / "logs" / "issue-12" / "Add-form.log").read_text()
    assert body.splitlines()[0] in log_text


def test_command_worker_unknown_placeholder_fails_item(tmp_path: Path) -> None:
    """Ensure a template with an unknown placeholder fails the item instead of raising."""
    worker = CommandWorker("cat {prompt_file} {model}", tmp_path, log_dir=tmp_path / "logs")

    result = worker.perform(ISSUE, "Add logout button")

    assert not result.ok
    assert "could not be formatted" in result.detail


def test_command_worker_failure(tmp_path: Path) -> None:
    """Ensure a non-zero exit is reported as incomplete work."""
    worker = CommandWorker("false {prompt_file}", tmp_path, log_dir=tmp_path / "logs")

    result = worker.perform(ISSUE, "Add logout button")

    assert not result.ok
    assert "exited 1" in result.detail


def test_command_worker_missing_binary(tmp_path: Path) -> None:
    """Ensure a missing agent binary fails the item instead of raising."""
    worker = CommandWorker("no-such-agent-binary {prompt_file}", tmp_path, log_dir=tmp_path / "logs")

    result = worker.perform(ISSUE, "Add logout button")

    assert not result.ok
    assert "Could not start agent" in result.detail


def test_console_worker(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure the console worker maps the operator's answer to a result."""
    answers = iter(["done", "hold"])
    monkeypatch.setattr(worker_module.Prompt, "ask", lambda *args, **kwargs: next(answers))
    console_worker = ConsoleWorker()

    assert console_worker.perform(ISSUE, "Add logout button").ok
    held = console_worker.perform(ISSUE, "Add logout button")
    assert not held.ok
    assert held.detail == "Held by operator"
