"""Test the `sprint-runner` CLI subcommands."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))
sys.path.insert(0, str(PROJECT_ROOT))

from sprint_runner import cli
from sprint_runner.models import Issue
from sprint_runner.tracker import InMemoryIssueStore


SPRINT_YAML = """
sprints:
  2:
    name: Authentication
    milestone: Sprint 2
    gate_issue: 40
"""


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    state_dir = tmp_path / ".sprint_runner"
    state_dir.mkdir()
    (state_dir / "sprint.yaml").write_text(SPRINT_YAML)
    return tmp_path


@pytest.fixture
def store(monkeypatch: pytest.MonkeyPatch) -> InMemoryIssueStore:
    issues = [
        Issue(number=10, title="Sprint2.1 Login form", body="- [x] Create form\n- [ ] Add validation\n", milestone="Sprint 2"),
        Issue(number=11, title="Sprint2.2 Logout", body="- [ ] Add button\n", milestone="Sprint 2"),
        Issue(number=40, title="Sprint2.gate Quality gate", body="- [ ] All tasks reviewed\n", milestone="Sprint 2"),
    ]
    fake = InMemoryIssueStore(issues, {10: "In Progress", 11: "Todo", 40: "Todo"})
    monkeypatch.setattr(cli, "_build_store", lambda config: fake)
    return fake


def _main(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(argv)
    return int(excinfo.value.code or 0)


def test_status_json(project_dir: Path, store: InMemoryIssueStore, capsys: pytest.CaptureFixture[str]) -> None:
    """Ensure `status --json` emits the sprint snapshot."""
    code = _main(["status", "--sprint", "2", "--project-dir", str(project_dir), "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["current"] == 10
    assert payload["has_progress"] is True
    assert payload["counts"]["in_progress"] == 1


def test_status_table(project_dir: Path, store: InMemoryIssueStore, capsys: pytest.CaptureFixture[str]) -> None:
    """Ensure plain `status` renders the task table."""
    code = _main(["status", "--sprint", "2", "--project-dir", str(project_dir)])

    out = capsys.readouterr().out
    assert code == 0
    assert "#10" in out
    assert "has_progress=True" in out


def test_step_returns_gate(project_dir: Path, store: InMemoryIssueStore, capsys: pytest.CaptureFixture[str]) -> None:
    """Ensure `step` prints the waiting gate so the caller can answer it."""
    code = _main(["step", "--sprint", "2", "--project-dir", str(project_dir), "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["result"] == "waiting"
    assert payload["gate"] == "resume_choice"
    assert payload["task"] == 10


def test_step_hold(project_dir: Path, store: InMemoryIssueStore, capsys: pytest.CaptureFixture[str]) -> None:
    """Ensure answering a gate with hold reports the hold."""
    code = _main(
        [
            "step",
            "--sprint",
            "2",
            "--project-dir",
            str(project_dir),
            "--gate",
            "resume_choice",
            "--task",
            "10",
            "--signal",
            "hold",
        ]
    )

    assert code == 0
    assert "Holding" in capsys.readouterr().out


def test_verify_mismatch_exit_code(project_dir: Path, store: InMemoryIssueStore, capsys: pytest.CaptureFixture[str]) -> None:
    """Ensure `verify` exits non-zero when the board disagrees."""
    code = _main(["verify", "--task", "10", "--expected", "Review", "--project-dir", str(project_dir)])

    assert code == 1
    assert "In Progress" in capsys.readouterr().out
    assert _main(["verify", "--task", "10", "--expected", "in progress", "--project-dir", str(project_dir)]) == 0


def test_toggle(project_dir: Path, store: InMemoryIssueStore, capsys: pytest.CaptureFixture[str]) -> None:
    """Ensure `toggle` checks an item and reports missing ones."""
    assert _main(["toggle", "--task", "10", "--item", "Add validation", "--project-dir", str(project_dir)]) == 0
    assert store.get_issue(10).checklist.is_complete()

    assert _main(["toggle", "--task", "10", "--item", "Deploy", "--project-dir", str(project_dir)]) == 1
    assert "Item not found" in capsys.readouterr().out


def test_report_writes_and_posts(project_dir: Path, store: InMemoryIssueStore) -> None:
    """Ensure `report` writes the markdown file and can post it on the gate issue."""
    code = _main(["report", "--sprint", "2", "--project-dir", str(project_dir), "--post"])

    report_path = project_dir / ".sprint_runner" / "reports" / "sprint-2.md"
    assert code == 0
    assert report_path.read_text().startswith("# Authentication completion report")
    assert store.comments[40][0].startswith("# Authentication completion report")


def test_run_interactive_hold(
    project_dir: Path,
    store: InMemoryIssueStore,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Ensure the interactive loop re-prompts on unknown input and stops on hold."""
    answers = iter(["perhaps", "hold"])
    monkeypatch.setattr(cli.Prompt, "ask", lambda *args, **kwargs: next(answers))

    code = _main(["run", "--sprint", "2", "--project-dir", str(project_dir)])

    out = capsys.readouterr().out
    assert code == 0
    assert "Unrecognized reply 'perhaps'" in out
    assert "Holding" in out
    assert store.calls == []


def test_missing_board_config_is_an_error(project_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Ensure a missing board config exits with status 1 and a message."""
    code = _main(["status", "--sprint", "2", "--project-dir", str(project_dir)])

    assert code == 1
    assert "owner" in capsys.readouterr().err


def test_unknown_command() -> None:
    """Ensure an unknown subcommand prints usage and exits 2."""
    assert _main(["launch"]) == 2
