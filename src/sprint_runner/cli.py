#!/usr/bin/env python3
"""Provide the CLI entrypoint and subcommands for Sprint Runner.

Drives a sprint's issues across the project board, stopping at every human
confirmation gate.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from .config import (
    BoardConfig,
    get_agent_command,
    get_gate_issue,
    get_sprint_name,
    get_validation_config,
    load_project_config,
)
from .constants import LOGS_DIR, REPORTS_DIR, STATE_DIR_NAME
from .controller import Gate, SprintController
from .detector import SprintStateDetector
from .errors import ConfigError, SprintRunnerError
from .io_utils import _atomic_write_text
from .lifecycle import TaskLifecycleController
from .models import Held, SprintCompleted, SprintSnapshot, StepResult, TaskCategory, Verified, WaitingForConfirmation
from .report import build_report, render_markdown, report_table
from .signals import parse_signal
from .sync import ChecklistSynchronizer
from .tracker import GitHubIssueStore, IssueStore
from .validation import ValidationRunner
from .verifier import StatusVerifier
from .worker import CommandWorker, ConsoleWorker, TaskWorker


def _configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )


# Initialize with default level; will be reconfigured in main() based on CLI args
_configure_logging()

_CATEGORY_STYLES = {
    TaskCategory.DONE: "green",
    TaskCategory.IN_PROGRESS: "yellow",
    TaskCategory.NOT_STARTED: "dim",
    TaskCategory.BLOCKED: "red",
}


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path("."),
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "--board-config",
        type=Path,
        default=None,
        help=f"Board config file (default: {STATE_DIR_NAME}/board.yaml)",
    )
    parser.add_argument(
        "--sprint-config",
        type=Path,
        default=None,
        help=f"Sprint config file (default: {STATE_DIR_NAME}/sprint.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for stderr output (default: INFO)",
    )


def _build_status_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sprint Runner - show the state of a sprint as the board sees it")
    _add_common_args(parser)
    parser.add_argument("--sprint", type=int, required=True, help="Sprint number")
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    return parser


def _build_run_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sprint Runner - drive a sprint interactively")
    _add_common_args(parser)
    parser.add_argument("--sprint", type=int, required=True, help="Sprint number")
    return parser


def _build_step_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Sprint Runner - advance a sprint by one gate (non-interactive)",
    )
    _add_common_args(parser)
    parser.add_argument("--sprint", type=int, required=True, help="Sprint number")
    parser.add_argument(
        "--gate",
        default=None,
        choices=[gate.value for gate in Gate],
        help="Gate returned by the previous step",
    )
    parser.add_argument("--task", type=int, default=None, help="Task issue number returned by the previous step")
    parser.add_argument("--signal", default=None, help="Reply to the gate (yes, hold, verify, skip: <reason>, ...)")
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    return parser


def _build_verify_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sprint Runner - check an issue's board status")
    _add_common_args(parser)
    parser.add_argument("--task", type=int, required=True, help="Issue number")
    parser.add_argument("--expected", required=True, help="Expected board status, e.g. Review")
    return parser


def _build_toggle_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sprint Runner - check or uncheck one checklist item")
    _add_common_args(parser)
    parser.add_argument("--task", type=int, required=True, help="Issue number")
    parser.add_argument("--item", required=True, help="Exact checklist item text")
    parser.add_argument("--uncheck", action="store_true", help="Uncheck the item instead of checking it")
    return parser


def _build_report_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sprint Runner - write the sprint completion report")
    _add_common_args(parser)
    parser.add_argument("--sprint", type=int, required=True, help="Sprint number")
    parser.add_argument("--output", type=Path, default=None, help="Report path (default: .sprint_runner/reports/)")
    parser.add_argument("--post", action="store_true", help="Also post the report as a comment on the gate issue")
    return parser


def _load_config(args: argparse.Namespace) -> dict[str, Any]:
    config, err = load_project_config(
        args.project_dir,
        board_path=args.board_config,
        sprint_path=args.sprint_config,
    )
    if err:
        raise ConfigError(err)
    return config


def _build_store(config: dict[str, Any]) -> IssueStore:
    return GitHubIssueStore(BoardConfig.from_dict(config.get("board") or {}))


def _build_worker(config: dict[str, Any], project_dir: Path, console: Console) -> TaskWorker:
    command = get_agent_command(config)
    if command is None:
        return ConsoleWorker(console)
    timeout = get_validation_config(config)["timeout_seconds"]
    try:
        return CommandWorker(
            command,
            project_dir,
            log_dir=project_dir / STATE_DIR_NAME / LOGS_DIR / "agent",
            timeout_seconds=timeout,
        )
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


def _build_controller(
    config: dict[str, Any],
    store: IssueStore,
    project_dir: Path,
    console: Console,
) -> SprintController:
    validation = get_validation_config(config)
    validator = ValidationRunner(
        project_dir,
        validation["commands"],
        log_dir=project_dir / STATE_DIR_NAME / LOGS_DIR / "validation",
        timeout_seconds=validation["timeout_seconds"],
    )
    lifecycle = TaskLifecycleController(store, _build_worker(config, project_dir, console), validator)
    return SprintController(store, lifecycle, config)


def _snapshot_table(snapshot: SprintSnapshot) -> Table:
    table = Table(title=f"Sprint {snapshot.sprint} ({snapshot.milestone})")
    table.add_column("Issue", justify="right")
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Checklist", justify="right")
    table.add_column("State")
    for task in snapshot.tasks:
        marker = " (gate)" if task.ref.is_gate else ""
        current = " *" if snapshot.current is not None and task.number == snapshot.current.number else ""
        table.add_row(
            f"#{task.number}",
            f"{task.ref.title}{marker}",
            task.status or "-",
            task.progress_label,
            f"{task.category.value}{current}",
            style=_CATEGORY_STYLES.get(task.category),
        )
    return table


def _status_command(args: argparse.Namespace) -> int:
    config = _load_config(args)
    store = _build_store(config)
    snapshot = SprintStateDetector(store, config).detect(args.sprint)
    if args.json:
        sys.stdout.write(json.dumps(snapshot.to_dict(), indent=2, sort_keys=True) + "\n")
        return 0
    console = Console()
    console.print(_snapshot_table(snapshot))
    counts = snapshot.counts()
    console.print(
        f"done={counts['done']} in_progress={counts['in_progress']} "
        f"not_started={counts['not_started']} blocked={counts['blocked']} "
        f"has_progress={snapshot.has_progress}"
    )
    return 0


def _report_path(project_dir: Path, sprint: int, output: Optional[Path] = None) -> Path:
    return output or project_dir / STATE_DIR_NAME / REPORTS_DIR / f"sprint-{sprint}.md"


def _finish(console: Console, result: SprintCompleted, project_dir: Path) -> int:
    path = _report_path(project_dir, result.sprint)
    _atomic_write_text(path, render_markdown(result.report))
    console.print(report_table(result.report))
    if result.report.incomplete:
        console.print(f"[yellow]{len(result.report.incomplete)} task(s) incomplete[/yellow]")
    console.print(f"Report: {path}")
    return 0


def _show_waiting(console: Console, waiting: WaitingForConfirmation) -> None:
    title = f"{waiting.gate}" + (f" · #{waiting.task}" if waiting.task is not None else "")
    body = waiting.message
    tail = waiting.context.get("output_tail")
    if tail:
        body += f"\n\n{tail}"
    console.print(Panel(body, title=title))


def _run_command(args: argparse.Namespace) -> int:
    project_dir = args.project_dir.resolve()
    config = _load_config(args)
    console = Console()
    store = _build_store(config)
    controller = _build_controller(config, store, project_dir, console)

    result: StepResult = controller.run(args.sprint)
    while isinstance(result, WaitingForConfirmation):
        _show_waiting(console, result)
        answer = Prompt.ask(f"[bold]{' / '.join(result.allowed)}[/bold]")
        parsed = parse_signal(answer)
        if parsed.signal.value not in result.allowed:
            console.print(f"[red]Unrecognized reply {answer!r}.[/red]")
            continue
        result = controller.run(args.sprint, answer, gate=result.gate, task=result.task)

    if isinstance(result, Held):
        console.print(f"[yellow]{result.message}[/yellow]")
        return 0
    return _finish(console, result, project_dir)


def _step_command(args: argparse.Namespace) -> int:
    project_dir = args.project_dir.resolve()
    config = _load_config(args)
    console = Console(stderr=True)
    store = _build_store(config)
    controller = _build_controller(config, store, project_dir, console)
    result = controller.run(args.sprint, args.signal, gate=args.gate, task=args.task)
    if isinstance(result, SprintCompleted):
        _atomic_write_text(_report_path(project_dir, result.sprint), render_markdown(result.report))

    if args.json:
        sys.stdout.write(json.dumps(result.to_dict(), indent=2, sort_keys=True) + "\n")
        return 0
    if isinstance(result, WaitingForConfirmation):
        sys.stdout.write(f"[{result.gate}] {result.message}\n")
        sys.stdout.write(f"Reply with: --gate {result.gate}")
        if result.task is not None:
            sys.stdout.write(f" --task {result.task}")
        sys.stdout.write(f" --signal <{'|'.join(result.allowed)}>\n")
    elif isinstance(result, Held):
        sys.stdout.write(f"{result.message}\n")
    else:
        sys.stdout.write(render_markdown(result.report))
    return 0


def _verify_command(args: argparse.Namespace) -> int:
    config = _load_config(args)
    check = StatusVerifier(_build_store(config)).verify(args.task, args.expected)
    if isinstance(check, Verified):
        sys.stdout.write(f"#{args.task} is {check.status}\n")
        return 0
    sys.stdout.write(f"#{args.task}: {check.describe()}\n")
    return 1


def _toggle_command(args: argparse.Namespace) -> int:
    config = _load_config(args)
    result = ChecklistSynchronizer(_build_store(config)).toggle_item(args.task, args.item, not args.uncheck)
    if not result.found:
        sys.stdout.write(f"Item not found in #{args.task}: {args.item}\n")
        return 1
    state = "unchecked" if args.uncheck else "checked"
    if result.changed:
        sys.stdout.write(f"#{args.task}: {state} {args.item!r}\n")
    else:
        sys.stdout.write(f"#{args.task}: {args.item!r} already {state}\n")
    return 0


def _report_command(args: argparse.Namespace) -> int:
    project_dir = args.project_dir.resolve()
    config = _load_config(args)
    store = _build_store(config)
    snapshot = SprintStateDetector(store, config).detect(args.sprint)
    report = build_report(snapshot, name=get_sprint_name(config, args.sprint))
    markdown = render_markdown(report)
    path = _report_path(project_dir, args.sprint, args.output)
    _atomic_write_text(path, markdown)
    sys.stdout.write(f"Report written to {path}\n")

    if args.post:
        gate = report.gate.number if report.gate else get_gate_issue(config, args.sprint)
        if gate is None:
            sys.stdout.write("No gate issue found; report not posted\n")
            return 1
        store.comment(gate, markdown)
        sys.stdout.write(f"Report posted on #{gate}\n")
    return 0


_COMMANDS = {
    "status": (_build_status_parser, _status_command),
    "run": (_build_run_parser, _run_command),
    "step": (_build_step_parser, _step_command),
    "verify": (_build_verify_parser, _verify_command),
    "toggle": (_build_toggle_parser, _toggle_command),
    "report": (_build_report_parser, _report_command),
}


def main(argv: list[str] | None = None) -> None:
    """Run the `sprint-runner` CLI.

    Args:
        argv: Optional argument list (excluding the executable name). When omitted,
            uses `sys.argv[1:]`.

    Raises:
        SystemExit: Raised to return a process exit code for CLI subcommands.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] not in _COMMANDS:
        sys.stderr.write(f"usage: sprint-runner {{{','.join(_COMMANDS)}}} [options]\n")
        raise SystemExit(2)

    build_parser, command = _COMMANDS[argv[0]]
    args = build_parser().parse_args(argv[1:])
    _configure_logging(args.log_level)
    try:
        code = command(args)
    except SprintRunnerError as exc:
        logger.error("{}", exc)
        sys.stderr.write(f"error: {exc}\n")
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        sys.stderr.write("\nInterrupted; re-run to resume from the board state\n")
        raise SystemExit(130)
    raise SystemExit(code)


if __name__ == "__main__":
    main()
