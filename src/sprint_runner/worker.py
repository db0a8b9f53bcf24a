"""Workers that carry out a single checklist item of a task.

The work itself (generating components, writing tests, ...) belongs to an
external agent. The runner only needs to know whether the item finished so
it can check it off before moving to the next one.
"""

from __future__ import annotations

import re
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from loguru import logger
from rich.console import Console
from rich.prompt import Prompt

from .constants import DEFAULT_LOG_TAIL_CHARS
from .models import Issue
from .utils import _tail


@dataclass
class WorkResult:
    ok: bool
    detail: str = ""


class TaskWorker(Protocol):
    def perform(self, issue: Issue, item: str) -> WorkResult: ...


def build_item_prompt(issue: Issue, item: str) -> str:
    return (
        f"You are working on issue #{issue.number}: {issue.title}\n\n"
        f"Complete exactly this checklist item and nothing else:\n  {item}\n\n"
        "Do not edit the issue or its checklist; the runner checks the item off when you finish.\n\n"
        f"Issue description:\n{issue.body}\n"
    )


_SLUG_RE = re.compile(r"[^a-zA-Z0-9]+")


class CommandWorker:
    """Run an agent CLI once per checklist item.

    The command may reference `{prompt_file}`, `{prompt}` or `{project_dir}`,
    or contain a bare `-` to receive the prompt on stdin.
    """

    def __init__(
        self,
        command: str,
        project_dir: Path,
        *,
        log_dir: Path,
        timeout_seconds: Optional[int] = None,
    ):
        uses_placeholder = "{prompt_file}" in command or "{prompt}" in command
        if not uses_placeholder and "-" not in shlex.split(command):
            raise ValueError("Agent command must include {prompt_file}, {prompt}, or '-' to accept stdin input.")
        self.command = command
        self.project_dir = project_dir
        self.log_dir = log_dir
        self.timeout_seconds = timeout_seconds

    def perform(self, issue: Issue, item: str) -> WorkResult:
        prompt = build_item_prompt(issue, item)
        run_dir = self.log_dir / f"issue-{issue.number}"
        run_dir.mkdir(parents=True, exist_ok=True)
        slug = _SLUG_RE.sub("-", item).strip("-")[:40] or "item"
        prompt_path = run_dir / f"{slug}.prompt.txt"
        prompt_path.write_text(prompt, encoding="utf-8")

        template = shlex.split(self.command)
        try:
            # Placeholders fill whole arguments, so prompt text is never re-parsed.
            argv = [
                arg.format(prompt_file=str(prompt_path), prompt=prompt, project_dir=str(self.project_dir))
                for arg in template
            ]
        except (KeyError, IndexError, ValueError) as exc:
            logger.error("Agent command {!r} could not be formatted: {}", self.command, exc)
            return WorkResult(ok=False, detail=f"Agent command could not be formatted: {exc}")

        stdin_text = prompt if "-" in template else None
        logger.info("Agent working on #{}: {}", issue.number, item)
        try:
            result = subprocess.run(
                argv,
                cwd=self.project_dir,
                input=stdin_text,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            return WorkResult(ok=False, detail=f"Agent timed out after {self.timeout_seconds}s")
        except OSError as exc:
            return WorkResult(ok=False, detail=f"Could not start agent: {exc}")

        output = (result.stdout or "") + (result.stderr or "")
        (run_dir / f"{slug}.log").write_text(output, encoding="utf-8")
        if result.returncode != 0:
            return WorkResult(ok=False, detail=f"Agent exited {result.returncode}: {_tail(output, DEFAULT_LOG_TAIL_CHARS)}")
        return WorkResult(ok=True, detail=_tail(output, 200))


class ConsoleWorker:
    """Ask the human at the terminal to confirm each item once it is done."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def perform(self, issue: Issue, item: str) -> WorkResult:
        self.console.print(f"\n[bold]#{issue.number}[/bold] {issue.title}")
        self.console.print(f"  [cyan]☐ {item}[/cyan]")
        answer = Prompt.ask("Type 'done' when finished or 'hold' to stop", choices=["done", "hold"], default="done")
        if answer == "done":
            return WorkResult(ok=True)
        return WorkResult(ok=False, detail="Held by operator")
