"""Run the configured validation commands (build, lint, type-check) for a task."""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Optional

from loguru import logger

from .constants import DEFAULT_LOG_TAIL_CHARS
from .models import CommandResult
from .utils import _tail

_SLUG_RE = re.compile(r"[^a-zA-Z0-9]+")


def _slug(command: str) -> str:
    return _SLUG_RE.sub("-", command).strip("-")[:40] or "command"


def _read_log_tail(log_path: Path, max_chars: int) -> str:
    try:
        text = log_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""
    return _tail(text, max_chars)


def _run_command(
    command: str,
    project_dir: Path,
    log_path: Path,
    *,
    timeout_seconds: Optional[int] = None,
) -> CommandResult:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(log_path, "w", encoding="utf-8") as handle:
        try:
            result = subprocess.run(
                command,
                cwd=project_dir,
                shell=True,
                stdout=handle,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            handle.write(f"\n[sprint-runner] Command timed out after {timeout_seconds}s\n")
            return CommandResult(command=command, exit_code=124, log_path=str(log_path), timed_out=True)
    return CommandResult(command=command, exit_code=result.returncode, log_path=str(log_path))


class ValidationRunner:
    """Execute validation commands in order and stop at the first failure."""

    def __init__(
        self,
        project_dir: Path,
        commands: list[str],
        *,
        log_dir: Path,
        timeout_seconds: Optional[int] = None,
        max_tail_chars: int = DEFAULT_LOG_TAIL_CHARS,
    ):
        self.project_dir = project_dir
        self.commands = list(commands)
        self.log_dir = log_dir
        self.timeout_seconds = timeout_seconds
        self.max_tail_chars = max_tail_chars

    def run(self, number: int) -> list[CommandResult]:
        """Run every command for issue `number`.

        Returns:
            One result per command that ran. An empty command list passes.
        """
        results: list[CommandResult] = []
        for idx, command in enumerate(self.commands, 1):
            log_path = self.log_dir / f"issue-{number}" / f"{idx:02d}-{_slug(command)}.log"
            logger.info("Validating #{}: {}", number, command)
            result = _run_command(command, self.project_dir, log_path, timeout_seconds=self.timeout_seconds)
            result.output_tail = _read_log_tail(log_path, self.max_tail_chars)
            results.append(result)
            if not result.passed:
                logger.warning(
                    "Validation failed for #{}: {!r} exited {}{}",
                    number,
                    command,
                    result.exit_code,
                    " (timed out)" if result.timed_out else "",
                )
                break
        return results
