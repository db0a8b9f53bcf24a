"""Load the project-board and sprint configuration from `.sprint_runner/`."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .constants import (
    BOARD_CONFIG_FILE,
    DEFAULT_VALIDATION_TIMEOUT_SECONDS,
    SPRINT_CONFIG_FILE,
    STATE_DIR_NAME,
    STATUS_FIELD_NAME,
)
from .errors import ConfigError
from .io_utils import _load_data_with_error


def load_project_config(
    project_dir: Path,
    *,
    board_path: Optional[Path] = None,
    sprint_path: Optional[Path] = None,
) -> tuple[dict[str, Any], str | None]:
    """Load the board and sprint config files.

    Args:
        project_dir: Repository root directory.
        board_path: Optional override for the board config file.
        sprint_path: Optional override for the sprint config file.

    Returns:
        A tuple of `(config, error_message)` where config has the keys
        `board` and `sprint`. Missing files yield empty mappings.
    """
    project_dir = project_dir.resolve()
    state_dir = project_dir / STATE_DIR_NAME
    board_path = board_path or state_dir / BOARD_CONFIG_FILE
    sprint_path = sprint_path or state_dir / SPRINT_CONFIG_FILE

    board, board_err = _load_data_with_error(board_path, {})
    sprint, sprint_err = _load_data_with_error(sprint_path, {})
    errors = [err for err in (board_err, sprint_err) if err]
    if errors:
        return {"board": {}, "sprint": {}}, "; ".join(errors)
    return {"board": board, "sprint": sprint}, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def get_sprint_entry(config: dict[str, Any], sprint_number: int) -> dict[str, Any]:
    """Return the sprint mapping for `sprint_number` (YAML keys may be int or str)."""
    sprints = _get_nested(config, "sprint", "sprints")
    if not isinstance(sprints, dict):
        return {}
    entry = sprints.get(sprint_number)
    if entry is None:
        entry = sprints.get(str(sprint_number))
    return entry if isinstance(entry, dict) else {}


def get_milestone(config: dict[str, Any], sprint_number: int) -> str:
    """Resolve the tracker milestone that groups the sprint's issues."""
    entry = get_sprint_entry(config, sprint_number)
    milestone = entry.get("milestone")
    if isinstance(milestone, str) and milestone.strip():
        return milestone.strip()
    return f"Sprint {sprint_number}"


def get_sprint_name(config: dict[str, Any], sprint_number: int) -> str:
    entry = get_sprint_entry(config, sprint_number)
    name = entry.get("name")
    return str(name) if name else f"Sprint {sprint_number}"


def get_gate_issue(config: dict[str, Any], sprint_number: int) -> Optional[int]:
    raw = get_sprint_entry(config, sprint_number).get("gate_issue")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def get_validation_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the validation block: the command list and its timeout."""
    raw = _get_nested(config, "sprint", "validation")
    raw = raw if isinstance(raw, dict) else {}
    commands = [str(cmd) for cmd in list(raw.get("commands") or []) if str(cmd).strip()]
    timeout = raw.get("timeout_seconds", DEFAULT_VALIDATION_TIMEOUT_SECONDS)
    return {"commands": commands, "timeout_seconds": int(timeout) if timeout else None}


def get_compact_every(config: dict[str, Any]) -> int:
    """Return how many completed tasks trigger a context compaction prompt (0 disables)."""
    raw = _get_nested(config, "sprint", "workflow", "compact_every")
    try:
        return max(int(raw), 0) if raw is not None else 0
    except (TypeError, ValueError):
        return 0


def get_agent_command(config: dict[str, Any]) -> Optional[str]:
    raw = _get_nested(config, "sprint", "agent", "command")
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return None


@dataclass
class BoardConfig:
    """Identifiers of the repository and project board the runner drives."""

    owner: str
    repo: str
    project_id: Optional[str] = None
    project_number: Optional[int] = None
    status_field_id: Optional[str] = None
    status_field_name: str = STATUS_FIELD_NAME
    status_options: dict[str, str] = field(default_factory=dict)

    @property
    def full_repo(self) -> str:
        return f"{self.owner}/{self.repo}"

    def issue_url(self, number: int) -> str:
        return f"https://github.com/{self.full_repo}/issues/{number}"

    def option_id(self, status: str) -> str:
        """Return the single-select option id for a board status value.

        Raises:
            ConfigError: If the status has no configured option id.
        """
        wanted = status.strip().lower()
        for name, option_id in self.status_options.items():
            if str(name).strip().lower() == wanted:
                return str(option_id)
        raise ConfigError(f"No option id configured for board status {status!r}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BoardConfig":
        """Build a board config from the `board.yaml` mapping.

        Raises:
            ConfigError: If the repository owner or name is missing.
        """
        owner = str(data.get("owner") or "").strip()
        repo = str(data.get("repo") or "").strip()
        if "/" in repo and not owner:
            owner, repo = repo.split("/", 1)
        if not owner or not repo:
            raise ConfigError("board config must define 'owner' and 'repo'")

        project = data.get("project") if isinstance(data.get("project"), dict) else {}
        field_cfg = project.get("status_field") if isinstance(project.get("status_field"), dict) else {}
        options = field_cfg.get("options") if isinstance(field_cfg.get("options"), dict) else {}
        number = project.get("number")
        return cls(
            owner=owner,
            repo=repo,
            project_id=project.get("id"),
            project_number=int(number) if number is not None else None,
            status_field_id=field_cfg.get("id"),
            status_field_name=str(field_cfg.get("name") or STATUS_FIELD_NAME),
            status_options={str(k): str(v) for k, v in options.items()},
        )
