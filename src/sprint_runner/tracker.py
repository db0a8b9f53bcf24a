"""Issue tracker adapters.

`GitHubIssueStore` talks to GitHub Issues and a Projects v2 board through the
`gh` CLI; `InMemoryIssueStore` keeps the same contract in a dictionary.
Neither adapter caches or retries: every call is a fresh request and every
body write replaces the whole document.
"""

from __future__ import annotations

import json
import subprocess
from copy import deepcopy
from typing import Any, Iterable, Optional, Protocol

from loguru import logger

from .config import BoardConfig
from .constants import DEFAULT_GH_LIST_LIMIT
from .errors import ConfigError, TrackerError
from .models import BoardStatus, Issue

_ISSUE_FIELDS = "number,title,body,state,labels,url,milestone"

_STATUS_QUERY = """
query($owner: String!, $repo: String!, $number: Int!, $field: String!) {
  repository(owner: $owner, name: $repo) {
    issue(number: $number) {
      id
      projectItems(first: 20) {
        nodes {
          id
          project { id number }
          fieldValueByName(name: $field) {
            ... on ProjectV2ItemFieldSingleSelectValue { name }
          }
        }
      }
    }
  }
}
"""

_ADD_ITEM_MUTATION = """
mutation($project: ID!, $content: ID!) {
  addProjectV2ItemById(input: {projectId: $project, contentId: $content}) {
    item { id }
  }
}
"""

_SET_STATUS_MUTATION = """
mutation($project: ID!, $item: ID!, $field: ID!, $option: String!) {
  updateProjectV2ItemFieldValue(
    input: {projectId: $project, itemId: $item, fieldId: $field, value: {singleSelectOptionId: $option}}
  ) {
    projectV2Item { id }
  }
}
"""


class IssueStore(Protocol):
    """Semantic operations the engine needs from the tracker."""

    def get_issue(self, number: int) -> Issue: ...

    def set_body(self, number: int, body: str) -> None: ...

    def comment(self, number: int, text: str) -> None: ...

    def list_by_milestone(self, milestone: str) -> list[Issue]: ...

    def get_board_status(self, number: int) -> Optional[str]: ...

    def set_board_status(self, number: int, status: str) -> None: ...

    def add_label(self, number: int, label: str) -> None: ...

    def remove_label(self, number: int, label: str) -> None: ...

    def issue_url(self, number: int) -> str: ...


def _same_status(current: Optional[str], target: str) -> bool:
    if not current:
        return False
    parsed_current = BoardStatus.parse(current)
    parsed_target = BoardStatus.parse(target)
    if parsed_current is not None and parsed_target is not None:
        return parsed_current == parsed_target
    return current.strip().lower() == target.strip().lower()


def _issue_from_payload(data: dict[str, Any]) -> Issue:
    labels = []
    for label in list(data.get("labels") or []):
        name = label.get("name") if isinstance(label, dict) else label
        if name:
            labels.append(str(name))
    milestone = data.get("milestone")
    if isinstance(milestone, dict):
        milestone = milestone.get("title")
    return Issue(
        number=int(data.get("number") or 0),
        title=str(data.get("title") or ""),
        body=str(data.get("body") or ""),
        state=str(data.get("state") or "OPEN"),
        labels=labels,
        url=data.get("url"),
        milestone=milestone,
    )


class GitHubIssueStore:
    """Issue store backed by the authenticated `gh` CLI."""

    def __init__(self, board: BoardConfig, *, gh_command: str = "gh", list_limit: int = DEFAULT_GH_LIST_LIMIT):
        self.board = board
        self.gh_command = gh_command
        self.list_limit = list_limit

    def _gh(
        self,
        args: list[str],
        *,
        operation: str,
        number: Optional[int] = None,
        input_text: Optional[str] = None,
    ) -> str:
        cmd = [self.gh_command, *args]
        logger.debug("gh {} (operation={}, issue={})", " ".join(args[:2]), operation, number)
        try:
            result = subprocess.run(
                cmd,
                input=input_text,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise TrackerError(operation, number, f"could not run {self.gh_command}: {exc}") from exc
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip() or f"exit code {result.returncode}"
            raise TrackerError(operation, number, detail[:500])
        return result.stdout

    def _gh_json(self, args: list[str], *, operation: str, number: Optional[int] = None) -> Any:
        out = self._gh(args, operation=operation, number=number)
        try:
            return json.loads(out or "null")
        except json.JSONDecodeError as exc:
            raise TrackerError(operation, number, f"invalid JSON from gh: {exc}") from exc

    def _graphql(
        self,
        query: str,
        variables: dict[str, Any],
        *,
        operation: str,
        number: Optional[int] = None,
    ) -> dict[str, Any]:
        args = ["api", "graphql", "-f", f"query={query}"]
        for key, value in variables.items():
            # -F converts ints; -f keeps strings as-is
            flag = "-F" if isinstance(value, int) else "-f"
            args.extend([flag, f"{key}={value}"])
        data = self._gh_json(args, operation=operation, number=number)
        if not isinstance(data, dict):
            raise TrackerError(operation, number, "unexpected GraphQL response")
        if data.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in data["errors"] if err)
            raise TrackerError(operation, number, messages or "GraphQL error")
        return data.get("data") or {}

    def issue_url(self, number: int) -> str:
        return self.board.issue_url(number)

    def get_issue(self, number: int) -> Issue:
        data = self._gh_json(
            ["issue", "view", str(number), "--repo", self.board.full_repo, "--json", _ISSUE_FIELDS],
            operation="get_issue",
            number=number,
        )
        if not isinstance(data, dict):
            raise TrackerError("get_issue", number, "unexpected response")
        return _issue_from_payload(data)

    def set_body(self, number: int, body: str) -> None:
        self._gh(
            ["issue", "edit", str(number), "--repo", self.board.full_repo, "--body-file", "-"],
            operation="set_body",
            number=number,
            input_text=body,
        )
        logger.debug("Wrote body of #{} ({} chars)", number, len(body))

    def comment(self, number: int, text: str) -> None:
        self._gh(
            ["issue", "comment", str(number), "--repo", self.board.full_repo, "--body-file", "-"],
            operation="comment",
            number=number,
            input_text=text,
        )

    def list_by_milestone(self, milestone: str) -> list[Issue]:
        data = self._gh_json(
            [
                "issue",
                "list",
                "--repo",
                self.board.full_repo,
                "--milestone",
                milestone,
                "--state",
                "all",
                "--limit",
                str(self.list_limit),
                "--json",
                _ISSUE_FIELDS,
            ],
            operation="list_by_milestone",
        )
        issues = [_issue_from_payload(item) for item in list(data or []) if isinstance(item, dict)]
        # Plan-to-issue generation creates tasks in sprint order.
        return sorted(issues, key=lambda issue: issue.number)

    def _project_item(self, number: int) -> tuple[Optional[str], Optional[str], Optional[str]]:
        """Return `(issue_node_id, project_item_id, status)` for the configured board."""
        data = self._graphql(
            _STATUS_QUERY,
            {
                "owner": self.board.owner,
                "repo": self.board.repo,
                "number": number,
                "field": self.board.status_field_name,
            },
            operation="get_board_status",
            number=number,
        )
        return self._parse_project_item(data)

    def _parse_project_item(self, data: dict[str, Any]) -> tuple[Optional[str], Optional[str], Optional[str]]:
        issue = ((data.get("repository") or {}).get("issue")) or {}
        issue_id = issue.get("id")
        nodes = ((issue.get("projectItems") or {}).get("nodes")) or []
        for node in nodes:
            if not isinstance(node, dict):
                continue
            project = node.get("project") or {}
            if self.board.project_id and project.get("id") != self.board.project_id:
                continue
            if (
                not self.board.project_id
                and self.board.project_number is not None
                and project.get("number") != self.board.project_number
            ):
                continue
            value = node.get("fieldValueByName") or {}
            status = value.get("name") if isinstance(value, dict) else None
            return issue_id, node.get("id"), status
        return issue_id, None, None

    def get_board_status(self, number: int) -> Optional[str]:
        _, _, status = self._project_item(number)
        return status

    def set_board_status(self, number: int, status: str) -> None:
        issue_id, item_id, current = self._project_item(number)
        if _same_status(current, status):
            logger.debug("#{} already at {!r}; no board write", number, status)
            return
        if not self.board.project_id or not self.board.status_field_id:
            raise ConfigError("board config must define project.id and project.status_field.id to set status")
        option = self.board.option_id(status)

        if item_id is None:
            if not issue_id:
                raise TrackerError("set_board_status", number, "issue not found")
            added = self._graphql(
                _ADD_ITEM_MUTATION,
                {"project": self.board.project_id, "content": issue_id},
                operation="add_to_board",
                number=number,
            )
            item_id = ((added.get("addProjectV2ItemById") or {}).get("item") or {}).get("id")
            if not item_id:
                raise TrackerError("add_to_board", number, "no project item id returned")
            logger.info("Added #{} to the project board", number)

        self._graphql(
            _SET_STATUS_MUTATION,
            {
                "project": self.board.project_id,
                "item": item_id,
                "field": self.board.status_field_id,
                "option": option,
            },
            operation="set_board_status",
            number=number,
        )
        logger.info("#{} board status: {!r} -> {!r}", number, current, status)

    def add_label(self, number: int, label: str) -> None:
        self._gh(
            ["issue", "edit", str(number), "--repo", self.board.full_repo, "--add-label", label],
            operation="add_label",
            number=number,
        )

    def remove_label(self, number: int, label: str) -> None:
        self._gh(
            ["issue", "edit", str(number), "--repo", self.board.full_repo, "--remove-label", label],
            operation="remove_label",
            number=number,
        )


class InMemoryIssueStore:
    """Dictionary-backed issue store with the same contract as the GitHub adapter."""

    def __init__(
        self,
        issues: Iterable[Issue] = (),
        statuses: Optional[dict[int, Optional[str]]] = None,
        *,
        base_url: str = "https://github.com/example/repo/issues",
    ):
        self.issues: dict[int, Issue] = {issue.number: deepcopy(issue) for issue in issues}
        self.statuses: dict[int, Optional[str]] = dict(statuses or {})
        self.comments: dict[int, list[str]] = {}
        self.calls: list[tuple[str, int, Any]] = []
        self.base_url = base_url.rstrip("/")

    def _require(self, operation: str, number: int) -> Issue:
        issue = self.issues.get(number)
        if issue is None:
            raise TrackerError(operation, number, "issue not found")
        return issue

    def issue_url(self, number: int) -> str:
        return f"{self.base_url}/{number}"

    def get_issue(self, number: int) -> Issue:
        return deepcopy(self._require("get_issue", number))

    def set_body(self, number: int, body: str) -> None:
        self._require("set_body", number).body = body
        self.calls.append(("set_body", number, body))

    def comment(self, number: int, text: str) -> None:
        self._require("comment", number)
        self.comments.setdefault(number, []).append(text)
        self.calls.append(("comment", number, text))

    def list_by_milestone(self, milestone: str) -> list[Issue]:
        return [deepcopy(issue) for issue in self.issues.values() if issue.milestone == milestone]

    def get_board_status(self, number: int) -> Optional[str]:
        self._require("get_board_status", number)
        return self.statuses.get(number)

    def set_board_status(self, number: int, status: str) -> None:
        self._require("set_board_status", number)
        if _same_status(self.statuses.get(number), status):
            return
        self.statuses[number] = status
        self.calls.append(("set_board_status", number, status))

    def add_label(self, number: int, label: str) -> None:
        issue = self._require("add_label", number)
        if not issue.has_label(label):
            issue.labels.append(label)
        self.calls.append(("add_label", number, label))

    def remove_label(self, number: int, label: str) -> None:
        issue = self._require("remove_label", number)
        issue.labels = [name for name in issue.labels if name.lower() != label.lower()]
        self.calls.append(("remove_label", number, label))
