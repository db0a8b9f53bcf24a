"""Build and render the sprint completion report."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from rich.table import Table

from .constants import REMEDIATION_STEPS
from .models import SprintSnapshot, TaskCategory, TaskSnapshot
from .utils import _now_iso


@dataclass
class TaskReportRow:
    number: int
    title: str
    status: Optional[str]
    progress: str
    category: str
    url: Optional[str] = None
    task_id: Optional[str] = None
    is_gate: bool = False


@dataclass
class IncompleteTask:
    number: int
    title: str
    url: Optional[str]
    category: str
    unchecked_items: list[str] = field(default_factory=list)
    remediation: str = ""


@dataclass
class CompletionReport:
    sprint: int
    name: str
    milestone: str
    rows: list[TaskReportRow] = field(default_factory=list)
    incomplete: list[IncompleteTask] = field(default_factory=list)
    gate: Optional[TaskReportRow] = None
    gate_eligible: bool = False
    counts: dict[str, int] = field(default_factory=dict)
    generated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _row(task: TaskSnapshot) -> TaskReportRow:
    return TaskReportRow(
        number=task.number,
        title=task.ref.title,
        status=task.status,
        progress=task.progress_label,
        category=task.category.value,
        url=task.url,
        task_id=task.ref.task_id,
        is_gate=task.ref.is_gate,
    )


def _remediation(task: TaskSnapshot) -> str:
    return REMEDIATION_STEPS.get(task.category.value, REMEDIATION_STEPS["in_progress"])


def build_report(snapshot: SprintSnapshot, *, name: Optional[str] = None) -> CompletionReport:
    """Summarize a sprint snapshot.

    Args:
        snapshot: Fresh snapshot of the sprint.
        name: Human-readable sprint name.

    Returns:
        A report listing every task, each non-gate task that still has
        unchecked items or is not done, and whether the gate task is eligible.
    """
    work = snapshot.work_tasks
    incomplete = [
        IncompleteTask(
            number=task.number,
            title=task.ref.title,
            url=task.url,
            category=task.category.value,
            unchecked_items=list(task.unchecked_items),
            remediation=_remediation(task),
        )
        for task in work
        if task.unchecked_items or task.category != TaskCategory.DONE
    ]
    gate = snapshot.gate
    return CompletionReport(
        sprint=snapshot.sprint,
        name=name or f"Sprint {snapshot.sprint}",
        milestone=snapshot.milestone,
        rows=[_row(task) for task in work],
        incomplete=incomplete,
        gate=_row(gate) if gate else None,
        gate_eligible=all(task.fully_checked for task in work),
        counts=snapshot.counts(),
    )


def render_markdown(report: CompletionReport) -> str:
    lines = [
        f"# {report.name} completion report",
        "",
        f"Milestone: {report.milestone}  ",
        f"Generated: {report.generated_at}",
        "",
        "| Issue | Task | Status | Checklist |",
        "|---|---|---|---|",
    ]
    for row in report.rows:
        link = f"[#{row.number}]({row.url})" if row.url else f"#{row.number}"
        label = f"{row.task_id} {row.title}" if row.task_id and row.task_id not in row.title else row.title
        lines.append(f"| {link} | {label} | {row.status or 'Not on board'} | {row.progress} |")

    lines.extend(["", "## Incomplete tasks", ""])
    if not report.incomplete:
        lines.append("All tasks are fully checked off.")
    for task in report.incomplete:
        link = f"[#{task.number}]({task.url})" if task.url else f"#{task.number}"
        lines.append(f"### {link} {task.title}")
        for item in task.unchecked_items:
            lines.append(f"- [ ] {item}")
        lines.append("")
        lines.append(f"Suggested remediation: {task.remediation}")
        lines.append("")

    lines.extend(["", "## Sprint gate", ""])
    if report.gate is None:
        lines.append("No gate task found for this sprint.")
    elif report.gate_eligible:
        lines.append(f"Gate #{report.gate.number} is eligible: every task checklist is complete.")
    else:
        lines.append(f"Gate #{report.gate.number} is not eligible yet: {len(report.incomplete)} task(s) incomplete.")
    return "\n".join(lines).rstrip() + "\n"


def report_table(report: CompletionReport) -> Table:
    table = Table(title=f"{report.name} ({report.milestone})")
    table.add_column("Issue", justify="right")
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Checklist", justify="right")
    for row in report.rows:
        style = "green" if row.category == TaskCategory.DONE.value else None
        table.add_row(f"#{row.number}", row.title, row.status or "-", row.progress, style=style)
    return table
