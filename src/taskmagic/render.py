"""Rich renderables for the dashboard and the one-shot CLI commands."""

from __future__ import annotations

from rich.console import Group
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from taskmagic.tasks.model import Plan, ProjectGraph, Task, TaskPriority, TaskStatus
from taskmagic.view import (
    Breadcrumbs,
    ProjectStats,
    ViewResult,
    blocking_dependencies,
    dependencies_of,
    dependents_of,
)

STATUS_STYLE: dict[TaskStatus, tuple[str, str]] = {
    TaskStatus.COMPLETED: ("done", "green"),
    TaskStatus.INPROGRESS: ("in progress", "yellow"),
    TaskStatus.PENDING: ("pending", "grey50"),
    TaskStatus.FAILED: ("failed", "red"),
}

PRIORITY_STYLE: dict[TaskPriority, str] = {
    TaskPriority.CRITICAL: "bold red",
    TaskPriority.HIGH: "yellow",
    TaskPriority.MEDIUM: "cyan",
    TaskPriority.LOW: "grey50",
}

TITLE_WIDTH = 40


def status_text(status: TaskStatus) -> Text:
    label, style = STATUS_STYLE[status]
    return Text(label, style=style)


def priority_text(priority: TaskPriority) -> Text:
    return Text(priority.value, style=PRIORITY_STYLE[priority])


def truncate(text: str, max_len: int = TITLE_WIDTH) -> str:
    return text if len(text) <= max_len else text[: max_len - 3] + "..."


def format_dependencies(deps: tuple[str, ...]) -> str:
    return ", ".join(deps) if deps else "None"


def progress_bar(completed: int, total: int, width: int = 20) -> str:
    filled = round(completed / total * width) if total else 0
    return "█" * filled + "░" * (width - filled)


def health_label(percent: int, blocked: int) -> Text:
    if percent >= 80 and blocked == 0:
        return Text("Excellent", style="green")
    if percent >= 60 and blocked <= 2:
        return Text("Good", style="yellow")
    if percent >= 40 and blocked <= 5:
        return Text("Fair", style="yellow")
    return Text("Needs Attention", style="red")


def task_table(view: ViewResult) -> Table:
    table = Table(title=f"Tasks ({len(view.tasks)})", expand=True)
    table.add_column("ID", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Priority", no_wrap=True)
    table.add_column("Title")
    table.add_column("Dependencies")
    for t in view.tasks:
        table.add_row(
            Text(t.id),
            status_text(t.status),
            priority_text(t.priority),
            Text(truncate(t.title)),
            Text(format_dependencies(t.dependencies)),
        )
    return table


def summary_panel(stats: ProjectStats, graph: ProjectGraph) -> Panel:
    s = stats.by_status
    p = stats.by_priority
    lines = Text.assemble(
        ("Tasks Progress: ", "bold"),
        progress_bar(stats.completed, stats.total),
        f" {stats.completion_percent}%\n",
        ("Done: ", ""), (str(s.get(TaskStatus.COMPLETED, 0)), "green"),
        "  In Progress: ", (str(s.get(TaskStatus.INPROGRESS, 0)), "yellow"),
        "  Pending: ", (str(s.get(TaskStatus.PENDING, 0)), "grey50"),
        "  Failed: ", (str(s.get(TaskStatus.FAILED, 0)), "red"),
        "\n\n",
        ("Priority Breakdown: ", "bold"),
        "Critical: ", (str(p.get(TaskPriority.CRITICAL, 0)), "red"),
        "  High: ", (str(p.get(TaskPriority.HIGH, 0)), "yellow"),
        "  Medium: ", (str(p.get(TaskPriority.MEDIUM, 0)), "cyan"),
        "  Low: ", (str(p.get(TaskPriority.LOW, 0)), "grey50"),
        "\n\n",
        ("Project Health: ", "bold"),
        health_label(stats.completion_percent, stats.blocked),
        "\nNext Available: ", (str(stats.available), "green"),
        "  Blocked: ", (str(stats.blocked), "red"),
    )
    if graph.cycles:
        lines.append(f"\nDependency cycles: {len(graph.cycles)}", style="bold red")
    if graph.warnings:
        lines.append(f"\nSkipped files: {len(graph.warnings)}", style="yellow")
    return Panel(lines, title=f"Project: {escape(graph.root_path.name or str(graph.root_path))}")


def _task_line(index: int, t: Task) -> Text:
    return Text.assemble(f"{index}. [{t.id}] {t.title} (", status_text(t.status), ")")


def task_detail(graph: ProjectGraph, task: Task, trail: Breadcrumbs | None = None) -> Group:
    parts: list = []
    if trail is not None and len(trail) > 1:
        parts.append(Text(" > ".join(trail.ids), style="dim"))

    header = Text.assemble(
        (f"Task {task.id}: {task.title}\n", "bold"),
        "Status: ", status_text(task.status),
        "  Priority: ", priority_text(task.priority),
        f"  Feature: {task.feature or 'No feature'}\n",
        f"Agent: {task.assigned_agent or 'Unassigned'}\n",
        f"Created: {task.created_at or '-'}  ",
        f"Started: {task.started_at or 'Not started'}  ",
        f"Completed: {task.completed_at or 'Not completed'}",
    )
    blockers = blocking_dependencies(graph, task) if task.status is TaskStatus.PENDING else []
    if blockers:
        blocked_by = format_dependencies(tuple(t.id for t in blockers))
        header.append(f"\nBlocked by: {blocked_by}", style="yellow")
    if task.error_log:
        header.append(f"\nError: {task.error_log}", style="red")
    parts.append(Panel(header))

    if task.description:
        parts.append(Panel(Markdown(task.description), title="Description"))
    if task.details:
        parts.append(Panel(Text("\n".join(f"• {d}" for d in task.details)), title="Details"))
    if task.test_strategy:
        parts.append(Panel(Markdown(task.test_strategy), title="Test Strategy"))
    if task.agent_notes:
        parts.append(Panel(Markdown(task.agent_notes), title="Agent Notes"))

    deps = dependencies_of(graph, task)
    dependents = dependents_of(graph, task)
    tree = Text()
    tree.append(f"Dependencies ({len(deps)}):\n" if deps else "Dependencies: None\n", style="bold")
    for i, d in enumerate(deps, 1):
        tree.append_text(_task_line(i, d))
        tree.append("\n")
    tree.append(
        f"Dependent Tasks ({len(dependents)}):\n" if dependents else "Dependent Tasks: None",
        style="bold",
    )
    for i, d in enumerate(dependents, len(deps) + 1):
        tree.append_text(_task_line(i, d))
        tree.append("\n")
    parts.append(Panel(tree, title="Dependency Visualization"))
    return Group(*parts)


def plan_table(graph: ProjectGraph) -> Table:
    table = Table(title=f"Plans ({len(graph.plans)})", expand=True)
    table.add_column("Kind", no_wrap=True)
    table.add_column("Title")
    table.add_column("Path")
    for plan in graph.plans:
        table.add_row(plan.kind.value, Text(plan.title), Text(str(plan.source_path)))
    return table


def plan_panel(plan: Plan) -> Panel:
    return Panel(Markdown(plan.content), title=escape(plan.title))


def dashboard(graph: ProjectGraph, view: ViewResult) -> Group:
    return Group(summary_panel(view.stats, graph), task_table(view))
