"""taskmagic CLI — terminal dashboard for Task Magic projects.

Installed as ``taskmagic`` console_script via pipx / pip.
"""

from __future__ import annotations

import sys
import time
from pathlib import Path
from typing import Any, Callable

import click
from rich.live import Live

from taskmagic import __version__
from taskmagic import log
from taskmagic import render
from taskmagic.config import DEFAULT_SORT, NEXT_AVAILABLE_LIMIT, Config
from taskmagic.errors import ProjectLoadError
from taskmagic.project import build_project
from taskmagic.session import ProjectSession
from taskmagic.tasks.model import ProjectGraph, TaskStatus
from taskmagic.view import (
    ALL,
    Breadcrumbs,
    SortKey,
    ViewCriteria,
    next_available,
    parse_status_filter,
    project,
)

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

STATUS_CHOICES = [ALL] + [s.value for s in TaskStatus]
SORT_CHOICES = [k.value for k in SortKey]


def _view_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Shared ``--filter/--sort/--search`` options for task views."""
    func = click.option(
        "-q", "--search", default="", help="Case-insensitive search in id, title and description"
    )(func)
    func = click.option(
        "-s", "--sort", "sort_key",
        type=click.Choice(SORT_CHOICES), default=DEFAULT_SORT, show_default=True,
        help="Sort order",
    )(func)
    func = click.option(
        "-f", "--filter", "status_filter",
        type=click.Choice(STATUS_CHOICES), default=ALL, show_default=True,
        help="Only show tasks with this status",
    )(func)
    return func


def _criteria(cfg: Config) -> ViewCriteria:
    return ViewCriteria(
        status_filter=parse_status_filter(cfg.status_filter),
        search_query=cfg.search_query,
        sort_key=SortKey(cfg.sort_key),
    )


def _apply_view(cfg: Config, status_filter: str, sort_key: str, search: str) -> None:
    cfg.status_filter = status_filter
    cfg.sort_key = sort_key
    cfg.search_query = search


def _require_project(graph: ProjectGraph) -> ProjectGraph:
    if not graph.is_valid:
        log.error("No valid Task Magic project found")
        log.info("Run this tool from a directory containing a .ai folder with tasks and plans")
        sys.exit(1)
    return graph


def _load(cfg: Config) -> ProjectGraph:
    try:
        graph = build_project(cfg.project_path)
    except ProjectLoadError as exc:
        log.error(str(exc))
        sys.exit(1)
    return _require_project(graph)


@click.group(invoke_without_command=True, context_settings=CONTEXT_SETTINGS)
@click.option("-p", "--path", "project_path", default="", help="Project path to scan for a .ai directory")
@click.option("--no-watch", is_flag=True, help="Disable file watching for automatic updates")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="taskmagic")
@click.pass_context
def main(ctx: click.Context, project_path: str, no_watch: bool, verbose: bool) -> None:
    """Terminal dashboard for Task Magic projects.

    Reads .ai/tasks and .ai/plans and keeps the view live as files change.

    \b
    EXAMPLES:
      taskmagic                          # Launch the live dashboard
      taskmagic list -f pending          # List pending tasks only
      taskmagic list --sort id -q auth   # Search, ordered by id
      taskmagic stats                    # Show project statistics
      taskmagic show 1 3                 # Show task 3, reached from task 1
      taskmagic -p /path/to/project      # Use a specific project path
    """
    log.set_verbose(verbose)
    try:
        cfg = Config(
            project_path=Path(project_path) if project_path else Path.cwd(),
            watch=not no_watch,
            verbose=verbose,
        )
    except ValueError as exc:
        raise click.UsageError(str(exc)) from exc
    ctx.obj = cfg

    if ctx.invoked_subcommand is None:
        ctx.invoke(dashboard)


# ── Subcommand: dashboard ────────────────────────────────────────


@main.command()
@_view_options
@click.pass_obj
def dashboard(cfg: Config, status_filter: str, sort_key: str, search: str) -> None:
    """Launch the live dashboard (default). Ctrl+C to exit."""
    _apply_view(cfg, status_filter, sort_key, search)
    criteria = _criteria(cfg)

    session = ProjectSession(cfg)
    try:
        graph = _require_project(session.load_project())
    except ProjectLoadError as exc:
        log.error(str(exc))
        sys.exit(1)

    if not cfg.watch:
        log.console.print(render.dashboard(graph, project(graph, criteria)))
        return

    with Live(
        render.dashboard(graph, project(graph, criteria)),
        console=log.console,
        refresh_per_second=4,
    ) as live:

        def redraw(new_graph: ProjectGraph) -> None:
            live.update(render.dashboard(new_graph, project(new_graph, criteria)))

        session.on_project_changed(redraw)
        session.on_error(lambda exc: log.warn(f"File watcher error: {exc}"))
        if not session.start_watching():
            log.warn("File watching unavailable; showing a static snapshot")

        try:
            while True:
                time.sleep(0.25)
        except KeyboardInterrupt:
            log.info("Shutting down…")
        finally:
            session.stop_watching()


# ── Subcommand: list ─────────────────────────────────────────────


@main.command(name="list")
@_view_options
@click.pass_obj
def list_tasks(cfg: Config, status_filter: str, sort_key: str, search: str) -> None:
    """List tasks in table format."""
    _apply_view(cfg, status_filter, sort_key, search)
    graph = _load(cfg)
    view = project(graph, _criteria(cfg))
    log.console.print(render.task_table(view))
    log.console.print(f"\nTotal: {len(view.tasks)} tasks")


# ── Subcommand: stats ────────────────────────────────────────────


@main.command()
@click.pass_obj
def stats(cfg: Config) -> None:
    """Show project statistics and the next available tasks."""
    graph = _load(cfg)
    view = project(graph)
    log.console.print(render.summary_panel(view.stats, graph))

    ready = next_available(graph, NEXT_AVAILABLE_LIMIT)
    if ready:
        log.console.print(f"\n[bold]Next available tasks:[/bold] {view.stats.available}")
        for t in ready:
            log.console.print(f"  • ID {t.id}: {t.title} ({t.priority.value})", markup=False)
    log.success(f"Loaded {len(graph.tasks)} tasks and {len(graph.plans)} plans from {graph.root_path}")


# ── Subcommand: show ─────────────────────────────────────────────


@main.command()
@click.argument("task_ids", nargs=-1, required=True)
@click.pass_obj
def show(cfg: Config, task_ids: tuple[str, ...]) -> None:
    """Show one task in detail.

    Several ids are treated as a navigation trail; the last one is shown.
    """
    graph = _load(cfg)
    trail = Breadcrumbs()
    for task_id in task_ids:
        if graph.get_task(task_id) is None:
            log.error(f"Task {task_id} not found")
            if graph.tasks:
                log.info(f"Available ids: {', '.join(graph.task_ids())}")
            sys.exit(1)
        trail = trail.push(task_id)

    task = graph.get_task(trail.current)
    log.console.print(render.task_detail(graph, task, trail))


# ── Subcommand: plans ────────────────────────────────────────────


@main.command()
@click.argument("title", required=False, default="")
@click.pass_obj
def plans(cfg: Config, title: str) -> None:
    """List plans, or print the plan whose title matches TITLE."""
    graph = _load(cfg)
    if not title:
        log.console.print(render.plan_table(graph))
        return

    wanted = title.casefold()
    for plan in graph.plans:
        if plan.title.casefold() == wanted:
            log.console.print(render.plan_panel(plan))
            return
    log.error(f"Plan not found: {title}")
    sys.exit(1)
