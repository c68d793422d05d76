"""Project discovery and loading: build an immutable ProjectGraph from ``.ai/``."""

from __future__ import annotations

from pathlib import Path

from taskmagic import log
from taskmagic.config import (
    FEATURES_DIR,
    GLOBAL_PLAN,
    MARKER_DIR,
    TASK_FILE_PATTERN,
    plans_path,
    tasks_path,
)
from taskmagic.errors import ParseError, ProjectLoadError
from taskmagic.io_utils import list_markdown, read_text
from taskmagic.tasks.model import Plan, PlanKind, ProjectGraph, Task, id_sort_key
from taskmagic.tasks.parser import parse_plan, parse_task_file
from taskmagic.tasks.validate import detect_cycles, missing_dependencies


def find_project_root(start: Path | str | None = None) -> Path | None:
    """Walk upward from *start* (inclusive) to the first directory holding ``.ai/``."""
    current = Path(start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / MARKER_DIR).is_dir():
            return candidate
    return None


def is_task_filename(name: str) -> bool:
    return TASK_FILE_PATTERN.match(name) is not None


def load_tasks(root: Path) -> tuple[list[Task], list[str]]:
    """Load every task file under ``.ai/tasks``. Returns (tasks, warnings).

    Bad files are skipped with a warning. Raises ``ProjectLoadError`` only when
    the tasks directory exists but cannot be listed.
    """
    directory = tasks_path(root)
    if not directory.is_dir():
        return [], []

    try:
        files = list_markdown(directory)
    except OSError as exc:
        raise ProjectLoadError(f"Cannot read tasks directory {directory}: {exc}") from exc

    tasks: list[Task] = []
    warnings: list[str] = []
    seen: dict[str, str] = {}

    for path in files:
        if not is_task_filename(path.name):
            warnings.append(f"Skipping {path.name}: name does not match task<id>_<slug>.md")
            continue
        try:
            task = parse_task_file(path)
        except ParseError as exc:
            warnings.append(f"Skipping malformed task file {path.name}: {exc}")
            continue
        except (OSError, UnicodeDecodeError) as exc:
            warnings.append(f"Skipping unreadable task file {path.name}: {exc}")
            continue

        if task.id in seen:
            warnings.append(
                f"Skipping {path.name}: duplicate task id {task.id} (already loaded from {seen[task.id]})"
            )
            continue
        seen[task.id] = path.name
        tasks.append(task)

    tasks.sort(key=lambda t: id_sort_key(t.id))
    return tasks, warnings


def load_plans(root: Path) -> tuple[list[Plan], list[str]]:
    """Load the optional global plan and every feature plan. Returns (plans, warnings)."""
    directory = plans_path(root)
    plans: list[Plan] = []
    warnings: list[str] = []
    if not directory.is_dir():
        return plans, warnings

    global_plan = directory / GLOBAL_PLAN
    if global_plan.is_file():
        try:
            plans.append(parse_plan(read_text(global_plan), global_plan, PlanKind.GLOBAL))
        except (OSError, UnicodeDecodeError) as exc:
            warnings.append(f"Skipping unreadable plan {GLOBAL_PLAN}: {exc}")

    features = directory / FEATURES_DIR
    if features.is_dir():
        try:
            files = list_markdown(features)
        except OSError as exc:
            warnings.append(f"Cannot read feature plans in {features}: {exc}")
            files = []
        for path in files:
            try:
                plans.append(parse_plan(read_text(path), path, PlanKind.FEATURE))
            except (OSError, UnicodeDecodeError) as exc:
                warnings.append(f"Skipping unreadable plan {path.name}: {exc}")

    return plans, warnings


def build_project(start_path: Path | str | None = None) -> ProjectGraph:
    """Locate the project above *start_path* and load it into a fresh snapshot.

    No project found is a normal result (``is_valid=False``), not an error.
    Per-file problems become warnings; cycles are reported but never rejected.
    """
    start = Path(start_path or Path.cwd())
    root = find_project_root(start)
    if root is None:
        log.debug(f"No {MARKER_DIR}/ directory found at or above {start}")
        return ProjectGraph.not_found(start)

    tasks, task_warnings = load_tasks(root)
    plans, plan_warnings = load_plans(root)
    warnings = task_warnings + plan_warnings
    for w in warnings:
        log.warn(w)

    cycles = detect_cycles(tasks)
    for c in cycles:
        log.warn(c)

    for note in missing_dependencies(tasks):
        log.debug(note)

    log.debug(f"Loaded {len(tasks)} tasks and {len(plans)} plans from {root}")
    return ProjectGraph(
        root_path=root,
        is_valid=True,
        tasks=tuple(tasks),
        plans=tuple(plans),
        warnings=tuple(warnings),
        cycles=tuple(cycles),
    )
