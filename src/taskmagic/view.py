"""Derived view state over a ProjectGraph snapshot.

Everything here is a pure function of its arguments: the same graph and
criteria always yield the same ordered result. Dependencies are resolved by
id lookup on every call, never through stored references.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

from taskmagic.tasks.model import (
    PRIORITY_RANK,
    ProjectGraph,
    Task,
    TaskPriority,
    TaskStatus,
    id_sort_key,
)

ALL = "all"
DEFAULT_BREADCRUMB_DEPTH = 10


class SortKey(str, Enum):
    PRIORITY = "priority"
    ID = "id"
    STATUS = "status"
    TITLE = "title"


def parse_status_filter(value: TaskStatus | str | None) -> TaskStatus | None:
    """``None``/``"all"`` -> no filter; otherwise a concrete status."""
    if value is None or value == ALL or value == "":
        return None
    return TaskStatus(value)


@dataclass(frozen=True)
class ViewCriteria:
    """Plain strings are accepted and coerced; ``"all"`` means no status filter."""

    status_filter: TaskStatus | None = None
    search_query: str = ""
    sort_key: SortKey = SortKey.PRIORITY

    def __post_init__(self) -> None:
        object.__setattr__(self, "status_filter", parse_status_filter(self.status_filter))
        object.__setattr__(self, "sort_key", SortKey(self.sort_key))


@dataclass(frozen=True)
class ProjectStats:
    total: int = 0
    by_status: dict[TaskStatus, int] = field(default_factory=dict)
    by_priority: dict[TaskPriority, int] = field(default_factory=dict)
    available: int = 0
    blocked: int = 0
    completion_percent: int = 0

    @property
    def completed(self) -> int:
        return self.by_status.get(TaskStatus.COMPLETED, 0)


@dataclass(frozen=True)
class ViewResult:
    tasks: tuple[Task, ...]
    stats: ProjectStats
    criteria: ViewCriteria


# ── availability ─────────────────────────────────────────────────────


def is_available(task: Task, index: dict[str, Task]) -> bool:
    """Pending, and every dependency is unresolvable or completed."""
    if task.status != TaskStatus.PENDING:
        return False
    for dep_id in task.dependencies:
        dep = index.get(dep_id)
        if dep is not None and dep.status != TaskStatus.COMPLETED:
            return False
    return True


def is_blocked(task: Task, index: dict[str, Task]) -> bool:
    """Pending, and at least one resolvable dependency is not completed."""
    if task.status != TaskStatus.PENDING:
        return False
    return any(
        dep is not None and dep.status != TaskStatus.COMPLETED
        for dep in (index.get(d) for d in task.dependencies)
    )


def blocking_dependencies(graph: ProjectGraph, task: Task) -> list[Task]:
    """Resolved dependencies of *task* that are not yet completed."""
    index = graph.index()
    return [
        dep
        for dep in (index.get(d) for d in task.dependencies)
        if dep is not None and dep.status != TaskStatus.COMPLETED
    ]


def next_available(graph: ProjectGraph, limit: int | None = None) -> list[Task]:
    index = graph.index()
    ready = [t for t in graph.tasks if is_available(t, index)]
    return ready if limit is None else ready[:limit]


# ── navigation ───────────────────────────────────────────────────────


def dependencies_of(graph: ProjectGraph, task: Task) -> list[Task]:
    """Tasks *task* depends on, in declaration order; unknown ids are skipped."""
    index = graph.index()
    return [index[d] for d in task.dependencies if d in index]


def dependents_of(graph: ProjectGraph, task: Task) -> list[Task]:
    """Tasks that list *task* among their dependencies, in graph order."""
    return [t for t in graph.tasks if task.id in t.dependencies]


@dataclass(frozen=True)
class Breadcrumbs:
    """Bounded history of visited task ids. Operations return new values."""

    ids: tuple[str, ...] = ()
    max_depth: int = DEFAULT_BREADCRUMB_DEPTH

    def push(self, task_id: str) -> Breadcrumbs:
        if self.ids and self.ids[-1] == task_id:
            return self
        ids = (*self.ids, task_id)
        if len(ids) > self.max_depth:
            ids = ids[len(ids) - self.max_depth:]
        return Breadcrumbs(ids=ids, max_depth=self.max_depth)

    def pop(self) -> Breadcrumbs:
        return Breadcrumbs(ids=self.ids[:-1], max_depth=self.max_depth)

    @property
    def current(self) -> str | None:
        return self.ids[-1] if self.ids else None

    def __len__(self) -> int:
        return len(self.ids)


# ── filtering / sorting ──────────────────────────────────────────────


def matches_search(task: Task, query: str) -> bool:
    q = query.strip().lower()
    if not q:
        return True
    return (
        q in task.title.lower()
        or q in task.description.lower()
        or q in str(task.id).lower()
    )


def filter_tasks(tasks: tuple[Task, ...] | list[Task], criteria: ViewCriteria) -> list[Task]:
    return [
        t
        for t in tasks
        if (criteria.status_filter is None or t.status == criteria.status_filter)
        and matches_search(t, criteria.search_query)
    ]


def sort_tasks(tasks: list[Task], key: SortKey) -> list[Task]:
    """Stable sort, so ties keep graph (id) order."""
    match key:
        case SortKey.PRIORITY:
            return sorted(tasks, key=lambda t: -PRIORITY_RANK.get(t.priority.value, 0))
        case SortKey.ID:
            return sorted(tasks, key=lambda t: id_sort_key(t.id))
        case SortKey.STATUS:
            return sorted(tasks, key=lambda t: t.status.value)
        case SortKey.TITLE:
            return sorted(tasks, key=lambda t: (t.title.casefold(), t.title))
        case _:
            return list(tasks)


# ── statistics ───────────────────────────────────────────────────────


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_stats(graph: ProjectGraph) -> ProjectStats:
    tasks = graph.tasks
    index = graph.index()
    by_status = {s: 0 for s in TaskStatus}
    by_priority = {p: 0 for p in TaskPriority}
    available = blocked = 0
    for t in tasks:
        by_status[t.status] += 1
        by_priority[t.priority] += 1
        if is_available(t, index):
            available += 1
        elif is_blocked(t, index):
            blocked += 1

    total = len(tasks)
    completed = by_status[TaskStatus.COMPLETED]
    percent = _round_half_up(100 * completed / total) if total else 0
    return ProjectStats(
        total=total,
        by_status=by_status,
        by_priority=by_priority,
        available=available,
        blocked=blocked,
        completion_percent=percent,
    )


def project(graph: ProjectGraph, criteria: ViewCriteria | None = None) -> ViewResult:
    """Filter, sort and summarise *graph* for display."""
    criteria = criteria or ViewCriteria()
    visible = sort_tasks(filter_tasks(graph.tasks, criteria), criteria.sort_key)
    return ViewResult(tasks=tuple(visible), stats=compute_stats(graph), criteria=criteria)
