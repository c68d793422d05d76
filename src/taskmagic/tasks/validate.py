"""Graph checks over a task set: dependency cycles and dangling references."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from enum import Enum

from taskmagic.tasks.model import Task


class _Mark(Enum):
    IN_PROGRESS = 1
    DONE = 2


def detect_cycles(tasks: Iterable[Task]) -> list[str]:
    """Return one report entry per back edge found in the dependency relation.

    Iterative three-colour DFS: reaching a task that is still on the current
    path records ``"Task <from> -> Task <to>"``. Every task reaches DONE at most
    once, so self-references and repeated ids terminate. An empty list means
    the relation is acyclic.
    """
    deps: dict[str, tuple[str, ...]] = {}
    for t in tasks:
        deps.setdefault(t.id, t.dependencies)

    marks: dict[str, _Mark] = {}
    reports: list[str] = []
    seen_reports: set[str] = set()

    for root in deps:
        if root in marks:
            continue
        marks[root] = _Mark.IN_PROGRESS
        stack: list[tuple[str, Iterator[str]]] = [(root, iter(deps[root]))]

        while stack:
            current, children = stack[-1]
            advanced = False
            for dep in children:
                mark = marks.get(dep)
                if mark is _Mark.IN_PROGRESS:
                    entry = f"Circular dependency detected: Task {current} -> Task {dep}"
                    if entry not in seen_reports:
                        seen_reports.add(entry)
                        reports.append(entry)
                elif mark is None and dep in deps:
                    marks[dep] = _Mark.IN_PROGRESS
                    stack.append((dep, iter(deps[dep])))
                    advanced = True
                    break
            if not advanced:
                marks[current] = _Mark.DONE
                stack.pop()

    return reports


def missing_dependencies(tasks: Iterable[Task]) -> list[str]:
    """Describe dependency ids that do not resolve to any task in *tasks*."""
    task_list = list(tasks)
    known = {t.id for t in task_list}
    missing: list[str] = []
    for t in task_list:
        for dep in t.dependencies:
            if dep not in known:
                missing.append(f"Task {t.id} depends on unknown task {dep}")
    return missing
