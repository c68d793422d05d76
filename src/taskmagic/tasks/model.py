"""Task, Plan and ProjectGraph data models shared by loader, views and watcher."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class TaskStatus(str, Enum):
    PENDING = "pending"
    INPROGRESS = "inprogress"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PlanKind(str, Enum):
    GLOBAL = "global"
    FEATURE = "feature"


PRIORITY_RANK: dict[str, int] = {
    TaskPriority.CRITICAL.value: 4,
    TaskPriority.HIGH.value: 3,
    TaskPriority.MEDIUM.value: 2,
    TaskPriority.LOW.value: 1,
}


def id_sort_key(task_id: str) -> tuple[float, str]:
    """Sort key for task ids: decimal value first, raw string as tie-break.

    ``"2.1" < "2.2" < "10"``; ids that are not numeric sort after all numeric ids.
    """
    try:
        value = float(task_id)
    except (TypeError, ValueError):
        return (math.inf, str(task_id))
    if math.isnan(value):
        return (math.inf, str(task_id))
    return (value, str(task_id))


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    status: TaskStatus
    priority: TaskPriority
    feature: str = ""
    dependencies: tuple[str, ...] = ()
    assigned_agent: str | None = None
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    error_log: str | None = None
    description: str = ""
    details: tuple[str, ...] = ()
    test_strategy: str = ""
    agent_notes: str | None = None
    source_path: Path | None = field(default=None, compare=False)


@dataclass(frozen=True)
class Plan:
    title: str
    source_path: Path
    content: str
    kind: PlanKind


@dataclass(frozen=True)
class ProjectGraph:
    """Immutable snapshot of one project. Replaced wholesale on every reload."""

    root_path: Path
    is_valid: bool
    tasks: tuple[Task, ...] = ()
    plans: tuple[Plan, ...] = ()
    warnings: tuple[str, ...] = ()
    cycles: tuple[str, ...] = ()

    @classmethod
    def not_found(cls, start_path: Path) -> ProjectGraph:
        return cls(root_path=start_path, is_valid=False)

    def task_ids(self) -> list[str]:
        return [t.id for t in self.tasks]

    def get_task(self, task_id: str) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def index(self) -> dict[str, Task]:
        """Map id -> task, built fresh for each query."""
        return {t.id: t for t in self.tasks}
