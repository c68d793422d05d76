"""Configuration defaults, on-disk layout, and runtime options for taskmagic."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path


# On-disk layout, relative to the project root.
MARKER_DIR = ".ai"
TASKS_DIR = "tasks"
PLANS_DIR = "plans"
FEATURES_DIR = "features"
GLOBAL_PLAN = "PLAN.md"
INDEX_FILE = "TASKS.md"

TASK_FILE_PATTERN = re.compile(r"^task(\d+(?:\.\d+)?)_(.+)\.md$")

DEFAULT_DEBOUNCE_MS = 300
DEFAULT_SORT = "priority"
NEXT_AVAILABLE_LIMIT = 3

DEBOUNCE_ENV = "TASKMAGIC_DEBOUNCE_MS"


@dataclass
class Config:
    """Runtime configuration — mirrors the CLI flags."""

    project_path: Path = field(default_factory=Path.cwd)
    watch: bool = True
    debounce_ms: int | None = None

    # View
    sort_key: str = DEFAULT_SORT
    status_filter: str = "all"
    search_query: str = ""

    # Misc
    verbose: bool = False

    def __post_init__(self) -> None:
        self.project_path = Path(self.project_path)
        if self.debounce_ms is None:
            raw = os.environ.get(DEBOUNCE_ENV, "")
            try:
                self.debounce_ms = int(raw) if raw else DEFAULT_DEBOUNCE_MS
            except ValueError:
                raise ValueError(f"{DEBOUNCE_ENV} must be an integer, got {raw!r}") from None
        if self.debounce_ms < 0:
            raise ValueError(f"debounce_ms must be >= 0, got {self.debounce_ms}")


def marker_path(root: Path) -> Path:
    return root / MARKER_DIR


def tasks_path(root: Path) -> Path:
    return root / MARKER_DIR / TASKS_DIR


def plans_path(root: Path) -> Path:
    return root / MARKER_DIR / PLANS_DIR
