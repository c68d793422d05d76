"""Shared fixtures for taskmagic tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Write files with encoding="utf-8" so fixtures read back the same on every platform.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from taskmagic.tasks.model import Task, TaskPriority, TaskStatus


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register opt-in switch for tests that run a real filesystem observer."""
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run end-to-end tests marked with 'e2e'.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip e2e tests unless explicitly enabled."""
    if config.getoption("--run-e2e"):
        return

    skip_e2e = pytest.mark.skip(
        reason="E2E tests are skipped by default. Use --run-e2e to include them.",
    )
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


def _make_task(
    id: str,
    title: str = "",
    status: str = "pending",
    priority: str = "medium",
    dependencies: list[str] | None = None,
    description: str = "",
) -> Task:
    return Task(
        id=id,
        title=title or f"Task {id}",
        status=TaskStatus(status),
        priority=TaskPriority(priority),
        feature="core",
        dependencies=tuple(dependencies or []),
        created_at="2025-01-01T00:00:00Z",
        description=description,
    )


def task_document(
    id: str | int = 1,
    title: str = "Setup project",
    status: str = "pending",
    priority: str = "high",
    dependencies: str = "[]",
    body: str = "## Description\n\nDo the thing.\n",
    extra: str = "",
) -> str:
    """Build a task file's text. ``dependencies`` is raw YAML."""
    return (
        "---\n"
        f"id: {id}\n"
        f"title: {title}\n"
        f"status: {status}\n"
        f"priority: {priority}\n"
        "feature: Core\n"
        f"dependencies: {dependencies}\n"
        "assigned_agent: null\n"
        "created_at: 2025-01-01T00:00:00Z\n"
        "started_at: null\n"
        "completed_at: null\n"
        "error_log: null\n"
        f"{extra}"
        "---\n\n"
        f"# Task {id}: {title}\n\n"
        f"{body}"
    )


@pytest.fixture
def make_task():
    """Factory fixture that creates Task instances."""
    return _make_task


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """A minimal Task Magic project: ``.ai/tasks`` and ``.ai/plans/features``."""
    (tmp_path / ".ai" / "tasks").mkdir(parents=True)
    (tmp_path / ".ai" / "plans" / "features").mkdir(parents=True)
    return tmp_path


@pytest.fixture
def write_task(project_root: Path):
    """Write a task file into the project; returns its path."""

    def _write(id: str | int = 1, slug: str = "task", filename: str = "", **fields) -> Path:
        name = filename or f"task{id}_{slug}.md"
        path = project_root / ".ai" / "tasks" / name
        path.write_text(task_document(id=id, **fields), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def task_doc():
    """Factory fixture that builds task document text."""
    return task_document
