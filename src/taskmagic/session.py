"""Consumer-facing API: load a project, watch it, and project views of it."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

from taskmagic import log
from taskmagic.config import Config
from taskmagic.errors import WatchError
from taskmagic.project import build_project
from taskmagic.tasks.model import ProjectGraph
from taskmagic.view import ViewCriteria, ViewResult, project
from taskmagic.watcher import (
    ErrorListener,
    ProjectListener,
    ProjectWatcher,
    Reconciler,
    TaskListener,
)


class ProjectSession:
    """Own the live snapshot for one project root.

    Usage::

        session = ProjectSession(Config(project_path=path))
        graph = session.load_project()
        session.on_project_changed(redraw)
        session.start_watching()
        view = session.project(ViewCriteria(sort_key=SortKey.ID))
        session.stop_watching()
    """

    def __init__(
        self,
        cfg: Config | None = None,
        *,
        observer_factory: Callable[[], Any] | None = None,
    ) -> None:
        self.cfg = cfg or Config()
        self._observer_factory = observer_factory
        self._reconciler: Reconciler | None = None
        self._watcher: ProjectWatcher | None = None
        self._project_listeners: list[ProjectListener] = []
        self._task_listeners: list[TaskListener] = []
        self._error_listeners: list[ErrorListener] = []

    @property
    def graph(self) -> ProjectGraph | None:
        return self._reconciler.snapshot if self._reconciler else None

    @property
    def is_watching(self) -> bool:
        return self._watcher is not None and self._watcher.is_active

    def load_project(self, path: Path | str | None = None) -> ProjectGraph:
        """Build the initial snapshot. Replaces any previous reconciler."""
        if path is not None:
            self.cfg.project_path = Path(path)
        self.stop_watching()

        graph = build_project(self.cfg.project_path)
        self._reconciler = self._new_reconciler(graph)
        return graph

    def _new_reconciler(self, graph: ProjectGraph) -> Reconciler:
        rec = Reconciler(graph.root_path, debounce_ms=self.cfg.debounce_ms, snapshot=graph)
        for cb in self._project_listeners:
            rec.on_project_changed(cb)
        for cb in self._task_listeners:
            rec.on_task_changed(cb)
        for cb in self._error_listeners:
            rec.on_error(cb)
        return rec

    def on_project_changed(self, callback: ProjectListener) -> None:
        self._project_listeners.append(callback)
        if self._reconciler:
            self._reconciler.on_project_changed(callback)

    def on_task_changed(self, callback: TaskListener) -> None:
        self._task_listeners.append(callback)
        if self._reconciler:
            self._reconciler.on_task_changed(callback)

    def on_error(self, callback: ErrorListener) -> None:
        self._error_listeners.append(callback)
        if self._reconciler:
            self._reconciler.on_error(callback)

    def project(self, criteria: ViewCriteria | None = None) -> ViewResult:
        """Project the current snapshot (an empty invalid graph before loading)."""
        graph = self.graph or ProjectGraph.not_found(self.cfg.project_path)
        return project(graph, criteria)

    def start_watching(self) -> bool:
        """Start the filesystem feed. Returns ``False`` if it could not start."""
        graph = self.graph
        if self._reconciler is None or graph is None or not graph.is_valid:
            log.warn("No project loaded; not watching for changes")
            return False
        if self.is_watching:
            return True
        if self._reconciler.closed:
            self._reconciler = self._new_reconciler(graph)
        if self._observer_factory is None:
            self._watcher = ProjectWatcher(graph.root_path, self._reconciler)
        else:
            self._watcher = ProjectWatcher(
                graph.root_path, self._reconciler, observer_factory=self._observer_factory
            )
        try:
            self._watcher.start()
        except WatchError:
            self._watcher = None
            return False
        return True

    def stop_watching(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        if self._reconciler is not None:
            self._reconciler.close()
