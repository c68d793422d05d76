"""Debounced reconciliation of filesystem changes into fresh ProjectGraph snapshots.

``Reconciler`` is the single owner of the current snapshot. Raw change events
(re)arm one debounce timer; when it fires the whole project is rebuilt and the
new snapshot is published to listeners. ``ProjectWatcher`` feeds it from a
watchdog observer on ``.ai/``.

States::

    IDLE --event--> DEBOUNCE_PENDING --timer--> RELOADING --done--> IDLE
                      ^   |  (event: re-arm)        |
                      +---+                         +-- event: mark dirty, re-arm after
"""

from __future__ import annotations

import os
import threading
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from taskmagic import log
from taskmagic.config import (
    DEFAULT_DEBOUNCE_MS,
    INDEX_FILE,
    PLANS_DIR,
    TASKS_DIR,
    marker_path,
)
from taskmagic.errors import ParseError, WatchError
from taskmagic.project import build_project, is_task_filename
from taskmagic.tasks.model import ProjectGraph, Task
from taskmagic.tasks.parser import parse_task_file


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class ChangeRoute(str, Enum):
    TASK = "task"
    PLAN = "plan"
    INDEX = "index"
    OTHER = "other"


class ReconcilerState(str, Enum):
    IDLE = "idle"
    DEBOUNCE_PENDING = "debounce-pending"
    RELOADING = "reloading"


ProjectListener = Callable[[ProjectGraph], None]
TaskListener = Callable[[Task, ChangeKind], None]
ErrorListener = Callable[[Exception], None]
TimerFactory = Callable[[float, Callable[[], None]], Any]


def _relative_parts(root: Path, path: Path) -> tuple[str, ...] | None:
    marker = marker_path(root)
    try:
        return path.relative_to(marker).parts
    except ValueError:
        pass
    try:
        return path.resolve().relative_to(marker.resolve()).parts
    except ValueError:
        return None


def classify_change(root: Path, path: Path | str) -> ChangeRoute:
    """Route a changed path under ``<root>/.ai`` to the part of the project it touches."""
    parts = _relative_parts(Path(root), Path(path))
    if not parts:
        return ChangeRoute.OTHER
    if parts == (INDEX_FILE,):
        return ChangeRoute.INDEX
    if not parts[-1].endswith(".md"):
        return ChangeRoute.OTHER
    if parts[0] == TASKS_DIR:
        if len(parts) == 2 and is_task_filename(parts[1]):
            return ChangeRoute.TASK
        return ChangeRoute.OTHER
    if parts[0] == PLANS_DIR:
        return ChangeRoute.PLAN
    return ChangeRoute.OTHER


class Reconciler:
    """Debounce change events and rebuild the project graph, one reload at a time.

    Usage::

        rec = Reconciler(root, snapshot=build_project(root))
        rec.on_project_changed(render)
        rec.handle_event(path, ChangeKind.MODIFIED)   # from the watcher thread
        ...
        rec.close()
    """

    def __init__(
        self,
        root: Path,
        *,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        loader: Callable[[Path], ProjectGraph] = build_project,
        timer_factory: TimerFactory = threading.Timer,
        snapshot: ProjectGraph | None = None,
    ) -> None:
        self.root = Path(root)
        self._delay = debounce_ms / 1000.0
        self._loader = loader
        self._timer_factory = timer_factory

        self._lock = threading.Lock()
        self._state = ReconcilerState.IDLE
        self._timer: Any = None
        self._generation = 0
        self._dirty = False
        self._closed = False
        self._snapshot = snapshot
        self.reload_count = 0

        self._project_listeners: list[ProjectListener] = []
        self._task_listeners: list[TaskListener] = []
        self._error_listeners: list[ErrorListener] = []

    # ── state queries ────────────────────────────────────────────

    @property
    def state(self) -> ReconcilerState:
        return self._state

    @property
    def snapshot(self) -> ProjectGraph | None:
        return self._snapshot

    @property
    def closed(self) -> bool:
        return self._closed

    # ── listeners ────────────────────────────────────────────────

    def on_project_changed(self, callback: ProjectListener) -> None:
        self._project_listeners.append(callback)

    def on_task_changed(self, callback: TaskListener) -> None:
        self._task_listeners.append(callback)

    def on_error(self, callback: ErrorListener) -> None:
        self._error_listeners.append(callback)

    def _emit(self, listeners: list[Callable[..., None]], *args: Any) -> None:
        for callback in list(listeners):
            if self._closed:
                return
            try:
                callback(*args)
            except Exception as exc:  # listener errors are logged, not raised
                log.error(f"Listener {getattr(callback, '__name__', callback)!s} failed: {exc}")

    def report_error(self, exc: Exception) -> None:
        if not self._closed:
            self._emit(self._error_listeners, exc)

    # ── events ───────────────────────────────────────────────────

    def handle_event(self, path: Path | str, kind: ChangeKind | str) -> None:
        """Accept one raw change. Safe to call from any thread."""
        kind = ChangeKind(kind)
        route = classify_change(self.root, path)
        with self._lock:
            if self._closed:
                return
            if self._state is ReconcilerState.RELOADING:
                self._dirty = True
            else:
                self._arm_locked()
        log.debug(f"Change {kind.value} ({route.value}): {path}")

        if route is ChangeRoute.TASK and kind is not ChangeKind.DELETED:
            self._parse_changed_task(Path(path), kind)

    def _arm_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._generation += 1
        generation = self._generation
        timer = self._timer_factory(self._delay, lambda: self._on_timer(generation))
        timer.daemon = True
        self._timer = timer
        self._state = ReconcilerState.DEBOUNCE_PENDING
        timer.start()

    def _parse_changed_task(self, path: Path, kind: ChangeKind) -> None:
        """Advisory single-file parse; the debounced full rebuild still follows."""
        try:
            task = parse_task_file(path)
        except (ParseError, OSError, UnicodeDecodeError) as exc:
            log.debug(f"Fast-path parse of {path.name} failed: {exc}")
            return
        if not self._closed:
            self._emit(self._task_listeners, task, kind)

    # ── reload ───────────────────────────────────────────────────

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if (
                self._closed
                or generation != self._generation
                or self._state is not ReconcilerState.DEBOUNCE_PENDING
            ):
                return
            self._timer = None
            self._state = ReconcilerState.RELOADING
            self._dirty = False
        self._reload()

    def _reload(self) -> None:
        graph: ProjectGraph | None = None
        failure: Exception | None = None
        try:
            graph = self._loader(self.root)
        except Exception as exc:  # reported to error listeners
            failure = exc
            log.error(f"Failed to reload project: {exc}")
        finally:
            with self._lock:
                closed = self._closed
                if graph is not None and not closed:
                    self._snapshot = graph
                    self.reload_count += 1
                self._state = ReconcilerState.IDLE
                if self._dirty and not closed:
                    self._dirty = False
                    self._arm_locked()

        if closed:
            return
        if graph is not None:
            self._emit(self._project_listeners, graph)
        elif failure is not None:
            self._emit(self._error_listeners, failure)

    def flush(self) -> None:
        """Run a pending reload now instead of waiting for the timer."""
        with self._lock:
            if self._closed or self._state is not ReconcilerState.DEBOUNCE_PENDING:
                return
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1
            self._state = ReconcilerState.RELOADING
            self._dirty = False
        self._reload()

    def close(self) -> None:
        """Cancel any pending reload. No listener is called afterwards."""
        with self._lock:
            self._closed = True
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if self._state is ReconcilerState.DEBOUNCE_PENDING:
                self._state = ReconcilerState.IDLE


# ── watchdog feed ────────────────────────────────────────────────────


class _ChangeHandler(FileSystemEventHandler):
    """Translate watchdog events into reconciler change events.

    Removing or moving away the watched directory itself calls *on_lost*:
    the observer cannot follow a recreated directory.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        watched: Path | None = None,
        on_lost: Callable[[], None] | None = None,
    ) -> None:
        super().__init__()
        self._reconciler = reconciler
        self._watched = Path(watched) if watched is not None else None
        self._on_lost = on_lost

    def _is_watched(self, path: Any) -> bool:
        if self._watched is None:
            return False
        changed = Path(os.fsdecode(path))
        return changed == self._watched or changed.resolve() == self._watched.resolve()

    def _check_lost(self, event: FileSystemEvent) -> None:
        if event.is_directory and self._on_lost is not None and self._is_watched(event.src_path):
            self._on_lost()

    def _forward(self, event: FileSystemEvent, kind: ChangeKind, path: Any = None) -> None:
        if event.is_directory:
            return
        self._reconciler.handle_event(os.fsdecode(path if path is not None else event.src_path), kind)

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(event, ChangeKind.ADDED)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._forward(event, ChangeKind.MODIFIED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._check_lost(event)
        self._forward(event, ChangeKind.DELETED)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._check_lost(event)
        self._forward(event, ChangeKind.DELETED)
        self._forward(event, ChangeKind.ADDED, path=event.dest_path)


class ProjectWatcher:
    """Run a watchdog observer on ``<root>/.ai`` feeding a Reconciler."""

    def __init__(
        self,
        root: Path,
        reconciler: Reconciler,
        *,
        observer_factory: Callable[[], Any] = Observer,
    ) -> None:
        self.root = Path(root)
        self._reconciler = reconciler
        self._observer_factory = observer_factory
        self._observer: Any = None
        self.handler = _ChangeHandler(reconciler, marker_path(self.root), self._watched_dir_lost)

    @property
    def is_active(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        target = marker_path(self.root)
        observer = self._observer_factory()
        try:
            observer.schedule(self.handler, str(target), recursive=True)
            observer.start()
        except OSError as exc:
            err = WatchError(f"Cannot watch {target}: {exc}")
            log.error(str(err))
            self._reconciler.report_error(err)
            raise err from exc
        self._observer = observer
        log.debug(f"Watching {target}")

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=5)
        log.debug("Stopped watching")

    def _watched_dir_lost(self) -> None:
        """Runs on the observer thread, so the observer is stopped but not joined."""
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        err = WatchError(f"{marker_path(self.root)} was removed; watching stopped")
        log.error(str(err))
        self._reconciler.report_error(err)
