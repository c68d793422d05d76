"""Tests for taskmagic.watcher: change routing, debounce, reload and the watchdog feed."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest
from watchdog.events import (
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from taskmagic.errors import ProjectLoadError, WatchError
from taskmagic.project import build_project
from taskmagic.tasks.model import ProjectGraph
from taskmagic.watcher import (
    ChangeKind,
    ChangeRoute,
    ProjectWatcher,
    Reconciler,
    ReconcilerState,
    _ChangeHandler,
    classify_change,
)


# ── Helpers ─────────────────────────────────────────────────────────


class FakeTimer:
    """Stands in for threading.Timer; fired by hand."""

    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False
        self.fired = False
        self.daemon = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.fired = True
            self.callback()


class FakeTimers:
    def __init__(self):
        self.created: list[FakeTimer] = []

    def __call__(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.created.append(timer)
        return timer

    @property
    def live(self) -> list[FakeTimer]:
        return [t for t in self.created if t.started and not (t.cancelled or t.fired)]


class CountingLoader:
    def __init__(self, root: Path):
        self.root = root
        self.calls = 0

    def __call__(self, root: Path) -> ProjectGraph:
        self.calls += 1
        return ProjectGraph(root_path=root, is_valid=True)


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def loader(project_root):
    return CountingLoader(project_root)


@pytest.fixture
def rec(project_root, timers, loader):
    return Reconciler(project_root, debounce_ms=300, loader=loader, timer_factory=timers)


def _task_path(root: Path, name: str = "task1_x.md") -> Path:
    return root / ".ai" / "tasks" / name


# ═══════════════════════════════════════════════════════════════════
#  Change Routing
# ═══════════════════════════════════════════════════════════════════


class TestClassifyChange:

    @pytest.mark.parametrize(
        "relative,route",
        [
            ("tasks/task1_setup.md", ChangeRoute.TASK),
            ("tasks/task2.1_sub.md", ChangeRoute.TASK),
            ("tasks/archive/task1_old.md", ChangeRoute.OTHER),
            ("tasks/notes.txt", ChangeRoute.OTHER),
            ("tasks/notes.md", ChangeRoute.OTHER),
            ("tasks/task1.md", ChangeRoute.OTHER),
            ("plans/PLAN.md", ChangeRoute.PLAN),
            ("plans/features/auth.md", ChangeRoute.PLAN),
            ("TASKS.md", ChangeRoute.INDEX),
            ("memory/log.md", ChangeRoute.OTHER),
        ],
    )
    def test_routes(self, tmp_path: Path, relative, route):
        path = tmp_path / ".ai" / relative
        assert classify_change(tmp_path, path) is route
        assert classify_change(tmp_path, str(path)) is route

    def test_outside_marker(self, tmp_path: Path):
        assert classify_change(tmp_path, tmp_path / "README.md") is ChangeRoute.OTHER
        assert classify_change(tmp_path, tmp_path / ".ai") is ChangeRoute.OTHER


# ═══════════════════════════════════════════════════════════════════
#  Debounce
# ═══════════════════════════════════════════════════════════════════


class TestDebounce:

    def test_starts_idle(self, rec):
        assert rec.state is ReconcilerState.IDLE
        assert rec.reload_count == 0

    def test_burst_collapses_to_one_reload(self, rec, timers, loader, project_root):
        """Five events inside the window produce exactly one rebuild."""
        published = []
        rec.on_project_changed(published.append)
        for _ in range(5):
            rec.handle_event(project_root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)

        assert rec.state is ReconcilerState.DEBOUNCE_PENDING
        assert len(timers.created) == 5
        assert len(timers.live) == 1
        assert all(t.delay == pytest.approx(0.3) for t in timers.created)
        assert all(t.daemon for t in timers.created)

        timers.live[0].fire()
        assert loader.calls == 1
        assert rec.reload_count == 1
        assert len(published) == 1
        assert rec.snapshot is published[0]
        assert rec.state is ReconcilerState.IDLE

    def test_stale_timer_is_ignored(self, rec, timers, loader, project_root):
        """A superseded timer that fires anyway does nothing."""
        rec.handle_event(project_root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)
        rec.handle_event(project_root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)
        timers.created[0].callback()
        assert loader.calls == 0
        assert rec.state is ReconcilerState.DEBOUNCE_PENDING

        timers.created[1].fire()
        assert loader.calls == 1

    def test_event_kind_accepts_strings(self, rec, timers, project_root):
        rec.handle_event(str(project_root / ".ai" / "TASKS.md"), "deleted")
        assert len(timers.live) == 1

    def test_flush_runs_pending_reload(self, rec, timers, loader, project_root):
        rec.handle_event(project_root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)
        rec.flush()
        assert loader.calls == 1
        assert timers.created[0].cancelled
        assert rec.state is ReconcilerState.IDLE

    def test_flush_without_pending_is_noop(self, rec, loader):
        rec.flush()
        assert loader.calls == 0


# ═══════════════════════════════════════════════════════════════════
#  Reload
# ═══════════════════════════════════════════════════════════════════


class TestReload:

    def test_failed_reload_keeps_snapshot(self, project_root, timers):
        previous = ProjectGraph(root_path=project_root, is_valid=True)

        def failing(root):
            raise ProjectLoadError("cannot list tasks")

        rec = Reconciler(project_root, loader=failing, timer_factory=timers, snapshot=previous)
        errors, published = [], []
        rec.on_error(errors.append)
        rec.on_project_changed(published.append)

        rec.handle_event(project_root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)
        timers.live[0].fire()

        assert rec.snapshot is previous
        assert published == []
        assert len(errors) == 1
        assert isinstance(errors[0], ProjectLoadError)
        assert rec.state is ReconcilerState.IDLE

    def test_event_during_reload_rearms_once(self, project_root, timers):
        """Changes that land mid-reload trigger exactly one follow-up reload."""
        calls, states = [], []

        def loader(root):
            calls.append(root)
            states.append(rec.state)
            if len(calls) == 1:
                rec.handle_event(root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)
                rec.handle_event(root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)
            return ProjectGraph(root_path=root, is_valid=True)

        rec = Reconciler(project_root, loader=loader, timer_factory=timers)
        rec.handle_event(project_root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)
        timers.live[0].fire()

        assert len(calls) == 1
        assert states == [ReconcilerState.RELOADING]
        assert rec.state is ReconcilerState.DEBOUNCE_PENDING
        assert len(timers.live) == 1

        timers.live[0].fire()
        assert len(calls) == 2
        assert rec.state is ReconcilerState.IDLE
        assert rec.reload_count == 2

    def test_unexpected_loader_error_is_reported(self, project_root, timers):
        """Any loader exception ends the reload and reaches error listeners."""
        previous = ProjectGraph(root_path=project_root, is_valid=True)

        def exploding(root):
            raise RuntimeError("parser blew up")

        rec = Reconciler(project_root, loader=exploding, timer_factory=timers, snapshot=previous)
        errors = []
        rec.on_error(errors.append)
        rec.handle_event(project_root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)
        timers.live[0].fire()

        assert rec.snapshot is previous
        assert [str(e) for e in errors] == ["parser blew up"]
        assert rec.state is ReconcilerState.IDLE

        rec.handle_event(project_root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)
        assert rec.state is ReconcilerState.DEBOUNCE_PENDING

    def test_deeply_nested_task_does_not_break_reload(self, project_root, write_task, timers):
        rec = Reconciler(project_root, timer_factory=timers, snapshot=build_project(project_root))
        errors = []
        rec.on_error(errors.append)
        write_task(id=1)
        path = write_task(id=2, title="[" * 3000 + "]" * 3000)
        rec.handle_event(path, ChangeKind.ADDED)
        timers.live[0].fire()

        assert errors == []
        assert rec.snapshot.task_ids() == ["1"]
        assert any("task2_task.md" in w for w in rec.snapshot.warnings)

    def test_real_loader_publishes_new_tasks(self, project_root, write_task, timers):
        rec = Reconciler(project_root, timer_factory=timers, snapshot=build_project(project_root))
        assert rec.snapshot.tasks == ()

        path = write_task(id=1)
        rec.handle_event(path, ChangeKind.ADDED)
        timers.live[0].fire()
        assert rec.snapshot.task_ids() == ["1"]

    def test_listener_failure_does_not_stop_others(self, rec, timers, project_root):
        seen = []

        def broken(graph):
            raise RuntimeError("render failed")

        rec.on_project_changed(broken)
        rec.on_project_changed(seen.append)
        rec.handle_event(project_root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)
        timers.live[0].fire()
        assert len(seen) == 1


class TestClose:

    def test_close_inside_listener_stops_later_listeners(self, rec, timers, project_root):
        seen = []

        def closer(graph):
            seen.append("closer")
            rec.close()

        rec.on_project_changed(closer)
        rec.on_project_changed(lambda graph: seen.append("late"))
        rec.handle_event(project_root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)
        timers.live[0].fire()
        assert seen == ["closer"]

    def test_close_cancels_pending(self, rec, timers, loader, project_root):
        published = []
        rec.on_project_changed(published.append)
        rec.handle_event(project_root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)
        rec.close()

        assert rec.closed
        assert timers.created[0].cancelled
        timers.created[0].callback()
        assert loader.calls == 0
        assert published == []
        assert rec.state is ReconcilerState.IDLE

    def test_events_after_close_ignored(self, rec, timers, project_root):
        rec.close()
        rec.handle_event(project_root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)
        assert timers.created == []

    def test_close_during_reload_suppresses_publish(self, project_root, timers):
        published = []

        def loader(root):
            rec.close()
            return ProjectGraph(root_path=root, is_valid=True)

        rec = Reconciler(project_root, loader=loader, timer_factory=timers)
        rec.on_project_changed(published.append)
        rec.handle_event(project_root / ".ai" / "TASKS.md", ChangeKind.MODIFIED)
        timers.live[0].fire()
        assert published == []
        assert rec.snapshot is None


# ═══════════════════════════════════════════════════════════════════
#  Single-file fast path
# ═══════════════════════════════════════════════════════════════════


class TestTaskFastPath:

    def test_modified_task_is_announced(self, rec, write_task):
        changes = []
        rec.on_task_changed(lambda task, kind: changes.append((task.id, kind)))
        path = write_task(id=4, status="inprogress")
        rec.handle_event(path, ChangeKind.MODIFIED)
        assert changes == [("4", ChangeKind.MODIFIED)]

    def test_deleted_task_not_parsed(self, rec, project_root, timers):
        changes = []
        rec.on_task_changed(lambda task, kind: changes.append(task))
        rec.handle_event(_task_path(project_root), ChangeKind.DELETED)
        assert changes == []
        assert len(timers.live) == 1

    def test_malformed_task_still_schedules_reload(self, rec, write_task, timers):
        changes = []
        rec.on_task_changed(lambda task, kind: changes.append(task))
        path = write_task(id=2, status="blocked")
        rec.handle_event(path, ChangeKind.ADDED)
        assert changes == []
        assert len(timers.live) == 1

    def test_non_task_markdown_in_tasks_dir_not_announced(self, rec, project_root, task_doc, timers):
        changes = []
        rec.on_task_changed(lambda task, kind: changes.append(task))
        path = _task_path(project_root, "notes.md")
        path.write_text(task_doc(id=9), encoding="utf-8")
        rec.handle_event(path, ChangeKind.MODIFIED)
        assert changes == []
        assert len(timers.live) == 1

    def test_plan_change_not_parsed_as_task(self, rec, project_root):
        changes = []
        rec.on_task_changed(lambda task, kind: changes.append(task))
        rec.handle_event(project_root / ".ai" / "plans" / "PLAN.md", ChangeKind.MODIFIED)
        assert changes == []


# ═══════════════════════════════════════════════════════════════════
#  Watchdog feed
# ═══════════════════════════════════════════════════════════════════


class RecordingReconciler:
    def __init__(self):
        self.events = []
        self.errors = []

    def handle_event(self, path, kind):
        self.events.append((path, kind))

    def report_error(self, exc):
        self.errors.append(exc)


class TestChangeHandler:

    def test_file_events(self):
        target = RecordingReconciler()
        handler = _ChangeHandler(target)
        handler.dispatch(FileCreatedEvent("/p/.ai/tasks/task1_a.md"))
        handler.dispatch(FileModifiedEvent("/p/.ai/tasks/task1_a.md"))
        handler.dispatch(FileDeletedEvent("/p/.ai/tasks/task1_a.md"))
        assert target.events == [
            ("/p/.ai/tasks/task1_a.md", ChangeKind.ADDED),
            ("/p/.ai/tasks/task1_a.md", ChangeKind.MODIFIED),
            ("/p/.ai/tasks/task1_a.md", ChangeKind.DELETED),
        ]

    def test_move_is_delete_then_add(self):
        target = RecordingReconciler()
        _ChangeHandler(target).dispatch(
            FileMovedEvent("/p/.ai/tasks/task1_a.md", "/p/.ai/tasks/task1_b.md")
        )
        assert target.events == [
            ("/p/.ai/tasks/task1_a.md", ChangeKind.DELETED),
            ("/p/.ai/tasks/task1_b.md", ChangeKind.ADDED),
        ]

    def test_directory_events_ignored(self):
        target = RecordingReconciler()
        _ChangeHandler(target).dispatch(DirModifiedEvent("/p/.ai/tasks"))
        assert target.events == []

    def test_removed_watched_dir_reported(self):
        lost = []
        handler = _ChangeHandler(RecordingReconciler(), Path("/p/.ai"), lambda: lost.append(True))
        handler.dispatch(DirDeletedEvent("/p/.ai"))
        assert lost == [True]

    def test_moved_watched_dir_reported(self):
        lost = []
        handler = _ChangeHandler(RecordingReconciler(), Path("/p/.ai"), lambda: lost.append(True))
        handler.dispatch(DirMovedEvent("/p/.ai", "/p/.ai-old"))
        assert lost == [True]

    def test_removed_subdirectory_is_not_loss(self):
        lost = []
        handler = _ChangeHandler(RecordingReconciler(), Path("/p/.ai"), lambda: lost.append(True))
        handler.dispatch(DirDeletedEvent("/p/.ai/tasks"))
        handler.dispatch(FileDeletedEvent("/p/.ai"))
        assert lost == []


class FakeObserver:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.scheduled = []
        self.started = False
        self.stopped = False
        self.joined = False

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append((handler, path, recursive))

    def start(self):
        if self.fail:
            raise OSError("inotify watch limit reached")
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        self.joined = True


class TestProjectWatcher:

    def test_start_and_stop(self, project_root):
        observer = FakeObserver()
        watcher = ProjectWatcher(project_root, RecordingReconciler(), observer_factory=lambda: observer)
        watcher.start()

        assert watcher.is_active
        assert observer.started
        (_, path, recursive), = observer.scheduled
        assert path == str(project_root / ".ai")
        assert recursive is True

        watcher.stop()
        assert not watcher.is_active
        assert observer.stopped and observer.joined
        watcher.stop()

    def test_start_twice_is_noop(self, project_root):
        observers = []

        def factory():
            observers.append(FakeObserver())
            return observers[-1]

        watcher = ProjectWatcher(project_root, RecordingReconciler(), observer_factory=factory)
        watcher.start()
        watcher.start()
        assert len(observers) == 1

    def test_start_failure_raises_watch_error(self, project_root):
        target = RecordingReconciler()
        watcher = ProjectWatcher(
            project_root, target, observer_factory=lambda: FakeObserver(fail=True)
        )
        with pytest.raises(WatchError, match="inotify"):
            watcher.start()
        assert not watcher.is_active
        assert len(target.errors) == 1
        assert isinstance(target.errors[0], WatchError)

    def test_removed_marker_stops_watching(self, project_root):
        observer = FakeObserver()
        target = RecordingReconciler()
        watcher = ProjectWatcher(project_root, target, observer_factory=lambda: observer)
        watcher.start()

        watcher.handler.dispatch(DirDeletedEvent(str(project_root / ".ai")))

        assert not watcher.is_active
        assert observer.stopped
        assert not observer.joined
        assert len(target.errors) == 1
        assert isinstance(target.errors[0], WatchError)
        assert "watching stopped" in str(target.errors[0])

        watcher.handler.dispatch(DirDeletedEvent(str(project_root / ".ai")))
        assert len(target.errors) == 1
        watcher.stop()


# ═══════════════════════════════════════════════════════════════════
#  Real observer (opt-in)
# ═══════════════════════════════════════════════════════════════════


@pytest.mark.e2e
class TestLiveWatch:

    def test_edit_triggers_reload(self, project_root, write_task):
        write_task(id=1)
        rec = Reconciler(project_root, debounce_ms=50, snapshot=build_project(project_root))
        reloaded = threading.Event()
        rec.on_project_changed(lambda graph: reloaded.set())
        watcher = ProjectWatcher(project_root, rec)
        watcher.start()
        try:
            write_task(id=2)
            assert reloaded.wait(timeout=5)
            assert rec.snapshot.task_ids() == ["1", "2"]
        finally:
            watcher.stop()
            rec.close()
