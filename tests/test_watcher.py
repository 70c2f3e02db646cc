"""Tests for the single-project HistoryWatcher."""

from pathlib import Path
from unittest.mock import Mock

import pytest
from conftest import write_conversation

from claude_local.models import WatcherEvent, WatcherEventType
from claude_local.watcher import HistoryEventHandler, HistoryWatcher


@pytest.fixture
def observer():
    observer = Mock()
    observer.is_alive.return_value = False
    return observer


@pytest.fixture
def watcher(storage_manager, observer):
    """Watcher with a mock observer and a debounce long enough to never fire on its own."""
    watcher = HistoryWatcher(
        storage_manager, debounce_seconds=60, observer_factory=Mock(return_value=observer)
    )
    yield watcher
    watcher.stop_watching()


class TestHistoryEventHandler:
    """Tests for watchdog event translation."""

    def setup_method(self):
        self.events = []
        self.handler = HistoryEventHandler(self.events.append)

    def test_created_is_add(self):
        self.handler.on_created(Mock(is_directory=False, src_path="/h/a.jsonl"))

        assert self.events[0].type is WatcherEventType.ADD
        assert self.events[0].path == Path("/h/a.jsonl")

    def test_modified_is_change(self):
        self.handler.on_modified(Mock(is_directory=False, src_path="/h/a.json"))
        assert self.events[0].type is WatcherEventType.CHANGE

    def test_deleted_is_unlink(self):
        self.handler.on_deleted(Mock(is_directory=False, src_path="/h/a.jsonl"))
        assert self.events[0].type is WatcherEventType.UNLINK

    def test_moved_is_unlink_then_add(self):
        self.handler.on_moved(
            Mock(is_directory=False, src_path="/h/a.jsonl.tmp", dest_path="/h/a.jsonl")
        )

        # The temporary name is not a conversation file
        assert [(e.type, e.path.name) for e in self.events] == [
            (WatcherEventType.ADD, "a.jsonl")
        ]

    def test_ignores_directories_and_other_files(self):
        self.handler.on_created(Mock(is_directory=True, src_path="/h/sub.jsonl"))
        self.handler.on_created(Mock(is_directory=False, src_path="/h/notes.txt"))
        self.handler.on_created(Mock(is_directory=False, src_path="/h/.tmp.jsonl"))

        assert self.events == []

    def test_decodes_bytes_paths(self):
        self.handler.on_created(Mock(is_directory=False, src_path=b"/h/a.jsonl"))
        assert self.events[0].path == Path("/h/a.jsonl")


class TestStartStop:
    """Tests for watcher lifecycle."""

    def test_start_schedules_global_watch(self, watcher, observer, global_dir, project_root):
        watcher.start_watching(global_dir, project_root)

        assert watcher.is_watching() is True
        assert watcher.global_project_path.is_dir()
        assert watcher.local_history_path.is_dir()
        assert observer.schedule.call_count == 1
        observer.start.assert_called_once()
        assert watcher.local_debouncer is None

    def test_bidirectional_schedules_two_watches(
        self, watcher, observer, global_dir, project_root
    ):
        watcher.start_watching(global_dir, project_root, bidirectional=True)

        assert observer.schedule.call_count == 2
        assert watcher.local_debouncer is not None

    def test_stop_is_idempotent(self, watcher, observer, global_dir, project_root):
        watcher.stop_watching()
        watcher.start_watching(global_dir, project_root)

        watcher.stop_watching()
        watcher.stop_watching()

        assert watcher.is_watching() is False
        observer.stop.assert_called_once()
        observer.join.assert_called_once_with(timeout=3)

    def test_initial_sync_when_not_ignored(
        self, watcher, global_project_dir, global_dir, project_root
    ):
        write_conversation(global_project_dir / "a.jsonl", cwd=str(project_root))

        watcher.start_watching(global_dir, project_root, ignore_initial=False)

        assert (project_root / ".claude" / "history" / "a.jsonl").exists()

    def test_no_initial_sync_by_default(
        self, watcher, global_project_dir, global_dir, project_root
    ):
        write_conversation(global_project_dir / "a.jsonl", cwd=str(project_root))

        watcher.start_watching(global_dir, project_root)

        assert not (project_root / ".claude" / "history" / "a.jsonl").exists()


class TestSyncOnChange:
    """Tests for debounced copying."""

    def test_global_change_copies_member_files(
        self, watcher, global_project_dir, global_dir, project_root
    ):
        watcher.start_watching(global_dir, project_root)
        mine = write_conversation(global_project_dir / "mine.jsonl", cwd=str(project_root))
        theirs = write_conversation(global_project_dir / "theirs.jsonl", cwd="/elsewhere")

        for path in (mine, theirs):
            watcher._handle_event(
                WatcherEvent(type=WatcherEventType.ADD, path=path), watcher.global_debouncer
            )
        watcher.global_debouncer.flush()

        local = project_root / ".claude" / "history"
        assert (local / "mine.jsonl").exists()
        assert not (local / "theirs.jsonl").exists()

    def test_local_change_mirrors_to_global(self, watcher, global_dir, project_root):
        watcher.start_watching(global_dir, project_root, bidirectional=True)
        local_file = write_conversation(watcher.local_history_path / "a.jsonl")

        watcher._handle_event(
            WatcherEvent(type=WatcherEventType.CHANGE, path=local_file), watcher.local_debouncer
        )
        watcher.local_debouncer.flush()

        assert (watcher.global_project_path / "a.jsonl").exists()

    def test_unlink_is_not_queued(self, watcher, global_dir, project_root):
        watcher.start_watching(global_dir, project_root)

        watcher._handle_event(
            WatcherEvent(type=WatcherEventType.UNLINK, path=Path("/x/a.jsonl")),
            watcher.global_debouncer,
        )

        assert watcher.global_debouncer.pending_count == 0


class TestCallbacks:
    """Tests for raw event subscribers."""

    def test_callbacks_receive_every_event(self, watcher, global_dir, project_root):
        watcher.start_watching(global_dir, project_root)
        received = []
        watcher.on(received.append)
        event = WatcherEvent(type=WatcherEventType.UNLINK, path=Path("/x/a.jsonl"))

        watcher._handle_event(event, watcher.global_debouncer)

        assert received == [event]

    def test_off_removes_callback(self, watcher, global_dir, project_root):
        watcher.start_watching(global_dir, project_root)
        callback = Mock()
        watcher.on(callback)
        watcher.off(callback)

        watcher._handle_event(
            WatcherEvent(type=WatcherEventType.ADD, path=Path("/x/a.jsonl")),
            watcher.global_debouncer,
        )

        callback.assert_not_called()

    def test_off_unknown_callback_is_noop(self, watcher):
        watcher.off(Mock())

    def test_failing_callback_does_not_block_others(self, watcher, global_dir, project_root):
        watcher.start_watching(global_dir, project_root)
        good = Mock()
        watcher.on(Mock(side_effect=RuntimeError("boom")))
        watcher.on(good)

        watcher._handle_event(
            WatcherEvent(type=WatcherEventType.ADD, path=Path("/x/a.jsonl")),
            watcher.global_debouncer,
        )

        good.assert_called_once()


class TestBatchErrors:
    """Tests for per-file error isolation in debounced batches."""

    def test_failing_file_does_not_block_rest_of_global_batch(
        self, watcher, storage_manager, global_dir, project_root
    ):
        watcher.start_watching(global_dir, project_root)
        storage_manager.sync_file = Mock(side_effect=[RuntimeError("boom"), True])

        watcher._sync_global_batch(
            [
                WatcherEvent(type=WatcherEventType.ADD, path=Path("/x/a.jsonl")),
                WatcherEvent(type=WatcherEventType.CHANGE, path=Path("/x/b.jsonl")),
            ]
        )

        assert storage_manager.sync_file.call_count == 2
        assert storage_manager.sync_file.call_args[0][0] == Path("/x/b.jsonl")

    def test_failing_file_does_not_block_rest_of_local_batch(
        self, watcher, storage_manager, global_dir, project_root
    ):
        watcher.start_watching(global_dir, project_root, bidirectional=True)
        storage_manager.sync_file = Mock(side_effect=[ValueError("bad"), True])

        watcher._sync_local_batch(
            [
                WatcherEvent(type=WatcherEventType.ADD, path=Path("/x/a.jsonl")),
                WatcherEvent(type=WatcherEventType.ADD, path=Path("/x/b.jsonl")),
            ]
        )

        assert storage_manager.sync_file.call_count == 2
