"""
Single-project history watcher.

Watches a project's global-side conversation directory and mirrors new or
changed conversations into the project's ``.claude/history``. With
bidirectional mode a second watch mirrors local edits back to the global
side. Raw change notifications are also forwarded to registered callbacks
whether or not anything gets copied.
"""

import logging
import platform
import threading
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler

# Use PollingObserver on macOS to avoid fsevents C extension crashes during
# rapid observer start/stop cycles
if platform.system() == "Darwin":  # macOS
    from watchdog.observers.polling import PollingObserver as Observer
else:
    from watchdog.observers import Observer

from claude_local.config import settings
from claude_local.debounce import EventDebouncer
from claude_local.models import WatcherEvent, WatcherEventType
from claude_local.paths import (
    PathLike,
    get_global_source_path,
    get_history_path,
    get_local_storage_path,
    is_conversation_file,
)
from claude_local.storage import StorageManager

logger = logging.getLogger(__name__)

WatcherCallback = Callable[[WatcherEvent], None]
EventSink = Callable[[WatcherEvent], None]


def _event_path(raw: bytes | str) -> Path:
    if isinstance(raw, bytes):
        return Path(raw.decode("utf-8", errors="replace"))
    return Path(raw)


class HistoryEventHandler(FileSystemEventHandler):
    """
    Watchdog event handler for conversation files.

    Translates created/modified/deleted/moved events on ``.jsonl``/``.json``
    files into WatcherEvents and passes them to ``sink``. Directories and
    dotfiles are ignored.
    """

    def __init__(self, sink: EventSink):
        super().__init__()
        self.sink = sink

    def _emit(self, event_type: WatcherEventType, raw_path: bytes | str) -> None:
        path = _event_path(raw_path)
        if is_conversation_file(path):
            self.sink(WatcherEvent(type=event_type, path=path))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(WatcherEventType.ADD, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(WatcherEventType.CHANGE, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(WatcherEventType.UNLINK, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        """A rename is an unlink of the old name plus an add of the new one."""
        if event.is_directory:
            return
        self._emit(WatcherEventType.UNLINK, event.src_path)
        self._emit(WatcherEventType.ADD, event.dest_path)


class HistoryWatcher:
    """
    Watches one project's conversation history and keeps it mirrored.

    Each watched directory gets its own debounced channel, so a burst of
    writes to a conversation results in a single copy once it settles.
    """

    def __init__(
        self,
        storage_manager: StorageManager,
        debounce_seconds: Optional[float] = None,
        poll_interval: Optional[float] = None,
        observer_factory: Callable[[], object] = Observer,
    ):
        self.storage_manager = storage_manager
        self.debounce_seconds = (
            settings.watch_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self.poll_interval = (
            settings.watch_poll_interval if poll_interval is None else poll_interval
        )
        self.observer_factory = observer_factory

        self.observer = None
        self.project_root: Optional[Path] = None
        self.global_project_path: Optional[Path] = None
        self.local_history_path: Optional[Path] = None
        self.global_debouncer: Optional[EventDebouncer] = None
        self.local_debouncer: Optional[EventDebouncer] = None

        self._callbacks: list[WatcherCallback] = []
        self._callbacks_lock = threading.Lock()

    def start_watching(
        self,
        global_path: PathLike,
        project_root: PathLike,
        bidirectional: bool = False,
        ignore_initial: bool = True,
    ) -> None:
        """
        Start watching a project.

        Args:
            global_path: Root of the global store
            project_root: Project whose local store is kept in sync
            bidirectional: Also mirror local changes back to the global side
            ignore_initial: If False, run one sync pass before watching
        """
        if self.is_watching():
            self.stop_watching()

        self.project_root = Path(project_root)
        self.global_project_path = get_global_source_path(
            global_path, self.project_root, self.storage_manager.layout
        )
        self.local_history_path = get_history_path(get_local_storage_path(self.project_root))

        # The observer can only attach to directories that exist
        self.global_project_path.mkdir(parents=True, exist_ok=True)
        self.local_history_path.mkdir(parents=True, exist_ok=True)

        if not ignore_initial:
            result = self.storage_manager.sync_to_local(
                self.project_root, bidirectional=bidirectional
            )
            logger.info(
                f"Initial sync for {self.project_root}: "
                f"{result.files_processed} file(s), {len(result.errors)} error(s)"
            )

        observer = self.observer_factory()

        self.global_debouncer = EventDebouncer(
            handler=self._sync_global_batch,
            quiet_period=self.debounce_seconds,
            poll_interval=self.poll_interval,
            name="watch-global",
        )
        global_debouncer = self.global_debouncer
        observer.schedule(
            HistoryEventHandler(lambda event: self._handle_event(event, global_debouncer)),
            str(self.global_project_path),
            recursive=False,
        )

        if bidirectional:
            self.local_debouncer = EventDebouncer(
                handler=self._sync_local_batch,
                quiet_period=self.debounce_seconds,
                poll_interval=self.poll_interval,
                name="watch-local",
            )
            local_debouncer = self.local_debouncer
            observer.schedule(
                HistoryEventHandler(lambda event: self._handle_event(event, local_debouncer)),
                str(self.local_history_path),
                recursive=False,
            )

        for debouncer in (self.global_debouncer, self.local_debouncer):
            if debouncer:
                debouncer.start()
        observer.start()
        self.observer = observer

        logger.info(f"Watching {self.global_project_path} for {self.project_root}")
        if bidirectional:
            logger.info(f"Watching {self.local_history_path} (bidirectional)")

    def _handle_event(self, event: WatcherEvent, debouncer: EventDebouncer) -> None:
        """Notify callbacks, then queue adds/changes for syncing."""
        self._notify(event)
        if event.type is not WatcherEventType.UNLINK:
            debouncer.put(event)

    def _notify(self, event: WatcherEvent) -> None:
        with self._callbacks_lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Watcher callback failed: {e}", exc_info=True)

    def _sync_global_batch(self, events: list[WatcherEvent]) -> None:
        """Copy settled global-side changes that belong to this project."""
        for event in events:
            if event.type is WatcherEventType.UNLINK:
                continue
            try:
                if self.storage_manager.sync_file(
                    event.path, self.local_history_path, project_root=self.project_root
                ):
                    logger.info(f"✓ Synced {event.path.name} to local")
            except Exception as e:
                logger.error(f"✗ Failed to sync {event.path.name} to local: {e}", exc_info=True)

    def _sync_local_batch(self, events: list[WatcherEvent]) -> None:
        """Mirror settled local changes to the global side, without a membership check."""
        for event in events:
            if event.type is WatcherEventType.UNLINK:
                continue
            try:
                if self.storage_manager.sync_file(event.path, self.global_project_path):
                    logger.info(f"✓ Synced {event.path.name} to global")
            except Exception as e:
                logger.error(f"✗ Failed to sync {event.path.name} to global: {e}", exc_info=True)

    def on(self, callback: WatcherCallback) -> None:
        """Register a callback for raw file events."""
        with self._callbacks_lock:
            self._callbacks.append(callback)

    def off(self, callback: WatcherCallback) -> None:
        """Unregister a callback. Unknown callbacks are ignored."""
        with self._callbacks_lock:
            self._callbacks = [cb for cb in self._callbacks if cb is not callback]

    def stop_watching(self) -> None:
        """Stop watching. Safe to call when not watching or more than once."""
        observer, self.observer = self.observer, None

        if observer is not None:
            try:
                observer.stop()
                observer.join(timeout=3)
                if observer.is_alive():
                    logger.warning("Observer thread did not stop cleanly")
                else:
                    logger.info("✓ Observer stopped")
            except Exception as e:
                logger.error(f"Error stopping observer: {e}", exc_info=True)

        for debouncer in (self.global_debouncer, self.local_debouncer):
            if debouncer:
                debouncer.stop()
        self.global_debouncer = None
        self.local_debouncer = None

    def is_watching(self) -> bool:
        """Check if the watcher is currently active."""
        return self.observer is not None
