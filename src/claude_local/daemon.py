"""
Multi-project sync daemon.

Discovers projects with an initialized ``.claude/history`` under a set of
search roots, keeps one debounced watch per project plus one on the global
store, and rate-limits syncs per project.

- A settled burst of local changes syncs that project to the global store.
- A settled burst of global changes syncs every monitored project to local;
  the per-file membership check inside the sync engine decides what lands
  where.
- A project that synced less than ``cooldown_seconds`` ago skips the sync
  entirely (dropped, not deferred).

All state lives on the SyncDaemon instance, so several daemons can run
side by side in one process.
"""

import logging
import os
import signal
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Event, Lock
from typing import Any, Callable, Iterable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler

from claude_local.config import settings
from claude_local.debounce import EventDebouncer
from claude_local.exceptions import DaemonAlreadyRunningError
from claude_local.models import SyncDirection, SyncResult, WatcherEvent
from claude_local.paths import (
    HISTORY_DIRNAME,
    LOCAL_STORE_DIRNAME,
    PathLike,
    get_global_watch_root,
    get_history_path,
    get_local_storage_path,
)
from claude_local.storage import StorageManager
from claude_local.watcher import HistoryEventHandler, Observer

logger = logging.getLogger(__name__)

LOG_PREFIX = "[claude-local daemon]"


@dataclass
class MonitoredProject:
    """A project the daemon is keeping in sync."""

    root: Path
    debouncer: EventDebouncer
    watch: Any = None  # watchdog ObservedWatch, None if the watch could not be set up
    last_sync: Optional[float] = None  # clock() value of the last completed sync
    added_at: datetime = field(default_factory=datetime.now)


class ProjectDiscoveryHandler(FileSystemEventHandler):
    """Spots ``.claude/history`` directories created under a search root."""

    def __init__(
        self, search_root: Path, max_depth: int, on_project: Callable[[Path], None]
    ):
        super().__init__()
        self.search_root = search_root
        self.max_depth = max_depth
        self.on_project = on_project

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            return
        path = Path(os.fsdecode(event.src_path))

        if path.name == HISTORY_DIRNAME and path.parent.name == LOCAL_STORE_DIRNAME:
            project_root = path.parent.parent
        elif path.name == LOCAL_STORE_DIRNAME and get_history_path(path).is_dir():
            project_root = path.parent
        else:
            return

        try:
            depth = len(project_root.relative_to(self.search_root).parts)
        except ValueError:
            return
        if depth < self.max_depth:
            self.on_project(project_root)


class SyncDaemon:
    """
    Background daemon that monitors projects and auto-syncs conversations.

    Responsibilities:
    - Discover projects under the search roots (bounded depth)
    - Pick up projects created while running
    - Mirror local changes to global, and global changes to every project
    - Rate-limit syncs per project
    """

    def __init__(
        self,
        search_paths: Optional[Iterable[PathLike]] = None,
        storage_manager: Optional[StorageManager] = None,
        max_depth: Optional[int] = None,
        debounce_seconds: Optional[float] = None,
        cooldown_seconds: Optional[float] = None,
        poll_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        observer_factory: Callable[[], Any] = Observer,
    ):
        if search_paths is None:
            search_paths = settings.daemon_search_paths
        self.search_paths = [Path(p).expanduser() for p in search_paths if p]
        self.storage_manager = storage_manager or StorageManager(
            settings.global_storage_path or None, layout=settings.global_layout
        )
        self.max_depth = settings.daemon_max_depth if max_depth is None else max_depth
        self.debounce_seconds = (
            settings.watch_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self.cooldown_seconds = (
            settings.daemon_sync_cooldown_seconds
            if cooldown_seconds is None
            else cooldown_seconds
        )
        self.poll_interval = (
            settings.watch_poll_interval if poll_interval is None else poll_interval
        )
        self.clock = clock
        self.observer_factory = observer_factory

        self.projects: dict[str, MonitoredProject] = {}
        self._lock = Lock()  # Protects projects
        self._shutdown_event = Event()
        self._running = False

        self.observer: Any = None
        self._observer_started = False
        self.global_watch: Any = None
        self.discovery_watches: list[Any] = []
        self.global_debouncer = self._make_debouncer(self._handle_global_batch, "daemon-global")

        self.syncs_completed = 0
        self.syncs_skipped = 0

        logger.info(f"{LOG_PREFIX} Initialized with {len(self.search_paths)} search path(s)")

    @staticmethod
    def _key(project_root: PathLike) -> str:
        return str(Path(project_root).absolute())

    def _make_debouncer(self, handler, name: str) -> EventDebouncer:
        return EventDebouncer(
            handler=handler,
            quiet_period=self.debounce_seconds,
            poll_interval=self.poll_interval,
            name=name,
        )

    def _ensure_observer(self) -> Any:
        if self.observer is None:
            self.observer = self.observer_factory()
            self._observer_started = False
        return self.observer

    def start(self) -> None:
        """Discover projects and start watching. Calling start twice is a no-op."""
        if self._running:
            return
        logger.info(f"{LOG_PREFIX} Starting...")
        self._shutdown_event.clear()
        self._running = True
        observer = self._ensure_observer()

        self.discover_projects()
        self._watch_for_new_projects()
        self._watch_global_storage()

        self.global_debouncer.start()
        with self._lock:
            projects = list(self.projects.values())
        for project in projects:
            project.debouncer.start()

        observer.start()
        self._observer_started = True
        logger.info(f"{LOG_PREFIX} Monitoring {len(projects)} project(s)")

    def discover_projects(self) -> None:
        """Scan every existing search root for initialized projects."""
        for search_path in self.search_paths:
            if not search_path.is_dir():
                logger.debug(f"{LOG_PREFIX} Search path not found: {search_path}")
                continue
            try:
                self.scan_directory(search_path, self.max_depth)
            except Exception as e:
                logger.error(f"{LOG_PREFIX} Error scanning {search_path}: {e}", exc_info=True)

    def scan_directory(self, directory: Path, max_depth: int) -> None:
        """
        Recursively look for ``.claude/history`` below ``directory``.

        ``directory`` itself counts as depth 0; nothing at depth ``max_depth``
        or deeper is examined. Dot-directories other than ``.claude`` and
        unreadable directories are skipped.
        """
        if max_depth <= 0:
            return
        try:
            entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
        except OSError:
            return

        for entry in entries:
            try:
                if not entry.is_dir(follow_symlinks=False):
                    continue
            except OSError:
                continue

            if entry.name == LOCAL_STORE_DIRNAME:
                if get_history_path(entry.path).is_dir():
                    self.monitor_project(directory)
            elif not entry.name.startswith("."):
                self.scan_directory(Path(entry.path), max_depth - 1)

    def _watch_for_new_projects(self) -> None:
        observer = self._ensure_observer()
        for search_path in self.search_paths:
            if not search_path.is_dir():
                continue
            try:
                handler = ProjectDiscoveryHandler(
                    search_path, self.max_depth, self._on_new_project
                )
                self.discovery_watches.append(
                    observer.schedule(handler, str(search_path), recursive=True)
                )
            except Exception as e:
                logger.error(
                    f"{LOG_PREFIX} Could not watch {search_path} for new projects: {e}",
                    exc_info=True,
                )

    def _on_new_project(self, project_root: Path) -> None:
        if self._key(project_root) in self.projects:
            return
        logger.info(f"{LOG_PREFIX} Detected new project: {project_root}")
        self.monitor_project(project_root)

    def _watch_global_storage(self) -> None:
        global_root = get_global_watch_root(
            self.storage_manager.global_path, self.storage_manager.layout
        )
        if not global_root.is_dir():
            logger.info(f"{LOG_PREFIX} Global storage not found, skipping global watch")
            return
        try:
            self.global_watch = self._ensure_observer().schedule(
                HistoryEventHandler(self.notify_global_change),
                str(global_root),
                recursive=True,
            )
            logger.info(f"{LOG_PREFIX} Watching global storage: {global_root}")
        except Exception as e:
            logger.error(f"{LOG_PREFIX} Could not watch global storage: {e}", exc_info=True)

    def monitor_project(self, project_root: PathLike) -> bool:
        """
        Start monitoring a project: register it, sync both ways once, then
        watch its local history.

        Accepts any path, including projects deeper than the discovery depth.

        Returns:
            False if the project was already monitored
        """
        project_root = Path(project_root).absolute()
        key = self._key(project_root)

        with self._lock:
            if key in self.projects:
                return False
            project = MonitoredProject(
                root=project_root,
                debouncer=self._make_debouncer(
                    lambda events: self._handle_local_batch(project_root, events),
                    f"daemon-{project_root.name}",
                ),
            )
            self.projects[key] = project

        logger.info(f"{LOG_PREFIX} Monitoring project: {project_root}")

        try:
            self.sync_project(project_root, SyncDirection.BIDIRECTIONAL)
        except Exception as e:
            logger.error(
                f"{LOG_PREFIX} Initial sync failed for {project_root}: {e}", exc_info=True
            )

        local_history = get_history_path(get_local_storage_path(project_root))
        try:
            local_history.mkdir(parents=True, exist_ok=True)
            project.watch = self._ensure_observer().schedule(
                HistoryEventHandler(
                    lambda event: self.notify_local_change(project_root, event)
                ),
                str(local_history),
                recursive=False,
            )
        except Exception as e:
            logger.error(
                f"{LOG_PREFIX} Could not watch {local_history}: {e}", exc_info=True
            )

        if self._running:
            project.debouncer.start()
        return True

    def notify_local_change(self, project_root: PathLike, event: WatcherEvent) -> None:
        """Feed a local-history change for one project into its channel."""
        project = self.projects.get(self._key(project_root))
        if project is None:
            return
        logger.debug(
            f"{LOG_PREFIX} Change detected in {project.root}: {event.type.value} {event.path}"
        )
        project.debouncer.put(event)

    def notify_global_change(self, event: WatcherEvent) -> None:
        """Feed a global-store change into the global channel."""
        logger.debug(f"{LOG_PREFIX} Global change detected: {event.type.value} {event.path}")
        self.global_debouncer.put(event)

    def _handle_local_batch(self, project_root: Path, events: list[WatcherEvent]) -> None:
        logger.info(f"{LOG_PREFIX} {len(events)} local change(s) in {project_root}")
        self.sync_project(project_root, SyncDirection.TO_GLOBAL)

    def _handle_global_batch(self, events: list[WatcherEvent]) -> None:
        with self._lock:
            roots = [project.root for project in self.projects.values()]
        logger.info(
            f"{LOG_PREFIX} {len(events)} global change(s), syncing {len(roots)} project(s)"
        )
        for root in roots:
            self.sync_project(root, SyncDirection.TO_LOCAL)

    def sync_project(
        self, project_root: PathLike, direction: SyncDirection
    ) -> Optional[SyncResult]:
        """
        Sync one monitored project, subject to the per-project cooldown.

        Returns:
            The SyncResult, or None if the project is unknown, the sync was
            rate-limited, or the engine raised
        """
        with self._lock:
            project = self.projects.get(self._key(project_root))
            if project is None:
                return None
            now = self.clock()
            if project.last_sync is not None and now - project.last_sync < self.cooldown_seconds:
                self.syncs_skipped += 1
                logger.debug(f"{LOG_PREFIX} Rate-limited sync for {project.root}")
                return None

        direction = SyncDirection(direction)
        try:
            if direction is SyncDirection.TO_LOCAL:
                result = self.storage_manager.sync_to_local(project.root)
            elif direction is SyncDirection.TO_GLOBAL:
                result = self.storage_manager.sync_to_global(project.root)
            else:
                result = self.storage_manager.sync_to_local(project.root, bidirectional=True)
        except Exception as e:
            logger.error(f"{LOG_PREFIX} Sync error for {project.root}: {e}", exc_info=True)
            return None

        with self._lock:
            project.last_sync = self.clock()
            self.syncs_completed += 1

        if result.success:
            logger.info(
                f"{LOG_PREFIX} ✓ {direction.value} sync {project.root}: "
                f"{result.files_processed} file(s)"
            )
        else:
            logger.error(
                f"{LOG_PREFIX} ✗ {direction.value} sync {project.root}: "
                f"{len(result.errors)} error(s): {'; '.join(str(e) for e in result.errors)}"
            )
        return result

    def flush(self) -> None:
        """Dispatch every pending batch now, global channel first."""
        self.global_debouncer.flush()
        with self._lock:
            projects = list(self.projects.values())
        for project in projects:
            project.debouncer.flush()

    def stop(self) -> None:
        """Close every watch and clear the project table. Safe to call twice."""
        logger.info(f"{LOG_PREFIX} Stopping...")
        self._shutdown_event.set()

        with self._lock:
            projects = list(self.projects.values())
            self.projects.clear()

        for project in projects:
            try:
                project.debouncer.stop()
                if project.watch is not None and self.observer is not None:
                    self.observer.unschedule(project.watch)
            except Exception as e:
                logger.error(f"{LOG_PREFIX} Error closing watch for {project.root}: {e}")

        self.global_debouncer.stop()
        observer, self.observer = self.observer, None
        if observer is not None:
            try:
                observer.unschedule_all()
                if self._observer_started:
                    observer.stop()
                    observer.join(timeout=3)
            except Exception as e:
                logger.error(f"{LOG_PREFIX} Error stopping observer: {e}", exc_info=True)

        self._observer_started = False
        self.global_watch = None
        self.discovery_watches = []
        self._running = False
        logger.info(f"{LOG_PREFIX} Stopped")

    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> dict[str, Any]:
        """Point-in-time daemon status."""
        with self._lock:
            roots = [str(project.root) for project in self.projects.values()]
            return {
                "running": self._running,
                "project_count": len(roots),
                "projects": roots,
                "syncs_completed": self.syncs_completed,
                "syncs_skipped": self.syncs_skipped,
            }

    def wait(self) -> None:
        """Block until stop() is called."""
        while not self._shutdown_event.is_set():
            self._shutdown_event.wait(timeout=1)


def read_pid_file(pid_file: Path) -> Optional[int]:
    """
    Return the PID recorded in ``pid_file`` if that process is alive.

    A PID file pointing at a dead process is stale: it is removed and None
    is returned.
    """
    try:
        pid = int(pid_file.read_text().strip())
    except (OSError, ValueError):
        return None

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        logger.warning(f"{LOG_PREFIX} Removing stale PID file {pid_file} (PID {pid})")
        pid_file.unlink(missing_ok=True)
        return None
    except PermissionError:
        # Process exists but belongs to someone else
        return pid
    return pid


def write_pid_file(pid_file: Path) -> None:
    """Record this process in ``pid_file``, refusing if a live daemon holds it."""
    existing = read_pid_file(pid_file)
    if existing is not None and existing != os.getpid():
        raise DaemonAlreadyRunningError(existing)
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(os.getpid()))


def run_daemon(daemon: SyncDaemon, pid_file: Path) -> None:
    """
    Run a daemon in the foreground until SIGINT/SIGTERM.

    Writes the PID file before starting and removes it on exit.
    """
    write_pid_file(pid_file)

    def signal_handler(signum: int, frame: Any) -> None:
        logger.info(f"{LOG_PREFIX} Received signal {signum}, shutting down...")
        daemon.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(f"{LOG_PREFIX} Process starting (PID: {os.getpid()})")
    try:
        daemon.start()
        daemon.wait()
    except Exception as e:
        logger.error(f"{LOG_PREFIX} Daemon crashed: {e}", exc_info=True)
        daemon.stop()
        pid_file.unlink(missing_ok=True)
        sys.exit(1)
    pid_file.unlink(missing_ok=True)
