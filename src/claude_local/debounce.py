"""
Debounced event channel.

Filesystem observers push WatcherEvents into a bounded queue; one worker
thread per channel drains it, coalesces events per path (latest wins) and
hands the batch to a handler once no new event has arrived for the quiet
period. Editors that write in chunks or write-then-rename produce a burst
of events that settles into a single handler call.

The clock is injectable and ``drain_ready``/``flush`` can be driven
directly, so callers can test debounce behaviour with synthetic events and
no real waiting.
"""

import logging
import threading
import time
from queue import Empty, Full, Queue
from threading import Event, Thread
from typing import Callable, Optional

from claude_local.models import WatcherEvent

logger = logging.getLogger(__name__)

BatchHandler = Callable[[list[WatcherEvent]], None]


class EventDebouncer:
    """Bounded event channel with a single coalescing consumer."""

    def __init__(
        self,
        handler: BatchHandler,
        quiet_period: float = 2.0,
        poll_interval: float = 0.1,
        maxsize: int = 1024,
        clock: Callable[[], float] = time.monotonic,
        name: str = "debouncer",
    ):
        self.handler = handler
        self.quiet_period = quiet_period
        self.poll_interval = poll_interval
        self.clock = clock
        self.name = name

        self._queue: "Queue[WatcherEvent]" = Queue(maxsize=maxsize)
        self._pending: dict[str, WatcherEvent] = {}
        self._last_event_at: Optional[float] = None
        self._lock = threading.Lock()  # Protects _pending and _last_event_at

        self._shutdown_event = Event()
        self._thread: Optional[Thread] = None

    def put(self, event: WatcherEvent) -> bool:
        """
        Enqueue an event without blocking.

        Returns:
            False if the channel is full and the event was dropped
        """
        try:
            self._queue.put_nowait(event)
            return True
        except Full:
            logger.warning(f"[{self.name}] Event channel full, dropping {event.path}")
            return False

    @property
    def pending_count(self) -> int:
        self._pull()
        with self._lock:
            return len(self._pending)

    def _add_pending(self, event: WatcherEvent) -> None:
        with self._lock:
            self._pending[str(event.path)] = event
            self._last_event_at = self.clock()

    def _pull(self) -> None:
        """Move everything queued so far into the pending batch."""
        while True:
            try:
                event = self._queue.get_nowait()
            except Empty:
                return
            self._add_pending(event)

    def _take_batch(self, require_settled: bool) -> list[WatcherEvent]:
        with self._lock:
            if not self._pending:
                return []
            if require_settled and self._last_event_at is not None:
                if self.clock() - self._last_event_at < self.quiet_period:
                    return []
            batch = list(self._pending.values())
            self._pending.clear()
            return batch

    def _dispatch(self, batch: list[WatcherEvent]) -> None:
        try:
            self.handler(batch)
        except Exception as e:
            logger.error(f"[{self.name}] Handler failed: {e}", exc_info=True)

    def drain_ready(self) -> list[WatcherEvent]:
        """
        Pull queued events and dispatch the batch if it has settled.

        Returns:
            The dispatched batch (empty if nothing was ready)
        """
        self._pull()
        batch = self._take_batch(require_settled=True)
        if batch:
            self._dispatch(batch)
        return batch

    def flush(self) -> list[WatcherEvent]:
        """Dispatch whatever is pending right now, settled or not."""
        self._pull()
        batch = self._take_batch(require_settled=False)
        if batch:
            self._dispatch(batch)
        return batch

    def start(self) -> None:
        """Start the consumer thread. Calling start twice is a no-op."""
        if self._thread and self._thread.is_alive():
            return
        self._shutdown_event.clear()
        self._thread = Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the consumer thread, discarding unsettled events. Never raises."""
        self._shutdown_event.set()
        thread, self._thread = self._thread, None
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"[{self.name}] Consumer thread did not stop cleanly")
        with self._lock:
            self._pending.clear()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                event = self._queue.get(timeout=self.poll_interval)
                self._add_pending(event)
            except Empty:
                pass
            if self._shutdown_event.is_set():
                break
            self.drain_ready()
