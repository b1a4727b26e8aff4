"""Fire-and-forget delivery of allocation change events.

The engine publishes after a successful commit and never waits for delivery;
a daemon worker thread fans each event out to the registered subscribers.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from allocation_engine.domain.models import Conflict, ConflictLevel
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger, log_fields


logger = get_logger(__name__)

EventHandler = Callable[["AllocationEvent"], None]

_STOP = object()


@dataclass(frozen=True)
class AllocationEvent:
    event_type: str
    employee_ids: tuple[str, ...]
    allocation_ids: tuple[str, ...]
    conflicts: list[Conflict] = field(default_factory=list)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def highest_level(self) -> Optional[ConflictLevel]:
        if not self.conflicts:
            return None
        return max((conflict.level for conflict in self.conflicts), key=lambda level: level.rank)


def log_event(event: AllocationEvent) -> None:
    """Default subscriber that records capacity alerts in the application log."""
    highest = event.highest_level
    logger.warning(
        "Capacity alert | %s",
        log_fields(
            event=event.event_type,
            employees=event.employee_ids,
            allocations=event.allocation_ids,
            level=highest.value if highest else "none",
            conflicts=len(event.conflicts),
        ),
    )


class AllocationEventNotifier:
    """Queue-backed notifier whose worker is independent of request handling."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        handlers: Optional[list[EventHandler]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._queue: queue.Queue = queue.Queue(maxsize=self._settings.notification_queue_size)
        self._handlers: list[EventHandler] = list(handlers or [])
        self._lock = threading.RLock()
        self._worker: Optional[threading.Thread] = None
        self._stopped = False

    @property
    def is_running(self) -> bool:
        worker = self._worker
        return worker is not None and worker.is_alive()

    def start(self) -> None:
        with self._lock:
            self._stopped = False
            if self.is_running:
                return
            self._worker = threading.Thread(
                target=self._run,
                name="allocation-event-notifier",
                daemon=True,
            )
            self._worker.start()

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            self._stopped = True
            worker = self._worker
            if worker is None:
                return
            self._queue.put(_STOP)
        worker.join(timeout)
        with self._lock:
            self._worker = None

    def publish(self, event: AllocationEvent) -> bool:
        """Enqueue without blocking; returns False when the event was dropped."""
        with self._lock:
            if self._stopped:
                logger.warning(
                    "Notifier stopped; dropping event | event=%s | allocations=%s",
                    event.event_type,
                    ",".join(event.allocation_ids),
                )
                return False
            if not self.is_running:
                self.start()
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning(
                "Notification queue full; dropping event | event=%s | allocations=%s",
                event.event_type,
                ",".join(event.allocation_ids),
            )
            return False
        return True

    def flush(self) -> None:
        """Block until every queued event has been handed to all subscribers."""
        self._queue.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                with self._lock:
                    handlers = list(self._handlers)
                for handler in handlers:
                    try:
                        handler(item)
                    except Exception:
                        logger.exception(
                            "Event subscriber failed | event=%s | handler=%s",
                            item.event_type,
                            getattr(handler, "__name__", repr(handler)),
                        )
            finally:
                self._queue.task_done()
