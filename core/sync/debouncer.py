"""
Per-path event debouncing.

Bursts of notifications for one path collapse into a single settled event
once the path has been quiet for the debounce window.
"""

import asyncio
import logging
from typing import Dict, Set, Any

from .events import EventType, FileEvent, normalize_event_type

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Coalesces file notifications and emits them after a quiet window.

    Each path has at most one pending event and one countdown task. A new
    notification merges into the pending event and restarts the countdown.
    When a countdown expires the event is moved to the bounded ``events``
    queue. If that queue is full the expiring task waits for room; ``submit``
    itself never waits on the consumer.
    """

    def __init__(self, debounce_ms: int = 2000, queue_size: int = 100):
        """
        Initialize the debouncer.

        Args:
            debounce_ms: Quiet window in milliseconds
            queue_size: Capacity of the settled event queue
        """
        self.debounce_ms = debounce_ms
        self.events: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

        self._pending_events: Dict[str, FileEvent] = {}
        self._debounce_tasks: Dict[str, asyncio.Task] = {}
        self._emitting: Set[asyncio.Task] = set()
        self._debounce_lock = asyncio.Lock()
        self._closed = False

        self._submitted = 0
        self._emitted = 0

    async def submit(self, path: str, event_type: EventType) -> bool:
        """
        Record a notification for a path.

        Args:
            path: Vault-relative path
            event_type: Kind of change observed

        Returns:
            False if the debouncer is closed and the notification was dropped
        """
        if self._closed:
            logger.debug(f"Debouncer closed, dropping {event_type.value} for {path}")
            return False

        event_type = normalize_event_type(event_type)
        path = path.replace("\\", "/").strip("/")

        async with self._debounce_lock:
            event = self._pending_events.get(path)
            if event is None:
                self._pending_events[path] = FileEvent(path=path, event_type=event_type)
            else:
                event.merge(event_type)

            existing_task = self._debounce_tasks.get(path)
            if existing_task and not existing_task.done():
                existing_task.cancel()

            self._debounce_tasks[path] = asyncio.create_task(
                self._settle_after_delay(path, self.debounce_ms / 1000.0)
            )
            self._submitted += 1

        return True

    async def _settle_after_delay(self, path: str, delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)

        async with self._debounce_lock:
            # A newer countdown owns the path now
            if self._debounce_tasks.get(path) is not asyncio.current_task():
                return
            self._debounce_tasks.pop(path, None)
            event = self._pending_events.pop(path, None)

        if event is not None:
            await self._emit(event)

    async def _emit(self, event: FileEvent) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._emitting.add(task)
        try:
            await self.events.put(event)
            self._emitted += 1
            logger.debug(f"Settled event: {event}")
        finally:
            if task is not None:
                self._emitting.discard(task)

    async def flush(self) -> int:
        """
        Settle every pending event immediately.

        Returns:
            Number of events moved to the queue
        """
        async with self._debounce_lock:
            events = list(self._pending_events.values())
            for task in self._debounce_tasks.values():
                if not task.done():
                    task.cancel()
            self._debounce_tasks.clear()
            self._pending_events.clear()

        for event in events:
            await self._emit(event)

        if events:
            logger.info(f"Flushed {len(events)} pending events")
        return len(events)

    def close(self) -> None:
        """Stop accepting notifications. Pending events remain until flushed."""
        self._closed = True

    async def wait_emitting(self) -> None:
        """Wait for countdowns that already expired but are blocked on a full queue."""
        if self._emitting:
            await asyncio.gather(*list(self._emitting), return_exceptions=True)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending_events)

    def get_status(self) -> Dict[str, Any]:
        return {
            "debounce_ms": self.debounce_ms,
            "pending_events": len(self._pending_events),
            "queued_events": self.events.qsize(),
            "queue_capacity": self.events.maxsize,
            "submitted": self._submitted,
            "emitted": self._emitted,
            "closed": self._closed,
        }
