"""
Long-running synchronization daemon.

Wires the watcher, debouncer and engine together: an initial full
reconciliation, then a single consumer draining settled events, a periodic
maintenance task, and an orderly shutdown that loses no pending change.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from ..exceptions import RemoteStoreError, StateError
from .debouncer import Debouncer
from .engine import SyncEngine, SyncOutcome
from .events import FileEvent
from .watcher import VaultWatcher

logger = logging.getLogger(__name__)


@dataclass
class DaemonMetrics:
    """Counters for the daemon's lifetime"""
    events_processed: int = 0
    events_failed: int = 0
    maintenance_runs: int = 0
    last_event_time: Optional[datetime] = None
    last_error_time: Optional[datetime] = None
    last_error_message: Optional[str] = None


class SyncDaemon:
    """
    Runs the watch-and-sync pipeline until asked to stop.

    Events are handled strictly one at a time by a single consumer task.
    A failing event is logged and queued for retry; it never stops the
    consumer. Only a watcher failure ends the daemon on its own.
    """

    def __init__(
        self,
        engine: SyncEngine,
        debouncer: Debouncer,
        watcher: Optional[VaultWatcher] = None,
        maintenance_interval_s: float = 30.0,
        initial_reconcile: bool = True
    ):
        """
        Initialize the daemon.

        Args:
            engine: Applies settled events to the remote store
            debouncer: Source of settled events
            watcher: Notification source (default: watches ``engine.vault_path``)
            maintenance_interval_s: Period of state saves and retry sweeps
            initial_reconcile: Run a full reconciliation before watching
        """
        self.engine = engine
        self.debouncer = debouncer
        self.watcher = watcher or VaultWatcher(
            engine.vault_path,
            debouncer,
            path_filter=engine.path_filter,
            tracked_paths=engine.state.all_paths,
        )
        self.maintenance_interval_s = maintenance_interval_s
        self.initial_reconcile = initial_reconcile

        self.shutdown_event = asyncio.Event()
        self.is_running = False
        self.metrics = DaemonMetrics()

        self._consumer_task: Optional[asyncio.Task] = None
        self._maintenance_task: Optional[asyncio.Task] = None
        self._start_time: Optional[datetime] = None

    async def start(self) -> None:
        """
        Reconcile, then start watching and consuming.

        Raises:
            WatcherError: If the watcher cannot be started
        """
        if self.is_running:
            logger.warning("Sync daemon is already running")
            return

        if self.initial_reconcile:
            logger.info("Performing initial sync")
            try:
                await self.engine.full_reconcile()
            except RemoteStoreError as e:
                # Not fatal, watching continues
                logger.error(f"Initial sync failed: {e}")

        await self.watcher.start_monitoring()

        self.shutdown_event.clear()
        self.is_running = True
        self._start_time = datetime.now()
        self._consumer_task = asyncio.create_task(self._consume_events())
        self._maintenance_task = asyncio.create_task(self._run_maintenance())
        logger.info(f"Daemon started for {self.engine.vault_path}")

    async def run(self) -> None:
        """
        Run until ``request_shutdown`` is called or the watcher fails.

        Raises:
            WatcherError: If the watcher died; shutdown has completed by then
        """
        await self.start()

        shutdown_wait = asyncio.create_task(self.shutdown_event.wait())
        watcher_wait = asyncio.create_task(self.watcher.failed.wait())
        try:
            await asyncio.wait(
                [shutdown_wait, watcher_wait],
                return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (shutdown_wait, watcher_wait):
                task.cancel()
            await self.stop()

        if self.watcher.error is not None:
            raise self.watcher.error

    def request_shutdown(self) -> None:
        """Signal-handler-safe shutdown request"""
        logger.info("Shutdown requested")
        self.shutdown_event.set()

    async def stop(self) -> None:
        """
        Shut down without losing accepted changes.

        Stops admitting notifications, lets the in-flight event and retry
        sweep finish, settles and processes every pending event, saves
        state, and closes the remote store.
        """
        if not self.is_running:
            return
        logger.info("Shutting down...")
        self.is_running = False
        self.shutdown_event.set()

        await self.watcher.stop_monitoring()
        self.debouncer.close()

        if self._maintenance_task is not None:
            try:
                await self._maintenance_task
            except Exception as e:
                logger.error(f"Maintenance task failed: {e}")
            self._maintenance_task = None

        await self.debouncer.flush()
        await self.debouncer.wait_emitting()
        await self._drain_queue()

        # Queue is empty; the consumer is parked on get()
        if self._consumer_task is not None:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None

        await self._drain_queue()

        try:
            await self.engine.save_state()
        except StateError as e:
            logger.error(f"Failed to save state during shutdown: {e}")

        await self.engine.store.close()
        logger.info("Daemon stopped")

    async def _drain_queue(self) -> None:
        # Wait for the consumer to empty the queue; handle leftovers inline once it is gone
        queue = self.debouncer.events
        if self._consumer_task is not None and not self._consumer_task.done():
            await queue.join()
            return
        while not queue.empty():
            event = queue.get_nowait()
            try:
                await self._process_event(event)
            finally:
                queue.task_done()

    async def _consume_events(self) -> None:
        logger.info("Started event consumer")
        queue = self.debouncer.events
        while True:
            event = await queue.get()
            try:
                await self._process_event(event)
            finally:
                queue.task_done()

    async def _process_event(self, event: FileEvent) -> Optional[SyncOutcome]:
        logger.debug(f"File event: {event}")
        try:
            outcome = await self.engine.handle_event(event)
            self.metrics.events_processed += 1
            self.metrics.last_event_time = datetime.now()
            return outcome
        except Exception as e:
            logger.error(f"Sync failed for {event.path}: {e}")
            self.metrics.events_failed += 1
            self.metrics.last_error_message = str(e)
            self.metrics.last_error_time = datetime.now()
            self.engine.record_failure(event.path, e)
            return None

    async def _run_maintenance(self) -> None:
        # Shutdown is checked between sweeps; stop() awaits a running one
        while not self.shutdown_event.is_set():
            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=self.maintenance_interval_s)
            except asyncio.TimeoutError:
                await self.run_maintenance()

    async def run_maintenance(self) -> Dict[str, int]:
        """Persist the state cache and sweep the retry queue once"""
        try:
            await self.engine.save_state()
        except StateError as e:
            logger.error(f"Failed to save state: {e}")

        results = await self.engine.retry_failed()
        self.metrics.maintenance_runs += 1
        return results

    def get_status(self) -> Dict[str, Any]:
        uptime = (datetime.now() - self._start_time).total_seconds() if self._start_time else 0.0
        return {
            "is_running": self.is_running,
            "uptime_seconds": uptime,
            "events_processed": self.metrics.events_processed,
            "events_failed": self.metrics.events_failed,
            "maintenance_runs": self.metrics.maintenance_runs,
            "last_error": self.metrics.last_error_message,
            "last_error_time": self.metrics.last_error_time.isoformat() if self.metrics.last_error_time else None,
            "debouncer": self.debouncer.get_status(),
            "watcher": self.watcher.get_status(),
            "engine": self.engine.get_status(),
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
