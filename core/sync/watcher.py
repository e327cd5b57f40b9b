"""
Vault File System Watcher.

Bridges watchdog notifications from the observer thread onto the asyncio
loop, filters them, and feeds the debouncer.
"""

import asyncio
import logging
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

from watchdog.observers import Observer
from watchdog.events import (
    FileSystemEventHandler,
    FileSystemEvent as WatchdogEvent,
    FileSystemMovedEvent,
)

from ..exceptions import WatcherError
from .debouncer import Debouncer
from .events import EventType
from .filters import PathFilter

logger = logging.getLogger(__name__)


class VaultWatcher:
    """
    Recursive watcher for a vault directory.

    Created, modified and deleted files map to CREATE, MODIFY and DELETE.
    A move becomes a DELETE of the old path plus a CREATE of the new one.
    Directory notifications are not forwarded themselves, but a directory
    removed or moved as a whole expands into events for the files it held.

    If the observer thread dies the watcher records a ``WatcherError`` and
    sets ``failed``; the owner is expected to shut down.
    """

    def __init__(
        self,
        vault_path: Path,
        debouncer: Debouncer,
        path_filter: Optional[PathFilter] = None,
        tracked_paths: Optional[Callable[[], Iterable[str]]] = None,
        health_check_interval_s: float = 1.0
    ):
        """
        Initialize the watcher.

        Args:
            vault_path: Root directory to monitor
            debouncer: Receives every accepted notification
            path_filter: Include/exclude rules applied before submission
            tracked_paths: Known synchronized paths, used to expand directory removals
            health_check_interval_s: How often the observer thread is checked
        """
        self.vault_path = Path(vault_path).resolve()
        self.debouncer = debouncer
        self.path_filter = path_filter or PathFilter()
        self.tracked_paths = tracked_paths
        self.health_check_interval_s = health_check_interval_s

        self.observer: Optional[Observer] = None
        self.event_handler: Optional['VaultEventHandler'] = None
        self._health_task: Optional[asyncio.Task] = None

        self.failed = asyncio.Event()
        self.error: Optional[WatcherError] = None

        self._is_monitoring = False
        self._monitor_start_time: Optional[datetime] = None
        self._events_received = 0
        self._events_forwarded = 0

    async def start_monitoring(self) -> None:
        """
        Start the observer thread.

        Raises:
            WatcherError: If the vault is missing or the observer cannot start
        """
        if self._is_monitoring:
            logger.warning("Vault watcher is already active")
            return

        if not self.vault_path.is_dir():
            raise WatcherError(f"Vault path is not a directory: {self.vault_path}")

        self.event_handler = VaultEventHandler(self)
        self.event_handler.set_event_loop(asyncio.get_running_loop())

        self.observer = Observer()
        try:
            self.observer.schedule(self.event_handler, str(self.vault_path), recursive=True)
            self.observer.start()
        except OSError as e:
            self.observer = None
            raise WatcherError(f"Failed to start watching {self.vault_path}: {e}") from e

        self._is_monitoring = True
        self._monitor_start_time = datetime.now()
        self._health_task = asyncio.create_task(self._check_observer_health())
        logger.info(f"Started monitoring {self.vault_path}")

    async def stop_monitoring(self) -> None:
        """Stop the observer thread; no further notifications are forwarded."""
        if not self._is_monitoring:
            return
        self._is_monitoring = False

        if self.event_handler:
            self.event_handler.set_event_loop(None)

        if self._health_task and not self._health_task.done():
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
        self._health_task = None

        if self.observer:
            observer = self.observer
            self.observer = None
            observer.stop()
            await asyncio.to_thread(observer.join, 5.0)

        self.event_handler = None
        logger.info(f"Stopped monitoring {self.vault_path} (duration: {self.monitoring_duration})")

    async def _check_observer_health(self) -> None:
        while self._is_monitoring:
            await asyncio.sleep(self.health_check_interval_s)
            if self._is_monitoring and self.observer is not None and not self.observer.is_alive():
                self.error = WatcherError("File system observer stopped unexpectedly")
                logger.error(str(self.error))
                self.failed.set()
                return

    def _relative(self, raw_path: Any) -> Optional[str]:
        if isinstance(raw_path, bytes):
            raw_path = os.fsdecode(raw_path)
        try:
            return Path(raw_path).relative_to(self.vault_path).as_posix()
        except ValueError:
            return None

    async def handle_notification(self, raw_path: Any, event_type: EventType) -> bool:
        """
        Filter one file notification and hand it to the debouncer.

        Args:
            raw_path: Absolute path reported by watchdog
            event_type: Mapped change type

        Returns:
            True if the notification was forwarded
        """
        self._events_received += 1
        rel_path = self._relative(raw_path)
        if not rel_path or rel_path == ".":
            return False
        if not self.path_filter.should_include(rel_path):
            return False

        forwarded = await self.debouncer.submit(rel_path, event_type)
        if forwarded:
            self._events_forwarded += 1
        return forwarded

    async def handle_directory_removed(self, raw_path: Any) -> None:
        """Emit DELETE for every tracked file that lived under a removed directory."""
        rel_dir = self._relative(raw_path)
        if not rel_dir or self.tracked_paths is None:
            return
        prefix = rel_dir.rstrip("/") + "/"
        for path in list(self.tracked_paths()):
            if path.startswith(prefix):
                await self.debouncer.submit(path, EventType.DELETE)

    async def handle_directory_added(self, raw_path: Any) -> None:
        """Emit CREATE for every file found under a directory moved into the vault."""
        files = await asyncio.to_thread(_list_files, Path(os.fsdecode(raw_path)))
        for file_path in files:
            await self.handle_notification(file_path, EventType.CREATE)

    @property
    def is_monitoring(self) -> bool:
        return self._is_monitoring

    @property
    def monitoring_duration(self) -> Optional[timedelta]:
        if not self._monitor_start_time:
            return None
        return datetime.now() - self._monitor_start_time

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_monitoring": self._is_monitoring,
            "vault_path": str(self.vault_path),
            "monitoring_duration": str(self.monitoring_duration) if self.monitoring_duration else None,
            "events_received": self._events_received,
            "events_forwarded": self._events_forwarded,
            "error": str(self.error) if self.error else None,
        }

    async def __aenter__(self):
        await self.start_monitoring()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop_monitoring()


def _list_files(root: Path) -> list:
    files = []
    for dirpath, _, filenames in os.walk(root):
        files.extend(os.path.join(dirpath, name) for name in filenames)
    return files


class VaultEventHandler(FileSystemEventHandler):
    """
    Watchdog event handler that forwards events to VaultWatcher.

    Runs on the observer thread and only ever schedules work on the
    watcher's event loop.
    """

    def __init__(self, watcher: VaultWatcher):
        super().__init__()
        self.watcher = watcher
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._event_loop: Optional[asyncio.AbstractEventLoop] = None

    def set_event_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        """
        Set the event loop to use for scheduling async tasks.

        Args:
            loop: The asyncio event loop to use, or None to clear
        """
        self._event_loop = loop

    def _schedule(self, coro_factory: Callable[[], Any]) -> None:
        loop = self._event_loop
        if loop is None or loop.is_closed():
            self.logger.debug("No event loop available, dropping event")
            return
        try:
            loop.call_soon_threadsafe(lambda: asyncio.create_task(coro_factory()))
        except RuntimeError as e:
            # Loop closed between the check and the call
            if "closed" not in str(e).lower():
                self.logger.error(f"Failed to schedule event on loop: {e}")

    def _forward(self, path: Any, event_type: EventType) -> None:
        self._schedule(lambda: self.watcher.handle_notification(path, event_type))

    def on_created(self, event: WatchdogEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, EventType.CREATE)

    def on_modified(self, event: WatchdogEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, EventType.MODIFY)

    def on_deleted(self, event: WatchdogEvent) -> None:
        if event.is_directory:
            self._schedule(lambda: self.watcher.handle_directory_removed(event.src_path))
        else:
            self._forward(event.src_path, EventType.DELETE)

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        if event.is_directory:
            self._schedule(lambda: self.watcher.handle_directory_removed(event.src_path))
            self._schedule(lambda: self.watcher.handle_directory_added(event.dest_path))
            return
        self._forward(event.src_path, EventType.DELETE)
        self._forward(event.dest_path, EventType.CREATE)
