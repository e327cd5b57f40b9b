"""
Bookkeeping for paths whose synchronization failed.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class RetryEntry:
    """A path waiting for another synchronization attempt"""
    path: str
    attempts: int = 1
    last_error: Optional[str] = None
    first_failed_at: datetime = field(default_factory=datetime.now)
    last_failed_at: datetime = field(default_factory=datetime.now)


class RetryQueue:
    """
    Tracks failed paths and how many attempts each has used.

    ``max_attempts`` counts every failed attempt including the first one, so
    with the default of 3 a path is attempted once by the pipeline and twice
    more by retry sweeps before it is given up on.
    """

    def __init__(self, max_attempts: int = 3, max_permanent_failures: int = 1000):
        self.max_attempts = max_attempts
        self.max_permanent_failures = max_permanent_failures
        self._entries: Dict[str, RetryEntry] = {}
        self._permanent_failures: "OrderedDict[str, RetryEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def record_failure(self, path: str, error: Optional[str] = None) -> RetryEntry:
        """
        Record a failed attempt for a path.

        The first failure creates an entry with one attempt; later failures
        increment it. When the ceiling is reached the entry is dropped and
        remembered as a permanent failure.

        Args:
            path: Vault-relative path
            error: Description of the failure

        Returns:
            The updated entry
        """
        with self._lock:
            entry = self._entries.get(path)
            if entry is None:
                entry = RetryEntry(path=path, last_error=error)
                self._entries[path] = entry
            else:
                entry.attempts += 1
                entry.last_error = error
                entry.last_failed_at = datetime.now()

            if entry.attempts >= self.max_attempts:
                del self._entries[path]
                self._permanent_failures.pop(path, None)
                self._permanent_failures[path] = entry
                # Oldest give-ups are forgotten first
                while len(self._permanent_failures) > self.max_permanent_failures:
                    self._permanent_failures.popitem(last=False)
                logger.error(
                    f"Giving up on {path} after {entry.attempts} attempts: {error}"
                )
            return entry

    def record_success(self, path: str) -> None:
        with self._lock:
            self._entries.pop(path, None)
            self._permanent_failures.pop(path, None)

    def discard(self, path: str) -> None:
        with self._lock:
            self._entries.pop(path, None)

    def snapshot(self) -> List[RetryEntry]:
        """Entries due for a retry, oldest failure first."""
        with self._lock:
            return sorted(self._entries.values(), key=lambda e: e.first_failed_at)

    def get(self, path: str) -> Optional[RetryEntry]:
        with self._lock:
            return self._entries.get(path)

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def permanent_failures(self) -> List[RetryEntry]:
        with self._lock:
            return list(self._permanent_failures.values())
