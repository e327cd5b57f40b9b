"""
Persistent record of what has been synchronized.

The state cache maps vault-relative paths to the fingerprint last pushed to
the remote store. It is what lets the engine skip unchanged files and what
tells a restarted daemon where it left off.
"""

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Set

from ..exceptions import StateError
from .hasher import hash_string

logger = logging.getLogger(__name__)


@dataclass
class FileState:
    """Last synchronized state of one file"""
    fingerprint: str
    last_synced: datetime
    last_modified: datetime
    size_bytes: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        data = asdict(self)
        data['last_synced'] = self.last_synced.isoformat()
        data['last_modified'] = self.last_modified.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileState':
        """Create from dictionary (JSON deserialization)"""
        return cls(
            fingerprint=data['fingerprint'],
            last_synced=datetime.fromisoformat(data['last_synced']),
            last_modified=datetime.fromisoformat(data['last_modified']),
            size_bytes=int(data.get('size_bytes', 0)),
        )


class ReadWriteLock:
    """Many concurrent readers or a single writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def state_file_for(state_dir: Path, vault_path: Path) -> Path:
    """
    Location of the snapshot for a vault.

    One snapshot per vault root, keyed by a short digest of its absolute path.
    """
    digest = hash_string(str(Path(vault_path).resolve()))[:12]
    return Path(state_dir) / f"state-{digest}.json"


class StateCache:
    """
    Thread-safe map of path to FileState backed by a JSON snapshot.

    Reads take a shared lock and mutations an exclusive one. ``save`` is
    safe to run from a worker thread while the event loop keeps mutating
    the cache: it copies a consistent payload under the lock and writes it
    to disk outside of it.
    """

    def __init__(self, state_file: Path, vault_path: Path):
        """
        Initialize the cache.

        Args:
            state_file: Snapshot location
            vault_path: Vault root, recorded as the snapshot's identity marker
        """
        self.state_file = Path(state_file)
        self.vault_path = str(Path(vault_path).resolve())

        self._files: Dict[str, FileState] = {}
        self._last_full_sync: Optional[datetime] = None
        self._dirty = False

        self._lock = ReadWriteLock()
        self._save_lock = threading.Lock()

    def load(self) -> None:
        """
        Load the snapshot from disk.

        A missing or unreadable snapshot yields an empty cache. A snapshot
        written for a different vault root is discarded so that the next
        reconciliation resynchronizes everything.
        """
        if not self.state_file.exists():
            logger.debug(f"No state file at {self.state_file}, starting empty")
            return

        try:
            raw = json.loads(self.state_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load state file {self.state_file}: {e}. Starting with empty state.")
            return

        if raw.get("vault_path") != self.vault_path:
            logger.info(
                f"State file belongs to {raw.get('vault_path')!r}, not {self.vault_path!r}; resetting state"
            )
            with self._lock.write():
                self._files = {}
                self._last_full_sync = None
                self._dirty = True
            return

        files: Dict[str, FileState] = {}
        for path, entry in (raw.get("files") or {}).items():
            try:
                files[path] = FileState.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Invalid state entry for {path}: {e}")

        last_full_sync = None
        if raw.get("last_full_sync"):
            try:
                last_full_sync = datetime.fromisoformat(raw["last_full_sync"])
            except ValueError:
                logger.warning(f"Invalid last_full_sync in {self.state_file}")

        with self._lock.write():
            self._files = files
            self._last_full_sync = last_full_sync
            self._dirty = False

        logger.info(f"Loaded {len(files)} file states from {self.state_file}")

    def save(self) -> bool:
        """
        Persist the cache if it changed since the last save.

        The snapshot is written to a temporary file in the same directory
        and renamed over the old one, so readers never see a torn file.

        Returns:
            True if a snapshot was written, False if there was nothing to save

        Raises:
            StateError: If the snapshot cannot be written
        """
        with self._save_lock:
            with self._lock.write():
                if not self._dirty:
                    return False
                payload = {
                    "vault_path": self.vault_path,
                    "last_full_sync": self._last_full_sync.isoformat() if self._last_full_sync else None,
                    "files": {path: state.to_dict() for path, state in self._files.items()},
                }
                self._dirty = False

            try:
                self.state_file.parent.mkdir(parents=True, exist_ok=True)
                fd, temp_name = tempfile.mkstemp(
                    prefix=".state-", suffix=".tmp", dir=str(self.state_file.parent)
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        json.dump(payload, f, indent=2)
                        f.flush()
                        os.fsync(f.fileno())
                    os.replace(temp_name, self.state_file)
                except BaseException:
                    if os.path.exists(temp_name):
                        os.unlink(temp_name)
                    raise
            except OSError as e:
                with self._lock.write():
                    self._dirty = True
                raise StateError(f"Failed to save state to {self.state_file}: {e}") from e

        logger.debug(f"Saved {len(payload['files'])} file states to {self.state_file}")
        return True

    def needs_sync(self, path: str, fingerprint: str) -> bool:
        """True when the path is unknown or its recorded fingerprint differs."""
        with self._lock.read():
            state = self._files.get(path)
            return state is None or state.fingerprint != fingerprint

    def get(self, path: str) -> Optional[FileState]:
        with self._lock.read():
            return self._files.get(path)

    def set(self, path: str, state: FileState) -> None:
        with self._lock.write():
            self._files[path] = state
            self._dirty = True

    def remove(self, path: str) -> None:
        with self._lock.write():
            if self._files.pop(path, None) is not None:
                self._dirty = True

    def all_paths(self) -> Set[str]:
        with self._lock.read():
            return set(self._files)

    def clear(self) -> None:
        with self._lock.write():
            self._files.clear()
            self._last_full_sync = None
            self._dirty = True

    @property
    def last_full_sync(self) -> Optional[datetime]:
        with self._lock.read():
            return self._last_full_sync

    def set_last_full_sync(self, when: datetime) -> None:
        with self._lock.write():
            self._last_full_sync = when
            self._dirty = True

    @property
    def file_count(self) -> int:
        with self._lock.read():
            return len(self._files)

    @property
    def is_dirty(self) -> bool:
        with self._lock.read():
            return self._dirty

    def get_status(self) -> Dict[str, Any]:
        """Summary used by the status command"""
        with self._lock.read():
            return {
                "state_file": str(self.state_file),
                "vault_path": self.vault_path,
                "tracked_files": len(self._files),
                "last_full_sync": self._last_full_sync.isoformat() if self._last_full_sync else None,
                "dirty": self._dirty,
            }
