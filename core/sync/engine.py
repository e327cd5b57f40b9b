"""
Vault Synchronization Engine.

Decides, per path, whether the remote store needs to change and applies the
change. Also hosts the batch operations: full reconciliation of the local
tree against the remote inventory, and materialization of the remote store
back into a local tree.
"""

import asyncio
import logging
import os
import stat as stat_module
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set

import aiofiles

from ..exceptions import RemoteStoreError
from ..models.entities import EntityKind
from ..parser.transformer import ContentTransformer
from ..storage.base import BaseVaultStore
from .events import EventType, FileEvent
from .filters import PathFilter
from .hasher import hash_bytes, hash_file
from .retry import RetryQueue
from .state import FileState, StateCache

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class SyncOutcome(Enum):
    """Result of synchronizing a single path"""
    SYNCED = "synced"          # Remote row written
    UNCHANGED = "unchanged"    # Fingerprint matched, nothing sent
    DELETED = "deleted"        # Remote row removed (or was already absent)
    SKIPPED = "skipped"        # Excluded, not a regular file, or too large
    VANISHED = "vanished"      # File disappeared before it could be read


@dataclass
class ReconcileReport:
    """Summary of a full reconciliation run"""
    local_files: int = 0
    remote_files: int = 0
    to_sync: int = 0
    to_delete: int = 0
    synced: int = 0
    deleted: int = 0
    unchanged: int = 0
    failed: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    duration_s: float = 0.0

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "local_files": self.local_files,
            "remote_files": self.remote_files,
            "to_sync": self.to_sync,
            "to_delete": self.to_delete,
            "synced": self.synced,
            "deleted": self.deleted,
            "unchanged": self.unchanged,
            "failed": list(self.failed),
            "started_at": self.started_at.isoformat(),
            "duration_s": self.duration_s,
        }


@dataclass
class PullReport:
    """Summary of materializing the remote store locally"""
    total: int = 0
    written: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: List[str] = field(default_factory=list)
    duration_s: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "written": self.written,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "failed": list(self.failed),
            "duration_s": self.duration_s,
        }


class SyncEngine:
    """
    Applies local file changes to the remote store.

    Operations on the same path are serialized with a per-path lock, so the
    event consumer and the retry sweep never interleave on one file. The
    state cache is the fingerprint gate: a file whose content matches what
    was last pushed is never sent again.
    """

    def __init__(
        self,
        vault_path: Path,
        store: BaseVaultStore,
        state: StateCache,
        transformer: Optional[ContentTransformer] = None,
        path_filter: Optional[PathFilter] = None,
        retry_queue: Optional[RetryQueue] = None,
        retry_delay_s: float = 0.0
    ):
        """
        Initialize the engine.

        Args:
            vault_path: Root of the local tree
            store: Remote store to write to
            state: Cache of last synchronized fingerprints
            transformer: Converts files to entities (default: notes are *.md)
            path_filter: Include/exclude rules (default: everything)
            retry_queue: Failure bookkeeping (default: 3 attempts)
            retry_delay_s: Pause between consecutive retries in a sweep
        """
        self.vault_path = Path(vault_path).resolve()
        self.store = store
        self.state = state
        self.transformer = transformer or ContentTransformer()
        self.path_filter = path_filter or PathFilter()
        self.retry_queue = retry_queue or RetryQueue()
        self.retry_delay_s = retry_delay_s

        self._path_locks: Dict[str, asyncio.Lock] = {}
        self._path_lock_users: Dict[str, int] = {}

        # Counters
        self._outcomes: Dict[SyncOutcome, int] = {outcome: 0 for outcome in SyncOutcome}
        self._last_error: Optional[str] = None
        self._last_error_time: Optional[datetime] = None

    # Path helpers

    def relative_path(self, file_path: Path) -> str:
        """Vault-relative POSIX path for an absolute path inside the vault"""
        return Path(file_path).relative_to(self.vault_path).as_posix()

    def absolute_path(self, rel_path: str) -> Path:
        """
        Absolute location of a vault-relative path.

        Raises:
            ValueError: If the path would land outside the vault root
        """
        target = Path(os.path.normpath(self.vault_path / rel_path))
        if target != self.vault_path and self.vault_path not in target.parents:
            raise ValueError(f"Path escapes vault root: {rel_path}")
        return target

    @asynccontextmanager
    async def _locked(self, path: str) -> AsyncIterator[None]:
        """Serialize work on one path. The lock is dropped once nobody holds or awaits it."""
        lock = self._path_locks.setdefault(path, asyncio.Lock())
        self._path_lock_users[path] = self._path_lock_users.get(path, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._path_lock_users[path] -= 1
            if not self._path_lock_users[path]:
                del self._path_lock_users[path]
                del self._path_locks[path]

    # Incremental path

    async def handle_event(self, event: FileEvent) -> SyncOutcome:
        return await self.sync_file(event.path, event.event_type)

    async def sync_file(self, path: str, event_type: EventType) -> SyncOutcome:
        """
        Synchronize one path after a settled event.

        Args:
            path: Vault-relative path
            event_type: Settled change type

        Returns:
            What happened to the path

        Raises:
            RemoteStoreError: If the remote store rejected or timed out the change
        """
        async with self._locked(path):
            if event_type in (EventType.DELETE, EventType.RENAME):
                outcome = await self._remove_unlocked(path)
            else:
                outcome = await self._upsert_unlocked(path)

        self.retry_queue.record_success(path)
        self._outcomes[outcome] += 1
        return outcome

    async def upsert_file(self, path: str) -> SyncOutcome:
        return await self.sync_file(path, EventType.MODIFY)

    async def remove_file(self, path: str) -> SyncOutcome:
        return await self.sync_file(path, EventType.DELETE)

    async def _remove_unlocked(self, path: str) -> SyncOutcome:
        kind = self.transformer.classify(path)
        removed = await self.store.delete(kind, path)
        self.state.remove(path)
        if removed:
            logger.info(f"Deleted {kind.value} {path}")
        else:
            logger.debug(f"Delete for {path}: no remote row")
        return SyncOutcome.DELETED

    async def _upsert_unlocked(self, path: str, force: bool = False) -> SyncOutcome:
        """
        Push one file if its content changed.

        Args:
            path: Vault-relative path
            force: Skip the fingerprint gate (remote is known to differ)
        """
        if not self.path_filter.should_include(path):
            logger.debug(f"Skipping excluded path {path}")
            return SyncOutcome.SKIPPED

        file_path = self.absolute_path(path)
        try:
            st = file_path.stat()
        except FileNotFoundError:
            logger.debug(f"File vanished before sync: {path}")
            return SyncOutcome.VANISHED

        if not stat_module.S_ISREG(st.st_mode):
            return SyncOutcome.SKIPPED

        if self.transformer.exceeds_size_limit(path, st.st_size):
            logger.warning(f"Skipping {path}: {st.st_size} bytes exceeds the attachment limit")
            return SyncOutcome.SKIPPED

        try:
            fingerprint = await hash_file(file_path)
            if not force and not self.state.needs_sync(path, fingerprint):
                logger.debug(f"Unchanged: {path}")
                return SyncOutcome.UNCHANGED

            async with aiofiles.open(file_path, 'rb') as f:
                data = await f.read()
        except FileNotFoundError:
            logger.debug(f"File vanished during sync: {path}")
            return SyncOutcome.VANISHED

        # The file may have changed between hashing and reading
        fingerprint = hash_bytes(data)

        entity = self.transformer.transform(path, data, fingerprint, st)
        if entity is None:
            return SyncOutcome.SKIPPED

        await self.store.upsert(entity)

        self.state.set(path, FileState(
            fingerprint=fingerprint,
            last_synced=datetime.now(),
            last_modified=datetime.fromtimestamp(st.st_mtime),
            size_bytes=len(data),
        ))
        logger.info(f"Synced {entity.kind.value} {path}")
        return SyncOutcome.SYNCED

    # Failure handling

    def record_failure(self, path: str, error: Any) -> None:
        """Queue a failed path for the next retry sweep"""
        self._last_error = str(error)
        self._last_error_time = datetime.now()
        self.retry_queue.record_failure(path, str(error))

    async def retry_failed(self) -> Dict[str, int]:
        """
        Re-attempt every queued failure once.

        A path that exists locally is pushed again; a path that no longer
        exists is deleted remotely.

        Returns:
            Counts of retried, succeeded, failed and abandoned paths
        """
        entries = self.retry_queue.snapshot()
        results = {"retried": 0, "succeeded": 0, "failed": 0, "abandoned": 0}
        if not entries:
            return results

        logger.info(f"Retrying {len(entries)} failed paths")

        for index, entry in enumerate(entries):
            if index and self.retry_delay_s:
                await asyncio.sleep(self.retry_delay_s)

            results["retried"] += 1
            path = entry.path
            try:
                async with self._locked(path):
                    if self.absolute_path(path).exists():
                        outcome = await self._upsert_unlocked(path, force=True)
                    else:
                        outcome = await self._remove_unlocked(path)
                self.retry_queue.record_success(path)
                self._outcomes[outcome] += 1
                results["succeeded"] += 1
            except Exception as e:
                updated = self.retry_queue.record_failure(path, str(e))
                if updated.attempts >= self.retry_queue.max_attempts:
                    results["abandoned"] += 1
                else:
                    results["failed"] += 1
                    logger.warning(f"Retry {updated.attempts} failed for {path}: {e}")

        return results

    @property
    def pending_retries(self) -> int:
        return len(self.retry_queue)

    # Full reconciliation

    def _scan_vault(self) -> Dict[str, os.stat_result]:
        """Walk the vault and return qualifying regular files with their status"""
        files: Dict[str, os.stat_result] = {}

        for root, dirs, filenames in os.walk(self.vault_path):
            rel_root = Path(root).relative_to(self.vault_path).as_posix()
            rel_root = "" if rel_root == "." else rel_root

            dirs[:] = [
                d for d in dirs
                if not self.path_filter.is_dir_excluded(f"{rel_root}/{d}" if rel_root else d)
            ]

            for name in filenames:
                rel = f"{rel_root}/{name}" if rel_root else name
                if not self.path_filter.should_include(rel):
                    continue
                try:
                    st = os.stat(os.path.join(root, name))
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(f"Cannot stat {rel}: {e}")
                    continue
                if not stat_module.S_ISREG(st.st_mode):
                    continue
                if self.transformer.exceeds_size_limit(rel, st.st_size):
                    logger.warning(f"Skipping {rel}: {st.st_size} bytes exceeds the attachment limit")
                    continue
                files[rel] = st

        return files

    async def full_reconcile(self, progress: Optional[ProgressCallback] = None) -> ReconcileReport:
        """
        Bring the remote store in line with the whole local tree.

        Local files missing or different remotely are pushed one at a time;
        remote rows with no local file are deleted in batches. Individual
        failures are queued for retry and never abort the run.

        Args:
            progress: Called with (done, total) after each pushed file

        Returns:
            Summary of the run

        Raises:
            RemoteStoreError: If the remote inventory cannot be fetched
        """
        report = ReconcileReport()
        start_time = time.time()
        logger.info(f"Starting full reconciliation of {self.vault_path}")

        local_stats = await asyncio.to_thread(self._scan_vault)

        local_hashes: Dict[str, str] = {}
        unhashable: Set[str] = set()
        for rel, st in local_stats.items():
            try:
                local_hashes[rel] = await hash_file(self.vault_path / rel)
            except FileNotFoundError:
                logger.debug(f"File vanished during scan: {rel}")
            except OSError as e:
                # Still counts as local so its remote row is not deleted
                logger.warning(f"Cannot fingerprint {rel}: {e}")
                unhashable.add(rel)

        local_paths = set(local_hashes) | unhashable
        report.local_files = len(local_paths)

        remote: Dict[EntityKind, Dict[str, str]] = {}
        for kind in EntityKind:
            remote[kind] = await self.store.list_fingerprints(kind)
        report.remote_files = sum(len(fps) for fps in remote.values())

        to_sync = sorted(
            rel for rel, fingerprint in local_hashes.items()
            if remote[self.transformer.classify(rel)].get(rel) != fingerprint
        )
        to_delete: Dict[EntityKind, List[str]] = {
            kind: sorted(
                path for path in fps
                if path not in local_paths or self.transformer.classify(path) != kind
            )
            for kind, fps in remote.items()
        }
        report.to_sync = len(to_sync)
        report.to_delete = sum(len(paths) for paths in to_delete.values())

        logger.info(
            f"Reconciliation plan: {report.local_files} local, {report.remote_files} remote, "
            f"{report.to_sync} to sync, {report.to_delete} to delete"
        )

        for index, rel in enumerate(to_sync, start=1):
            try:
                async with self._locked(rel):
                    outcome = await self._upsert_unlocked(rel, force=True)
                self._outcomes[outcome] += 1
                if outcome == SyncOutcome.SYNCED:
                    report.synced += 1
                    self.retry_queue.record_success(rel)
            except Exception as e:
                logger.error(f"Failed to sync {rel}: {e}")
                report.failed.append(rel)
                self.record_failure(rel, e)
            if progress:
                progress(index, len(to_sync))

        remaining_remote: Set[str] = set()
        for kind, fps in remote.items():
            paths = to_delete[kind]
            remaining_remote.update(path for path in fps if path not in paths)
            if not paths:
                continue
            try:
                report.deleted += await self.store.batch_delete(kind, paths)
                for path in paths:
                    if path not in local_paths:
                        self.state.remove(path)
            except RemoteStoreError as e:
                logger.error(f"Failed to delete {len(paths)} {kind.value} rows: {e}")
                remaining_remote.update(paths)
                for path in paths:
                    report.failed.append(path)
                    self.record_failure(path, e)

        # Seed the cache for files that already match remotely
        sync_set = set(to_sync)
        for rel, fingerprint in local_hashes.items():
            if rel in sync_set:
                continue
            report.unchanged += 1
            if self.state.needs_sync(rel, fingerprint):
                st = local_stats[rel]
                self.state.set(rel, FileState(
                    fingerprint=fingerprint,
                    last_synced=datetime.now(),
                    last_modified=datetime.fromtimestamp(st.st_mtime),
                    size_bytes=st.st_size,
                ))

        for path in self.state.all_paths():
            if path not in local_paths and path not in remaining_remote:
                self.state.remove(path)

        self.state.set_last_full_sync(datetime.now())
        await self.save_state()

        report.duration_s = time.time() - start_time
        logger.info(
            f"Reconciliation finished in {report.duration_s:.2f}s: {report.synced} synced, "
            f"{report.deleted} deleted, {report.unchanged} unchanged, {len(report.failed)} failed"
        )
        return report

    # Materialization

    async def pull(self, overwrite: bool = True, progress: Optional[ProgressCallback] = None) -> PullReport:
        """
        Write every remote entity into the local tree.

        Files whose content already matches are left alone. Per-entity
        failures are logged and counted but never stop the run.

        Args:
            overwrite: Replace local files whose content differs
            progress: Called with (done, total) after each entity

        Returns:
            Summary of the run

        Raises:
            RemoteStoreError: If the remote entities cannot be fetched
        """
        report = PullReport()
        start_time = time.time()

        entities = []
        for kind in EntityKind:
            entities.extend(await self.store.list_all(kind))
        report.total = len(entities)
        logger.info(f"Pulling {report.total} entities into {self.vault_path}")

        for index, entity in enumerate(entities, start=1):
            try:
                target = self.absolute_path(entity.path)
                data = entity.content_bytes
                fingerprint = hash_bytes(data)

                async with self._locked(entity.path):
                    if target.is_file():
                        if await hash_file(target) == fingerprint:
                            report.unchanged += 1
                            self._record_materialized(entity.path, fingerprint, target)
                            continue
                        if not overwrite:
                            report.skipped += 1
                            continue

                    await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
                    async with aiofiles.open(target, 'wb') as f:
                        await f.write(data)
                    self._record_materialized(entity.path, fingerprint, target)
                    report.written += 1
                    logger.debug(f"Wrote {entity.path}")
            except Exception as e:
                logger.error(f"Failed to materialize {entity.path}: {e}")
                report.failed.append(entity.path)
            finally:
                if progress:
                    progress(index, report.total)

        await self.save_state()
        report.duration_s = time.time() - start_time
        logger.info(
            f"Pull finished: {report.written} written, {report.unchanged} unchanged, "
            f"{report.skipped} skipped, {len(report.failed)} failed"
        )
        return report

    def _record_materialized(self, path: str, fingerprint: str, target: Path) -> None:
        st = target.stat()
        self.state.set(path, FileState(
            fingerprint=fingerprint,
            last_synced=datetime.now(),
            last_modified=datetime.fromtimestamp(st.st_mtime),
            size_bytes=st.st_size,
        ))

    # State

    async def save_state(self) -> bool:
        """Persist the state cache without blocking the event loop"""
        return await asyncio.to_thread(self.state.save)

    def get_status(self) -> Dict[str, Any]:
        return {
            "vault_path": str(self.vault_path),
            "outcomes": {outcome.value: count for outcome, count in self._outcomes.items()},
            "pending_retries": len(self.retry_queue),
            "active_path_locks": len(self._path_locks),
            "permanent_failures": [entry.path for entry in self.retry_queue.permanent_failures],
            "last_error": self._last_error,
            "last_error_time": self._last_error_time.isoformat() if self._last_error_time else None,
            "state": self.state.get_status(),
        }
