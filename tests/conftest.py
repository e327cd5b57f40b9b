"""
Shared fixtures for vault-sync tests.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set

import pytest

from core.exceptions import RemoteStoreError
from core.models.entities import Entity, EntityKind
from core.parser.transformer import ContentTransformer
from core.storage.base import BaseVaultStore
from core.sync.filters import PathFilter
from core.sync.retry import RetryQueue
from core.sync.state import StateCache
from core.sync.engine import SyncEngine


class FakeStore(BaseVaultStore):
    """
    In-memory remote store.

    ``fail_paths`` makes upserts of those paths raise RemoteStoreError;
    ``fail_all`` makes every operation raise.
    """

    def __init__(self):
        self.rows: Dict[EntityKind, Dict[str, Entity]] = {kind: {} for kind in EntityKind}
        self.fail_paths: Set[str] = set()
        self.fail_all = False
        self.upsert_calls: List[str] = []
        self.delete_calls: List[str] = []
        self.closed = False

    def _check(self, operation: str, path: str = "") -> None:
        if self.fail_all or path in self.fail_paths:
            raise RemoteStoreError(f"{operation} failed", operation=operation, path=path)

    async def close(self) -> None:
        self.closed = True

    async def upsert(self, entity: Entity) -> None:
        self.upsert_calls.append(entity.path)
        self._check("upsert", entity.path)
        self.rows[entity.kind][entity.path] = entity

    async def delete(self, kind: EntityKind, path: str) -> bool:
        self.delete_calls.append(path)
        self._check("delete", path)
        return self.rows[kind].pop(path, None) is not None

    async def batch_delete(self, kind: EntityKind, paths: Sequence[str]) -> int:
        self._check("batch_delete")
        removed = 0
        for path in paths:
            self.delete_calls.append(path)
            if self.rows[kind].pop(path, None) is not None:
                removed += 1
        return removed

    async def list_fingerprints(self, kind: EntityKind) -> Dict[str, str]:
        self._check("list_fingerprints")
        return {path: entity.content_hash for path, entity in self.rows[kind].items()}

    async def list_all(self, kind: EntityKind) -> List[Entity]:
        self._check("list_all")
        return [self.rows[kind][path] for path in sorted(self.rows[kind])]

    def paths(self, kind: Optional[EntityKind] = None) -> Set[str]:
        kinds = [kind] if kind else list(EntityKind)
        return {path for k in kinds for path in self.rows[k]}


@pytest.fixture
def vault(tmp_path) -> Path:
    """Empty vault directory"""
    path = tmp_path / "vault"
    path.mkdir()
    return path


@pytest.fixture
def state_file(tmp_path) -> Path:
    return tmp_path / "state" / "state.json"


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def state(state_file, vault) -> StateCache:
    cache = StateCache(state_file, vault)
    cache.load()
    return cache


@pytest.fixture
def engine(vault, store, state) -> SyncEngine:
    return SyncEngine(
        vault_path=vault,
        store=store,
        state=state,
        transformer=ContentTransformer(note_extensions=[".md"], max_binary_size_bytes=1024),
        path_filter=PathFilter([".obsidian/**", ".git/**"]),
        retry_queue=RetryQueue(max_attempts=3),
    )


def write_file(root: Path, rel_path: str, content) -> Path:
    """Create a file (and parents) under the vault"""
    target = root / rel_path
    target.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        target.write_bytes(content)
    else:
        target.write_text(content, encoding="utf-8")
    return target


@pytest.fixture
def make_file(vault):
    """Factory writing files relative to the vault root"""
    def _make(rel_path: str, content) -> Path:
        return write_file(vault, rel_path, content)
    return _make
