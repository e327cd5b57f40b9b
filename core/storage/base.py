"""
Abstract interface for the remote store.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence

from ..models.entities import Entity, EntityKind


class BaseVaultStore(ABC):
    """
    Remote store holding one row per synchronized file.

    Implementations raise ``RemoteStoreError`` for any failure to reach or
    update the store. Deleting a path that does not exist is not an error.
    """

    async def connect(self) -> None:
        """Open connections; default is a no-op"""

    async def close(self) -> None:
        """Release connections; default is a no-op"""

    @abstractmethod
    async def upsert(self, entity: Entity) -> None:
        """Insert or replace the row for ``entity.path``"""

    @abstractmethod
    async def delete(self, kind: EntityKind, path: str) -> bool:
        """
        Delete the row for a path.

        Returns:
            True if a row was removed
        """

    @abstractmethod
    async def list_fingerprints(self, kind: EntityKind) -> Dict[str, str]:
        """Map of path to content hash for every row of a kind"""

    @abstractmethod
    async def list_all(self, kind: EntityKind) -> List[Entity]:
        """Every entity of a kind, with content"""

    @abstractmethod
    async def batch_delete(self, kind: EntityKind, paths: Sequence[str]) -> int:
        """
        Delete many rows of one kind.

        Returns:
            Number of rows removed
        """

    async def create_tables(self) -> None:
        """Create the schema and tables if missing; default is a no-op"""

    async def get_status(self) -> Dict[str, Any]:
        """Counts and last sync time per kind"""
        return {}

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
