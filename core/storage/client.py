"""
SQLAlchemy-backed remote store for vault-sync.

Provides upserts, deletions and inventory queries against PostgreSQL (via
asyncpg) with a bounded connection pool and per-operation timeouts.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.schema import CreateSchema

from .base import BaseVaultStore
from .schemas import Base, VaultAttachment, VaultNote, model_for
from ..exceptions import RemoteStoreError
from ..models.config import DatabaseConfig
from ..models.entities import Attachment, Entity, EntityKind, Note

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Columns never overwritten by an upsert
_IMMUTABLE_COLUMNS = {"id", "path", "synced_at"}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are taken as local time"""
    if value is None:
        return None
    return value.astimezone(timezone.utc)


class VaultStore(BaseVaultStore):
    """
    Remote store on top of an async SQLAlchemy engine.

    Features:
    - Bounded pool (min idle connections, max total, recycled by age)
    - Dialect-native ``INSERT .. ON CONFLICT (path) DO UPDATE`` upserts
    - Chunked batch deletes
    - Every operation bounded by a timeout and reported as RemoteStoreError
    """

    def __init__(
        self,
        config: DatabaseConfig,
        batch_size: int = 100,
        echo: bool = False
    ):
        """
        Initialize the store. No connection is made until ``connect``.

        Args:
            config: Database connection and pool configuration
            batch_size: Maximum paths per batch delete statement
            echo: Log every SQL statement
        """
        self.config = config
        self.batch_size = batch_size
        self.echo = echo
        self.timeout = config.operation_timeout_s

        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._connection_lock = asyncio.Lock()

        # Performance tracking
        self._total_requests = 0
        self._total_request_time = 0.0
        self._failed_requests = 0

    @property
    def dialect(self) -> str:
        return self.config.get_url().split("+", 1)[0].split(":", 1)[0]

    def _engine_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"echo": self.echo}
        if self.dialect != "postgresql":
            return kwargs

        min_size = max(self.config.min_connections, 1)
        kwargs.update(
            pool_size=min_size,
            # Connections beyond pool_size are closed when returned
            max_overflow=max(self.config.max_connections - min_size, 0),
            pool_recycle=self.config.max_connection_lifetime_s,
            pool_timeout=self.config.pool_timeout_s,
            pool_pre_ping=True,
            connect_args={
                "ssl": self.config.sslmode,
                "timeout": self.timeout,
                "server_settings": {"application_name": "vault-sync"},
            },
        )
        return kwargs

    async def connect(self) -> None:
        """
        Create the engine and verify the database is reachable.

        Raises:
            RemoteStoreError: If the database cannot be reached
        """
        async with self._connection_lock:
            if self._engine is not None:
                return

            engine = create_async_engine(self.config.get_url(), **self._engine_kwargs())
            if self.config.schema_name and self.dialect == "postgresql":
                engine = engine.execution_options(
                    schema_translate_map={None: self.config.schema_name}
                )
            self._engine = engine
            self._session_factory = async_sessionmaker(
                engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

        try:
            await self.ping()
        except RemoteStoreError:
            await self.close()
            raise

        logger.info(f"Connected to {self.dialect} database {self.config.database}")

    async def close(self) -> None:
        """Dispose of the engine and its pooled connections"""
        async with self._connection_lock:
            if self._engine is not None:
                await self._engine.dispose()
                logger.info("Disconnected from database")
            self._engine = None
            self._session_factory = None

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RemoteStoreError("Store is not connected", operation="session")
        return self._session_factory

    async def _run(
        self,
        operation: str,
        func_: Callable[[AsyncSession], Awaitable[T]],
        path: str = ""
    ) -> T:
        """
        Run ``func_`` in a fresh session with a timeout.

        Raises:
            RemoteStoreError: On any database, network or timeout failure
        """
        sessions = self._sessions()
        start_time = time.time()
        self._total_requests += 1

        async def _in_session() -> T:
            async with sessions() as session:
                result = await func_(session)
                await session.commit()
                return result

        try:
            return await asyncio.wait_for(_in_session(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            self._failed_requests += 1
            raise RemoteStoreError(
                f"{operation} timed out after {self.timeout}s", operation=operation, path=path
            ) from e
        except (SQLAlchemyError, OSError) as e:
            self._failed_requests += 1
            raise RemoteStoreError(f"{operation} failed: {e}", operation=operation, path=path) from e
        finally:
            self._total_request_time += time.time() - start_time

    async def ping(self) -> None:
        async def _ping(session: AsyncSession) -> None:
            await session.execute(select(1))

        await self._run("ping", _ping)

    async def create_tables(self) -> None:
        """Create the schema (PostgreSQL) and both tables if they are missing"""
        if self._engine is None:
            raise RemoteStoreError("Store is not connected", operation="create_tables")

        async def _create() -> None:
            async with self._engine.begin() as conn:
                if self.config.schema_name and self.dialect == "postgresql":
                    await conn.execute(CreateSchema(self.config.schema_name, if_not_exists=True))
                await conn.run_sync(Base.metadata.create_all)

        try:
            await asyncio.wait_for(_create(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise RemoteStoreError("create_tables timed out", operation="create_tables") from e
        except (SQLAlchemyError, OSError) as e:
            raise RemoteStoreError(f"create_tables failed: {e}", operation="create_tables") from e

        logger.info(f"Ensured tables {VaultNote.__tablename__}, {VaultAttachment.__tablename__}")

    def _insert(self, model):
        if self.dialect == "postgresql":
            return postgresql.insert(model)
        if self.dialect == "sqlite":
            return sqlite.insert(model)
        raise RemoteStoreError(f"Unsupported dialect for upsert: {self.dialect}", operation="upsert")

    @staticmethod
    def _row_values(entity: Entity) -> Dict[str, Any]:
        if isinstance(entity, Note):
            return {
                "path": entity.path,
                "filename": entity.filename,
                "title": entity.title,
                "tags": list(entity.tags),
                "aliases": list(entity.aliases),
                "created_at": _as_utc(entity.created_at),
                "modified_at": _as_utc(entity.modified_at),
                "publish": entity.publish,
                "frontmatter": dict(entity.frontmatter),
                "body": entity.body,
                "raw_content": entity.raw_content,
                "content_hash": entity.content_hash,
                "file_size_bytes": entity.file_size_bytes,
                "outgoing_links": list(entity.outgoing_links),
            }
        return {
            "path": entity.path,
            "filename": entity.filename,
            "extension": entity.extension,
            "mime_type": entity.mime_type,
            "file_size_bytes": entity.file_size_bytes,
            "content_hash": entity.content_hash,
            "data": entity.data,
        }

    async def upsert(self, entity: Entity) -> None:
        """
        Insert or replace the row for an entity's path.

        Args:
            entity: Note or Attachment to store
        """
        model = model_for(entity.kind)
        values = self._row_values(entity)

        stmt = self._insert(model).values(id=uuid.uuid4(), **values)
        update_columns = {
            name: stmt.excluded[name] for name in values if name not in _IMMUTABLE_COLUMNS
        }
        update_columns["synced_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=["path"], set_=update_columns)

        async def _upsert(session: AsyncSession) -> None:
            await session.execute(stmt)

        await self._run("upsert", _upsert, path=entity.path)
        logger.debug(f"Upserted {entity.kind.value} {entity.path}")

    async def delete(self, kind: EntityKind, path: str) -> bool:
        model = model_for(kind)

        async def _delete(session: AsyncSession) -> int:
            result = await session.execute(delete(model).where(model.path == path))
            return result.rowcount or 0

        removed = await self._run("delete", _delete, path=path)
        logger.debug(f"Deleted {kind.value} {path} ({removed} rows)")
        return removed > 0

    async def batch_delete(self, kind: EntityKind, paths: Sequence[str]) -> int:
        """
        Delete many paths of one kind, ``batch_size`` paths per statement.

        Returns:
            Total number of rows removed
        """
        if not paths:
            return 0

        model = model_for(kind)
        paths = list(paths)
        total = 0

        for start in range(0, len(paths), self.batch_size):
            chunk = paths[start:start + self.batch_size]

            async def _delete_chunk(session: AsyncSession, chunk=chunk) -> int:
                result = await session.execute(delete(model).where(model.path.in_(chunk)))
                return result.rowcount or 0

            total += await self._run("batch_delete", _delete_chunk)

        logger.info(f"Batch deleted {total} {kind.value} rows")
        return total

    async def list_fingerprints(self, kind: EntityKind) -> Dict[str, str]:
        model = model_for(kind)

        async def _list(session: AsyncSession) -> Dict[str, str]:
            result = await session.execute(select(model.path, model.content_hash))
            return {row.path: row.content_hash for row in result}

        return await self._run("list_fingerprints", _list)

    async def list_all(self, kind: EntityKind) -> List[Entity]:
        model = model_for(kind)

        async def _list(session: AsyncSession) -> List[Entity]:
            result = await session.execute(select(model).order_by(model.path))
            return [self._to_entity(row) for row in result.scalars()]

        return await self._run("list_all", _list)

    @staticmethod
    def _to_entity(row) -> Entity:
        if isinstance(row, VaultNote):
            return Note(
                path=row.path,
                filename=row.filename,
                title=row.title,
                tags=list(row.tags or []),
                aliases=list(row.aliases or []),
                created_at=row.created_at,
                modified_at=row.modified_at,
                publish=row.publish,
                frontmatter=dict(row.frontmatter or {}),
                body=row.body,
                raw_content=row.raw_content,
                content_hash=row.content_hash,
                file_size_bytes=row.file_size_bytes,
                synced_at=row.synced_at,
                outgoing_links=list(row.outgoing_links or []),
            )
        return Attachment(
            path=row.path,
            filename=row.filename,
            extension=row.extension,
            mime_type=row.mime_type,
            file_size_bytes=row.file_size_bytes,
            content_hash=row.content_hash,
            data=bytes(row.data),
            synced_at=row.synced_at,
        )

    async def get_status(self) -> Dict[str, Any]:
        """
        Row counts and most recent sync time for each table.

        Returns:
            Dictionary with ``notes``, ``attachments`` and ``last_synced_at``
        """

        async def _status(session: AsyncSession) -> Dict[str, Any]:
            status: Dict[str, Any] = {}
            last_synced: Optional[datetime] = None
            for kind, key in ((EntityKind.NOTE, "notes"), (EntityKind.ATTACHMENT, "attachments")):
                model = model_for(kind)
                result = await session.execute(
                    select(func.count(model.id), func.max(model.synced_at))
                )
                count, latest = result.one()
                status[key] = count
                if latest is not None and (last_synced is None or latest > last_synced):
                    last_synced = latest
            status["last_synced_at"] = last_synced
            return status

        status = await self._run("get_status", _status)
        status["schema"] = self.config.schema_name or None
        status["dialect"] = self.dialect
        return status

    def get_performance_metrics(self) -> Dict[str, Any]:
        avg_ms = (
            self._total_request_time / self._total_requests * 1000
            if self._total_requests else 0.0
        )
        return {
            "total_requests": self._total_requests,
            "failed_requests": self._failed_requests,
            "average_request_ms": avg_ms,
        }
