"""
Relational schema for synchronized vault content.

PostgreSQL gets native ``TEXT[]`` and ``JSONB`` columns; other dialects fall
back to portable JSON so the same models work against SQLite.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Type, Union

from sqlalchemy import JSON, Boolean, DateTime, BigInteger, Index, LargeBinary, String, Text, Uuid, func
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..models.entities import EntityKind

StringArray = JSON().with_variant(postgresql.ARRAY(Text), "postgresql")
JsonDocument = JSON().with_variant(postgresql.JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for vault tables"""


class VaultNote(Base):
    """One row per Markdown note"""

    __tablename__ = "vault_notes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    path: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[List[str]] = mapped_column(StringArray, nullable=False, default=list)
    aliases: Mapped[List[str]] = mapped_column(StringArray, nullable=False, default=list)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    modified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    publish: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    frontmatter: Mapped[Dict[str, Any]] = mapped_column(JsonDocument, nullable=False, default=dict)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    raw_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    file_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    outgoing_links: Mapped[List[str]] = mapped_column(StringArray, nullable=False, default=list)

    __table_args__ = (
        Index("idx_vault_notes_content_hash", "content_hash"),
        Index("idx_vault_notes_modified_at", "modified_at"),
    )


class VaultAttachment(Base):
    """One row per non-Markdown file, bytes stored inline"""

    __tablename__ = "vault_attachments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    path: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    extension: Mapped[str] = mapped_column(Text, nullable=False, default="")
    mime_type: Mapped[str] = mapped_column(Text, nullable=False, default="application/octet-stream")
    file_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_vault_attachments_content_hash", "content_hash"),
    )


TABLES: Dict[EntityKind, Type[Union[VaultNote, VaultAttachment]]] = {
    EntityKind.NOTE: VaultNote,
    EntityKind.ATTACHMENT: VaultAttachment,
}


def model_for(kind: EntityKind) -> Type[Union[VaultNote, VaultAttachment]]:
    """Table model storing entities of the given kind"""
    return TABLES[kind]
