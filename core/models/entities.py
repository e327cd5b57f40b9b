"""
Entity models for synchronized vault content.

A vault file becomes exactly one entity: Markdown files become notes,
everything else becomes attachments.
"""

from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field, ConfigDict, field_validator


class EntityKind(Enum):
    """Remote table an entity belongs to"""
    NOTE = "note"
    ATTACHMENT = "attachment"


class VaultEntity(BaseModel):
    """Fields shared by every synchronized entity"""
    model_config = ConfigDict(
        validate_assignment=True,
        arbitrary_types_allowed=True
    )

    path: str
    filename: str
    content_hash: str
    file_size_bytes: int = Field(default=0, ge=0)
    synced_at: Optional[datetime] = None

    @field_validator('path')
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Vault-relative POSIX path, never absolute or escaping the root"""
        v = v.replace("\\", "/")
        if v.startswith("/") or ".." in PurePosixPath(v).parts:
            raise ValueError(f'Path must be vault-relative: {v}')
        return v

    @property
    def kind(self) -> EntityKind:
        raise NotImplementedError


class Note(VaultEntity):
    """A Markdown note with parsed frontmatter and links"""

    title: str
    tags: List[str] = Field(default_factory=list)
    aliases: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    publish: bool = False
    frontmatter: Dict[str, Any] = Field(default_factory=dict)
    body: str = ""
    raw_content: str = ""
    outgoing_links: List[str] = Field(default_factory=list)

    @property
    def kind(self) -> EntityKind:
        return EntityKind.NOTE

    @property
    def content_bytes(self) -> bytes:
        """Bytes written back to disk when materializing"""
        return self.raw_content.encode("utf-8")


class Attachment(VaultEntity):
    """A binary file stored verbatim"""

    extension: str = ""
    mime_type: str = "application/octet-stream"
    data: bytes = b""

    @property
    def kind(self) -> EntityKind:
        return EntityKind.ATTACHMENT

    @property
    def content_bytes(self) -> bytes:
        return self.data


Entity = Union[Note, Attachment]
