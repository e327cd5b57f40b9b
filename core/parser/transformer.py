"""
Content transformation from raw file bytes to storable entities.
"""

import logging
import mimetypes
import os
from datetime import datetime
from pathlib import PurePosixPath
from typing import Iterable, Optional

from ..models.entities import Attachment, Entity, EntityKind, Note
from .frontmatter_parser import parse_frontmatter
from .markdown_parser import extract_inline_tags, extract_wikilinks, merge_tags

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


class ContentTransformer:
    """
    Turns a vault file into a Note or an Attachment.

    Classification is by file suffix only. Transformation never fails on
    malformed content: bad frontmatter and undecodable bytes degrade to a
    plain-body note.
    """

    def __init__(
        self,
        note_extensions: Optional[Iterable[str]] = None,
        max_binary_size_bytes: Optional[int] = None
    ):
        """
        Initialize the transformer.

        Args:
            note_extensions: Suffixes treated as Markdown notes (default: .md)
            max_binary_size_bytes: Attachments above this size are skipped
        """
        self.note_extensions = {ext.lower() for ext in (note_extensions or [".md"])}
        self.max_binary_size_bytes = max_binary_size_bytes

    def classify(self, path: str) -> EntityKind:
        """Decide which remote table a path belongs to"""
        suffix = PurePosixPath(path).suffix.lower()
        if suffix in self.note_extensions:
            return EntityKind.NOTE
        return EntityKind.ATTACHMENT

    def exceeds_size_limit(self, path: str, size_bytes: int) -> bool:
        """Attachments over the configured ceiling are not synchronized"""
        if self.max_binary_size_bytes is None:
            return False
        return (
            self.classify(path) == EntityKind.ATTACHMENT
            and size_bytes > self.max_binary_size_bytes
        )

    def transform(
        self,
        path: str,
        data: bytes,
        fingerprint: str,
        stat: Optional[os.stat_result] = None
    ) -> Optional[Entity]:
        """
        Build the entity for a file.

        Args:
            path: Vault-relative path
            data: Exact file bytes
            fingerprint: Fingerprint of ``data``
            stat: File status, used for timestamp fallbacks

        Returns:
            The entity, or None if the file is an oversized attachment
        """
        if self.classify(path) == EntityKind.NOTE:
            return self.transform_note(path, data, fingerprint, stat)

        if self.exceeds_size_limit(path, len(data)):
            logger.warning(
                f"Skipping {path}: {len(data)} bytes exceeds the attachment limit "
                f"of {self.max_binary_size_bytes} bytes"
            )
            return None
        return self.transform_attachment(path, data, fingerprint)

    def transform_note(
        self,
        path: str,
        data: bytes,
        fingerprint: str,
        stat: Optional[os.stat_result] = None
    ) -> Note:
        text = data.decode("utf-8", errors="replace")
        fm, body = parse_frontmatter(text)

        pure = PurePosixPath(path)
        mtime = datetime.fromtimestamp(stat.st_mtime) if stat else None
        ctime = datetime.fromtimestamp(_birth_time(stat)) if stat else None

        return Note(
            path=path,
            filename=pure.name,
            title=fm.title or pure.stem,
            tags=merge_tags(fm.tags, extract_inline_tags(body)),
            aliases=fm.aliases,
            created_at=fm.created or ctime,
            modified_at=fm.modified or mtime,
            publish=fm.publish,
            frontmatter=fm.extra,
            body=body,
            raw_content=text,
            content_hash=fingerprint,
            file_size_bytes=len(data),
            outgoing_links=extract_wikilinks(body),
        )

    def transform_attachment(self, path: str, data: bytes, fingerprint: str) -> Attachment:
        pure = PurePosixPath(path)
        mime_type, _ = mimetypes.guess_type(pure.name)
        return Attachment(
            path=path,
            filename=pure.name,
            extension=pure.suffix.lower(),
            mime_type=mime_type or DEFAULT_MIME_TYPE,
            file_size_bytes=len(data),
            content_hash=fingerprint,
            data=data,
        )


def _birth_time(stat: os.stat_result) -> float:
    # st_birthtime exists on macOS and BSD; elsewhere fall back to mtime
    return getattr(stat, "st_birthtime", stat.st_mtime)
