"""
YAML frontmatter extraction for Markdown notes.

Recognized fields are lifted into typed attributes; everything else is kept
verbatim in ``extra`` so it round-trips into the remote store.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

import frontmatter
import yaml

logger = logging.getLogger(__name__)

RECOGNIZED_FIELDS = frozenset({"title", "tags", "aliases", "created", "modified", "publish"})

# Tried in order after ISO 8601
DATE_FORMATS = [
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d-%m-%Y",
    "%d/%m/%Y",
]


@dataclass
class Frontmatter:
    """Parsed frontmatter of a note"""
    title: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    aliases: List[str] = field(default_factory=list)
    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    publish: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)


def parse_date(value: Any) -> Optional[datetime]:
    """
    Interpret a frontmatter date value.

    Accepts YAML-native dates and datetimes as well as strings in ISO 8601
    and a handful of common human formats.

    Returns:
        Parsed datetime, or None if the value is not recognizable
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    if not text:
        return None

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    logger.debug(f"Unrecognized date value in frontmatter: {text!r}")
    return None


def parse_string_list(value: Any) -> List[str]:
    """Accept either a single string or a list of scalars."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.strip()
        return [value] if value else []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return [str(value)]


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "on")
    return bool(value)


def _jsonable(value: Any) -> Any:
    """Make YAML-native values storable as JSON"""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return value


def parse_frontmatter(content: str) -> Tuple[Frontmatter, str]:
    """
    Split a note into its frontmatter and body.

    Malformed YAML, including date-shaped values that are not real dates,
    is not an error: the note is treated as having no frontmatter and the
    whole text becomes the body.

    Args:
        content: Full text of the note

    Returns:
        Tuple of (parsed frontmatter, body text)
    """
    try:
        post = frontmatter.loads(content)
    except (yaml.YAMLError, ValueError, TypeError) as e:
        logger.debug(f"Malformed frontmatter, treating note as plain body: {e}")
        return Frontmatter(), content

    metadata = post.metadata or {}
    fm = Frontmatter()

    title = metadata.get("title")
    if title is not None and str(title).strip():
        fm.title = str(title).strip()
    fm.tags = parse_string_list(metadata.get("tags"))
    fm.aliases = parse_string_list(metadata.get("aliases"))
    fm.created = parse_date(metadata.get("created"))
    fm.modified = parse_date(metadata.get("modified"))
    fm.publish = _parse_bool(metadata.get("publish", False))

    fm.extra = {
        str(key): _jsonable(value)
        for key, value in metadata.items()
        if key not in RECOGNIZED_FIELDS
    }

    return fm, post.content
