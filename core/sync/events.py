"""
File Event Models.

Defines event types and the coalescing policy used to fold several
notifications for one path into a single settled event.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Any
from pydantic import BaseModel, Field, field_validator


class EventType(Enum):
    """Kinds of change reported for a single path"""
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    RENAME = "rename"   # Treated as DELETE of the old path


def normalize_event_type(event_type: EventType) -> EventType:
    """Map a raw notification kind onto the kinds the debouncer keeps."""
    if event_type == EventType.RENAME:
        return EventType.DELETE
    return event_type


def coalesce(pending: EventType, incoming: EventType) -> EventType:
    """
    Decide the type of a pending event after another notification arrives.

    A delete always wins and is never downgraded within the same window.
    A create followed by modifications is still a create.

    Args:
        pending: Type currently held for the path
        incoming: Type of the newly received notification

    Returns:
        The type the pending event should carry from now on
    """
    incoming = normalize_event_type(incoming)

    if incoming == EventType.DELETE or pending == EventType.DELETE:
        return EventType.DELETE

    if pending == EventType.CREATE and incoming == EventType.MODIFY:
        return EventType.CREATE

    return incoming


class FileEvent(BaseModel):
    """
    A change to one vault path.

    Paths are vault-relative and always use forward slashes.
    """

    path: str
    event_type: EventType
    timestamp: datetime = Field(default_factory=datetime.now)

    @field_validator('path')
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Normalize separators and reject empty or absolute paths"""
        v = v.replace("\\", "/").strip("/")
        if not v:
            raise ValueError('Path must not be empty')
        return v

    def merge(self, incoming: EventType) -> None:
        """Fold a newer notification for the same path into this event."""
        self.event_type = coalesce(self.event_type, incoming)
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging"""
        return {
            "path": self.path,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return f"{self.event_type.value.upper()}: {self.path}"
