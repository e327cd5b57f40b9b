"""
vault-sync core package

Models, parsing, remote storage and the synchronization pipeline.
"""

__version__ = "0.1.0"

from .models import VaultConfig, Note, Attachment, EntityKind
from .exceptions import VaultSyncError

__all__ = [
    "VaultConfig",
    "Note",
    "Attachment",
    "EntityKind",
    "VaultSyncError",
]
