"""
vault-sync - Keep a Markdown vault and a PostgreSQL database in agreement.

Watches a local vault of notes and attachments, debounces change bursts,
and mirrors every qualifying file into per-vault database tables.
"""

__version__ = "0.1.0"

from core.models.config import VaultConfig, DatabaseConfig, SyncConfig
from core.models.entities import Note, Attachment, EntityKind

__all__ = [
    "VaultConfig",
    "DatabaseConfig",
    "SyncConfig",
    "Note",
    "Attachment",
    "EntityKind",
    "__version__",
]
