"""
Core data models for vault-sync

Pydantic models for vault entities and configuration.
"""

from .entities import VaultEntity, Note, Attachment, Entity, EntityKind
from .config import VaultConfig, DatabaseConfig, SyncConfig, GlobalSettings

__all__ = [
    # Entities
    "VaultEntity",
    "Note",
    "Attachment",
    "Entity",
    "EntityKind",

    # Configuration
    "VaultConfig",
    "DatabaseConfig",
    "SyncConfig",
    "GlobalSettings",
]
