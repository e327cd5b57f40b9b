"""
Storage package for vault-sync.

Provides the remote store interface and its SQLAlchemy implementation.
"""

from .base import BaseVaultStore
from .client import VaultStore
from .schemas import Base, VaultNote, VaultAttachment

__all__ = [
    "BaseVaultStore",
    "VaultStore",
    "Base",
    "VaultNote",
    "VaultAttachment",
]
