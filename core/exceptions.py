"""
Exception hierarchy for vault synchronization.
"""


class VaultSyncError(Exception):
    """Base class for all synchronization errors."""


class RemoteStoreError(VaultSyncError):
    """A remote store operation failed (connection, query or timeout)."""

    def __init__(self, message: str, operation: str = "", path: str = ""):
        super().__init__(message)
        self.operation = operation
        self.path = path


class ConfigurationError(VaultSyncError):
    """Configuration could not be loaded or failed validation."""


class WatcherError(VaultSyncError):
    """The file notification source failed and cannot continue."""


class StateError(VaultSyncError):
    """The local state snapshot could not be persisted."""
