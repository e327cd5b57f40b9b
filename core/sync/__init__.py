"""
Vault synchronization pipeline.

Keeps the remote store in agreement with the local vault, both in real
time and through full reconciliation.

Key Components:
- Debouncer: Coalesces bursts of notifications into one settled event per path
- StateCache: Durable record of the last synchronized fingerprint per path
- SyncEngine: Incremental sync, full reconciliation, pull and retries
- VaultWatcher: Recursive watchdog observer feeding the debouncer
- SyncDaemon: Runs the watch-and-sync loop with orderly shutdown
"""

from .events import FileEvent, EventType
from .debouncer import Debouncer
from .state import StateCache, FileState
from .retry import RetryQueue, RetryEntry
from .filters import PathFilter
from .engine import SyncEngine, SyncOutcome, ReconcileReport, PullReport
from .watcher import VaultWatcher
from .daemon import SyncDaemon

__all__ = [
    "FileEvent",
    "EventType",
    "Debouncer",
    "StateCache",
    "FileState",
    "RetryQueue",
    "RetryEntry",
    "PathFilter",
    "SyncEngine",
    "SyncOutcome",
    "ReconcileReport",
    "PullReport",
    "VaultWatcher",
    "SyncDaemon",
]
