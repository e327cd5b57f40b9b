"""
Tests for the vault synchronization pipeline.

Covers event coalescing, the debouncer, the local state cache, path
filters, the retry queue, the sync engine (incremental sync, full
reconciliation and pull), the filesystem watcher and the daemon.
"""
