"""
Tests for VaultWatcher and the watchdog event handler bridge.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from core.exceptions import WatcherError
from core.sync.debouncer import Debouncer
from core.sync.events import EventType
from core.sync.filters import PathFilter
from core.sync.watcher import VaultEventHandler, VaultWatcher


async def settled(debouncer: Debouncer):
    await debouncer.flush()
    events = {}
    while not debouncer.events.empty():
        event = debouncer.events.get_nowait()
        events[event.path] = event.event_type
    return events


class TestVaultEventHandler:
    """Mapping of watchdog events onto watcher calls"""

    @pytest.fixture
    def watcher(self):
        watcher = Mock()
        watcher.handle_notification = AsyncMock()
        watcher.handle_directory_removed = AsyncMock()
        watcher.handle_directory_added = AsyncMock()
        return watcher

    @pytest.fixture
    def handler(self, watcher):
        return VaultEventHandler(watcher)

    @pytest.mark.asyncio
    async def test_file_events_are_forwarded(self, handler, watcher):
        handler.set_event_loop(asyncio.get_running_loop())
        handler.on_created(FileCreatedEvent("/vault/a.md"))
        handler.on_modified(FileModifiedEvent("/vault/b.md"))
        handler.on_deleted(FileDeletedEvent("/vault/c.md"))
        await asyncio.sleep(0.05)

        calls = [call.args for call in watcher.handle_notification.await_args_list]
        assert ("/vault/a.md", EventType.CREATE) in calls
        assert ("/vault/b.md", EventType.MODIFY) in calls
        assert ("/vault/c.md", EventType.DELETE) in calls

    @pytest.mark.asyncio
    async def test_file_move_is_delete_plus_create(self, handler, watcher):
        handler.set_event_loop(asyncio.get_running_loop())
        handler.on_moved(FileMovedEvent("/vault/old.md", "/vault/new.md"))
        await asyncio.sleep(0.05)

        calls = [call.args for call in watcher.handle_notification.await_args_list]
        assert ("/vault/old.md", EventType.DELETE) in calls
        assert ("/vault/new.md", EventType.CREATE) in calls

    @pytest.mark.asyncio
    async def test_directory_events(self, handler, watcher):
        handler.set_event_loop(asyncio.get_running_loop())
        handler.on_created(DirCreatedEvent("/vault/newdir"))
        handler.on_deleted(DirDeletedEvent("/vault/olddir"))
        handler.on_moved(DirMovedEvent("/vault/from", "/vault/to"))
        await asyncio.sleep(0.05)

        watcher.handle_notification.assert_not_awaited()
        removed = [call.args[0] for call in watcher.handle_directory_removed.await_args_list]
        assert sorted(removed) == ["/vault/from", "/vault/olddir"]
        watcher.handle_directory_added.assert_awaited_once_with("/vault/to")

    @pytest.mark.asyncio
    async def test_events_dropped_without_loop(self, handler, watcher):
        handler.set_event_loop(asyncio.get_running_loop())
        handler.set_event_loop(None)
        handler.on_created(FileCreatedEvent("/vault/a.md"))
        await asyncio.sleep(0.02)

        watcher.handle_notification.assert_not_awaited()


class TestVaultWatcher:
    """Filtering, directory expansion and observer lifecycle"""

    @pytest.fixture
    def debouncer(self):
        return Debouncer(debounce_ms=60_000)

    @pytest.fixture
    def watcher(self, vault, debouncer):
        return VaultWatcher(vault, debouncer, path_filter=PathFilter([".obsidian/**"]))

    @pytest.mark.asyncio
    async def test_notification_becomes_relative_event(self, watcher, debouncer, vault):
        forwarded = await watcher.handle_notification(str(watcher.vault_path / "dir" / "a.md"), EventType.CREATE)

        assert forwarded is True
        assert await settled(debouncer) == {"dir/a.md": EventType.CREATE}

    @pytest.mark.asyncio
    async def test_excluded_and_foreign_paths_are_dropped(self, watcher, debouncer, vault, tmp_path):
        assert await watcher.handle_notification(str(watcher.vault_path / ".obsidian" / "app.json"), EventType.MODIFY) is False
        assert await watcher.handle_notification(str(tmp_path / "elsewhere.md"), EventType.MODIFY) is False
        assert await watcher.handle_notification(str(watcher.vault_path), EventType.MODIFY) is False
        assert debouncer.pending_count == 0

        status = watcher.get_status()
        assert status["events_received"] == 3
        assert status["events_forwarded"] == 0

    @pytest.mark.asyncio
    async def test_directory_removal_expands_tracked_paths(self, vault, debouncer):
        tracked = {"dir/a.md", "dir/sub/b.png", "dirty.md", "other.md"}
        watcher = VaultWatcher(vault, debouncer, tracked_paths=lambda: tracked)

        await watcher.handle_directory_removed(str(watcher.vault_path / "dir"))

        assert await settled(debouncer) == {
            "dir/a.md": EventType.DELETE,
            "dir/sub/b.png": EventType.DELETE,
        }

    @pytest.mark.asyncio
    async def test_directory_added_emits_create_per_file(self, watcher, debouncer, make_file, vault):
        make_file("moved/a.md", "a")
        make_file("moved/deep/b.png", b"b")

        await watcher.handle_directory_added(str(watcher.vault_path / "moved"))

        assert await settled(debouncer) == {
            "moved/a.md": EventType.CREATE,
            "moved/deep/b.png": EventType.CREATE,
        }

    @pytest.mark.asyncio
    async def test_start_fails_for_missing_vault(self, tmp_path, debouncer):
        watcher = VaultWatcher(tmp_path / "missing", debouncer)

        with pytest.raises(WatcherError):
            await watcher.start_monitoring()

    @pytest.mark.asyncio
    async def test_dead_observer_sets_failed(self, watcher):
        watcher._is_monitoring = True
        watcher.health_check_interval_s = 0.01
        watcher.observer = Mock()
        watcher.observer.is_alive.return_value = False

        await asyncio.wait_for(watcher._check_observer_health(), timeout=1.0)

        assert watcher.failed.is_set()
        assert isinstance(watcher.error, WatcherError)

    @pytest.mark.asyncio
    async def test_live_observer_reports_new_file(self, vault):
        debouncer = Debouncer(debounce_ms=50)
        watcher = VaultWatcher(vault, debouncer)

        async with watcher:
            assert watcher.is_monitoring
            await asyncio.sleep(0.2)
            (vault / "live.md").write_text("hello", encoding="utf-8")

            event = await asyncio.wait_for(debouncer.events.get(), timeout=5.0)

        assert event.path == "live.md"
        assert event.event_type in (EventType.CREATE, EventType.MODIFY)
        assert watcher.is_monitoring is False
