"""
Tests for the durable state cache.
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from core.exceptions import StateError
from core.sync.state import FileState, StateCache, state_file_for


def make_state(fingerprint: str = "abc") -> FileState:
    now = datetime(2024, 1, 1, 12, 0, 0)
    return FileState(fingerprint=fingerprint, last_synced=now, last_modified=now, size_bytes=3)


class TestStateCache:
    """Load, save and query behavior"""

    def test_missing_file_starts_empty(self, state_file, vault):
        cache = StateCache(state_file, vault)
        cache.load()

        assert cache.file_count == 0
        assert cache.last_full_sync is None
        assert cache.is_dirty is False

    def test_needs_sync(self, state_file, vault):
        cache = StateCache(state_file, vault)

        assert cache.needs_sync("a.md", "abc") is True
        cache.set("a.md", make_state("abc"))
        assert cache.needs_sync("a.md", "abc") is False
        assert cache.needs_sync("a.md", "def") is True

    def test_set_remove_all_paths(self, state_file, vault):
        cache = StateCache(state_file, vault)
        cache.set("a.md", make_state())
        cache.set("img/b.png", make_state())

        assert cache.all_paths() == {"a.md", "img/b.png"}

        cache.remove("a.md")
        cache.remove("never-tracked.md")
        assert cache.all_paths() == {"img/b.png"}
        assert cache.get("a.md") is None

    def test_save_and_reload_round_trip(self, state_file, vault):
        cache = StateCache(state_file, vault)
        cache.set("a.md", make_state("abc"))
        when = datetime(2024, 2, 3, 4, 5, 6)
        cache.set_last_full_sync(when)

        assert cache.save() is True
        assert cache.is_dirty is False

        reloaded = StateCache(state_file, vault)
        reloaded.load()
        assert reloaded.get("a.md") == make_state("abc")
        assert reloaded.last_full_sync == when

    def test_save_skipped_when_clean(self, state_file, vault):
        cache = StateCache(state_file, vault)
        assert cache.save() is False
        assert not state_file.exists()

        cache.set("a.md", make_state())
        assert cache.save() is True
        assert cache.save() is False

    def test_root_mismatch_discards_snapshot(self, state_file, tmp_path, vault):
        cache = StateCache(state_file, vault)
        cache.set("a.md", make_state())
        cache.save()

        other_root = tmp_path / "other"
        other_root.mkdir()
        moved = StateCache(state_file, other_root)
        moved.load()

        assert moved.file_count == 0
        assert moved.is_dirty is True

    def test_corrupt_snapshot_starts_empty(self, state_file, vault):
        state_file.parent.mkdir(parents=True)
        state_file.write_text("{ not json", encoding="utf-8")

        cache = StateCache(state_file, vault)
        cache.load()
        assert cache.file_count == 0

    def test_invalid_entries_are_skipped(self, state_file, vault):
        state_file.parent.mkdir(parents=True)
        good = make_state().to_dict()
        state_file.write_text(json.dumps({
            "vault_path": str(Path(vault).resolve()),
            "files": {"good.md": good, "bad.md": {"fingerprint": "x"}},
        }), encoding="utf-8")

        cache = StateCache(state_file, vault)
        cache.load()
        assert cache.all_paths() == {"good.md"}

    def test_failed_save_keeps_previous_snapshot(self, state_file, vault):
        cache = StateCache(state_file, vault)
        cache.set("a.md", make_state("first"))
        cache.save()
        original = state_file.read_text(encoding="utf-8")

        cache.set("a.md", make_state("second"))
        with patch("core.sync.state.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StateError):
                cache.save()

        assert state_file.read_text(encoding="utf-8") == original
        assert cache.is_dirty is True
        assert [p.name for p in state_file.parent.iterdir()] == [state_file.name]

    def test_clear(self, state_file, vault):
        cache = StateCache(state_file, vault)
        cache.set("a.md", make_state())
        cache.set_last_full_sync(datetime.now())
        cache.clear()

        assert cache.file_count == 0
        assert cache.last_full_sync is None
        assert cache.is_dirty is True

    def test_concurrent_writers_and_readers(self, state_file, vault):
        cache = StateCache(state_file, vault)
        errors = []

        def writer(prefix: str):
            try:
                for i in range(200):
                    cache.set(f"{prefix}/{i}.md", make_state(str(i)))
            except Exception as e:  # pragma: no cover
                errors.append(e)

        def reader():
            try:
                for _ in range(200):
                    cache.all_paths()
                    cache.needs_sync("w0/1.md", "1")
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(f"w{n}",)) for n in range(3)]
        threads += [threading.Thread(target=reader) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert cache.file_count == 600

    def test_get_status(self, state_file, vault):
        cache = StateCache(state_file, vault)
        cache.set("a.md", make_state())
        status = cache.get_status()

        assert status["tracked_files"] == 1
        assert status["dirty"] is True
        assert status["state_file"] == str(state_file)


class TestStateFileFor:
    """Snapshot naming per vault root"""

    def test_name_is_stable_per_root(self, tmp_path, vault):
        first = state_file_for(tmp_path, vault)
        second = state_file_for(tmp_path, Path(str(vault) + "/"))

        assert first == second
        assert first.parent == tmp_path
        assert first.name.startswith("state-") and first.suffix == ".json"

    def test_name_differs_between_roots(self, tmp_path):
        assert state_file_for(tmp_path, tmp_path / "a") != state_file_for(tmp_path, tmp_path / "b")
