"""
Tests for include/exclude path filtering.
"""

import pytest

from config.defaults import DEFAULT_IGNORE_PATTERNS
from core.sync.filters import PathFilter


class TestPathFilter:

    @pytest.fixture
    def default_filter(self):
        return PathFilter(DEFAULT_IGNORE_PATTERNS)

    @pytest.mark.parametrize("path", [
        ".obsidian/workspace.json",
        ".obsidian/plugins/foo/main.js",
        ".git/objects/ab/cdef",
        ".trash/old.md",
        "notes/.DS_Store",
        ".DS_Store",
        "project/node_modules/pkg/index.js",
    ])
    def test_default_patterns_exclude(self, default_filter, path):
        assert default_filter.should_include(path) is False

    @pytest.mark.parametrize("path", [
        "a.md",
        "daily/2024-01-01.md",
        "attachments/image.png",
        "obsidian-notes.md",
    ])
    def test_default_patterns_include(self, default_filter, path):
        assert default_filter.should_include(path) is True

    def test_directory_pruning(self, default_filter):
        assert default_filter.is_dir_excluded(".obsidian") is True
        assert default_filter.is_dir_excluded("a/node_modules") is True
        assert default_filter.is_dir_excluded("daily") is False
        assert default_filter.is_dir_excluded("") is False

    def test_directory_pattern_hides_descendants(self):
        path_filter = PathFilter(["private/"])

        assert path_filter.should_include("private/secret.md") is False
        assert path_filter.should_include("private/deep/er.md") is False
        assert path_filter.should_include("public/private.md") is True

    def test_include_patterns_restrict(self):
        path_filter = PathFilter(include_patterns=["*.md"])

        assert path_filter.should_include("a.md") is True
        assert path_filter.should_include("dir/b.md") is True
        assert path_filter.should_include("img.png") is False

    def test_exclude_wins_over_include(self):
        path_filter = PathFilter(exclude_patterns=["drafts/**"], include_patterns=["*.md"])

        assert path_filter.should_include("drafts/wip.md") is False
        assert path_filter.should_include("final.md") is True

    def test_backslashes_are_normalized(self, default_filter):
        assert default_filter.should_include(".obsidian\\app.json") is False

    def test_no_patterns_includes_everything(self):
        path_filter = PathFilter()
        assert path_filter.should_include("anything/at/all.bin") is True
