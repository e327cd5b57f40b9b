"""
Path filtering with gitignore-style glob patterns.
"""

import logging
from pathlib import PurePosixPath
from typing import Iterable, List, Optional

import pathspec

logger = logging.getLogger(__name__)


class PathFilter:
    """
    Decides which vault-relative paths take part in synchronization.

    Exclude patterns win over include patterns and are tested against the
    path and every ancestor directory, so ``.git/**`` also hides
    ``.git/objects/ab/cd``. When include patterns are configured a path must
    match at least one of them.
    """

    def __init__(
        self,
        exclude_patterns: Optional[Iterable[str]] = None,
        include_patterns: Optional[Iterable[str]] = None
    ):
        self.exclude_patterns: List[str] = list(exclude_patterns or [])
        self.include_patterns: List[str] = list(include_patterns or [])

        self._exclude = pathspec.PathSpec.from_lines("gitwildmatch", self.exclude_patterns)
        self._include = (
            pathspec.PathSpec.from_lines("gitwildmatch", self.include_patterns)
            if self.include_patterns else None
        )

    @staticmethod
    def _ancestors(rel_path: str) -> List[str]:
        parts = PurePosixPath(rel_path).parts
        return ["/".join(parts[:i]) for i in range(1, len(parts))]

    def is_excluded(self, rel_path: str) -> bool:
        """Check the path and its ancestor directories against the exclude set."""
        rel_path = rel_path.replace("\\", "/").strip("/")
        if self._exclude.match_file(rel_path):
            return True
        for ancestor in self._ancestors(rel_path):
            # Directory form lets "dir/" and "dir/**" patterns match
            if self._exclude.match_file(ancestor) or self._exclude.match_file(ancestor + "/"):
                return True
        return False

    def is_dir_excluded(self, rel_dir: str) -> bool:
        """Check whether a whole directory can be pruned during a walk."""
        rel_dir = rel_dir.replace("\\", "/").strip("/")
        if not rel_dir:
            return False
        return (
            self._exclude.match_file(rel_dir + "/")
            or self._exclude.match_file(rel_dir)
            or self.is_excluded(rel_dir)
        )

    def should_include(self, rel_path: str) -> bool:
        """
        Decide whether a file path takes part in synchronization.

        Args:
            rel_path: Vault-relative path with forward slashes

        Returns:
            True if the path passes both the exclude and include sets
        """
        if self.is_excluded(rel_path):
            return False
        if self._include is not None:
            return self._include.match_file(rel_path.replace("\\", "/").strip("/"))
        return True
