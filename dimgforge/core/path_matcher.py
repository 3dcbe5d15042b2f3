"""Path filtering for git artifacts.

A ``PathMatcher`` answers two questions about a repository-relative path:
does it lie under the artifact's base path, and does it survive the
include/exclude filters?  Filters are written relative to the base path.
A pattern matches a path when it matches the path itself or any of its
parent directories, so ``app`` and ``app/*`` both select everything below
``app/``.
"""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable


def normalize_path(path: str) -> str:
    """Strip leading/trailing slashes and collapse ``.`` to the empty path."""
    path = path.strip("/")
    return "" if path == "." else path


def _path_prefixes(path: str) -> list[str]:
    parts = path.split("/")
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]


def path_matches_pattern(path: str, pattern: str) -> bool:
    """True if *pattern* matches *path* or one of its parent directories."""
    pattern = normalize_path(pattern)
    if not pattern:
        return True
    return any(
        fnmatch.fnmatchcase(prefix, pattern) for prefix in _path_prefixes(path)
    )


def path_matches_any(path: str, patterns: Iterable[str]) -> bool:
    return any(path_matches_pattern(path, p) for p in patterns)


class PathMatcher:
    """Base path + include/exclude filter.

    Parameters
    ----------
    base_path:
        Directory inside the repository the artifact exports (``add``).
    include_paths:
        If non-empty, only paths matching one of these are kept.
    exclude_paths:
        Paths matching any of these are dropped.
    """

    def __init__(
        self,
        base_path: str = "",
        include_paths: Iterable[str] = (),
        exclude_paths: Iterable[str] = (),
    ) -> None:
        self.base_path = normalize_path(base_path)
        self.include_paths = [normalize_path(p) for p in include_paths]
        self.exclude_paths = [normalize_path(p) for p in exclude_paths]

    def is_under_base(self, path: str) -> bool:
        path = normalize_path(path)
        if not self.base_path:
            return True
        return path.startswith(self.base_path + "/")

    def trim(self, path: str) -> str:
        """Return *path* relative to the base path."""
        path = normalize_path(path)
        if not self.base_path:
            return path
        return path[len(self.base_path) + 1:]

    def matches(self, path: str) -> bool:
        """True if the repository path is exported by this matcher."""
        if not self.is_under_base(path):
            return False
        relative = self.trim(path)
        if self.include_paths and not path_matches_any(relative, self.include_paths):
            return False
        if self.exclude_paths and path_matches_any(relative, self.exclude_paths):
            return False
        return True

    def __repr__(self) -> str:
        return (
            f"<PathMatcher base={self.base_path!r} "
            f"include={self.include_paths!r} exclude={self.exclude_paths!r}>"
        )
