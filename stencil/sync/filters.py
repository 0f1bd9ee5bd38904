"""Path filters applied before template files are written to a project."""

from __future__ import annotations

import fnmatch
import re

from stencil.models import File

# Paths never replayed onto a project during sync.
SYNC_DENYLIST = (
    re.compile(r"^\.git/"),
    re.compile(r"^node_modules/"),
    re.compile(r"^\.env"),
    re.compile(r"^README\.md$", re.IGNORECASE),
    re.compile(r"^LICENSE$", re.IGNORECASE),
)


def is_denylisted(path: str) -> bool:
    return any(pattern.search(path) for pattern in SYNC_DENYLIST)


def matches_exclude(path: str, pattern: str) -> bool:
    """Glob match, or exact/prefix match for plain directory or file names."""
    if any(ch in pattern for ch in "*?["):
        return fnmatch.fnmatch(path, pattern)
    pattern = pattern.rstrip("/")
    return path == pattern or path.startswith(pattern + "/")


def filter_sync_files(
    files: list[File], extra_excludes: list[str] | None = None
) -> tuple[list[File], list[str]]:
    """Split ``files`` into (kept, excluded paths)."""
    extra_excludes = extra_excludes or []
    kept: list[File] = []
    excluded: list[str] = []
    for f in files:
        if is_denylisted(f.path) or any(matches_exclude(f.path, p) for p in extra_excludes):
            excluded.append(f.path)
        else:
            kept.append(f)
    return kept, excluded
