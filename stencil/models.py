"""Data models for template cloning and synchronization.

Covers: file sets read from a template, git tree entries, repositories,
commits seen in history, and the results returned by clone, sync and
update checks.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime

# Trailer embedded in sync commit messages and PR bodies.
TEMPLATE_SHA_TRAILER = "template-sha"
TEMPLATE_SHA_PATTERN = re.compile(r"template-sha: ([a-f0-9]{40})", re.IGNORECASE)

# Marks a sync anchor: the pull request title tag, or a generated sync branch
# named in a merge commit.
SYNC_MARKER_PATTERN = re.compile(r"\[sync-template\]|\bsync-template-\d{4}-\d{2}-\d{2}T")
INITIAL_IMPORT_MARKERS = ("Initial commit from template", "Initial commit - Cloned from")

FILE_MODE = "100644"


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO-8601 timestamp as returned by GitHub (``...Z``)."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def extract_template_sha(message: str) -> str | None:
    """Return the ``template-sha`` embedded in a commit message, if any."""
    match = TEMPLATE_SHA_PATTERN.search(message or "")
    return match.group(1).lower() if match else None


def is_anchor_message(message: str) -> bool:
    """True for sync commits and initial-import commits."""
    message = message or ""
    if SYNC_MARKER_PATTERN.search(message) or TEMPLATE_SHA_PATTERN.search(message):
        return True
    return any(m in message for m in INITIAL_IMPORT_MARKERS)


# --- Files and git objects ---


@dataclass(frozen=True)
class File:
    """A file read from a repository. ``path`` is repo-relative, POSIX style."""

    path: str
    content: bytes

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")


@dataclass(frozen=True)
class TreeEntry:
    """A blob entry in a git tree."""

    path: str
    sha: str
    mode: str = FILE_MODE
    type: str = "blob"

    def to_api(self) -> dict:
        return {"path": self.path, "mode": self.mode, "type": self.type, "sha": self.sha}


@dataclass
class SkippedFile:
    """A file dropped from an operation, and why."""

    path: str
    reason: str


# --- Repositories and commits ---


@dataclass
class Repository:
    """A hosted repository."""

    owner: str
    name: str
    default_branch: str = "main"
    private: bool = False
    html_url: str = ""
    description: str = ""
    created_at: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def visibility(self) -> str:
        return "private" if self.private else "public"

    @classmethod
    def from_api(cls, data: dict) -> "Repository":
        owner = data.get("owner") or {}
        return cls(
            owner=owner.get("login", ""),
            name=data.get("name", ""),
            default_branch=data.get("default_branch") or "main",
            private=bool(data.get("private", False)),
            html_url=data.get("html_url", ""),
            description=data.get("description") or "",
            created_at=data.get("created_at", ""),
        )


@dataclass
class CommitInfo:
    """A commit as listed in repository history."""

    sha: str
    message: str = ""
    author: str = "Unknown"
    date: str = ""

    @property
    def timestamp(self) -> datetime | None:
        return parse_timestamp(self.date)

    @property
    def template_sha(self) -> str | None:
        return extract_template_sha(self.message)

    @classmethod
    def from_api(cls, data: dict) -> "CommitInfo":
        commit = data.get("commit") or {}
        author = commit.get("author") or {}
        return cls(
            sha=data.get("sha", ""),
            message=commit.get("message", ""),
            author=author.get("name") or "Unknown",
            date=author.get("date", ""),
        )


# --- Results ---


@dataclass
class CloneResult:
    """Outcome of cloning a template into a new repository."""

    repository: Repository
    files_count: int
    message: str
    strategy: str = ""
    skipped: list[SkippedFile] = field(default_factory=list)


@dataclass
class SyncResult:
    """Outcome of replaying a template onto an existing repository."""

    files_count: int
    message: str
    sync_branch: str = ""
    pull_request_url: str | None = None
    template_sha: str = ""
    commit_sha: str = ""
    excluded: list[str] = field(default_factory=list)
    skipped: list[SkippedFile] = field(default_factory=list)


@dataclass
class UpdateCheckResult:
    """Result of checking a template for changes since the last sync.

    ``all_files_changed`` is set when no previous template sha is known,
    in which case ``changed_files`` is *None* and callers must treat the
    whole template as changed.
    """

    has_updates: bool = False
    latest_commit: CommitInfo | None = None
    changed_files: list[str] | None = None
    all_files_changed: bool = False
    last_synced_sha: str | None = None
    message: str = ""
