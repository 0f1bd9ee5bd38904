"""Engine-level errors for clone and sync operations."""

from __future__ import annotations

from stencil.github.errors import GitHubAPIError


class SyncError(Exception):
    """A clone or sync step failed in a way the caller must see."""


class CloneError(SyncError):
    """Both clone strategies failed.

    ``__cause__`` is the fallback strategy's error.
    """


class RefUpdateError(SyncError):
    """A commit was created but the branch ref could not be moved to it.

    The commit object is left orphaned on the target; it is harmless but
    the operation as a whole did not happen.
    """

    def __init__(self, branch: str, commit_sha: str, cause: GitHubAPIError) -> None:
        super().__init__(
            f"Created commit {commit_sha[:12]} but failed to update branch "
            f"{branch}: {cause}"
        )
        self.branch = branch
        self.commit_sha = commit_sha
