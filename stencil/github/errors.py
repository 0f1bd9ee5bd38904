"""Exceptions raised by the GitHub API client.

Every HTTP failure coming back from GitHub is mapped onto one of these
classes so the sync engine can decide whether to retry, degrade, skip a
file, or abort.
"""

from __future__ import annotations


class GitHubAPIError(Exception):
    """A GitHub REST API call failed.

    ``status`` is the HTTP status code (0 for transport-level failures).
    ``owner``/``repo``/``path`` give the caller enough context to act.
    """

    def __init__(
        self,
        message: str,
        status: int = 0,
        owner: str = "",
        repo: str = "",
        path: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.owner = owner
        self.repo = repo
        self.path = path

    @property
    def location(self) -> str:
        loc = f"{self.owner}/{self.repo}" if self.owner or self.repo else ""
        if self.path:
            loc = f"{loc}:{self.path}" if loc else self.path
        return loc

    def __str__(self) -> str:
        prefix = f"[{self.status}] " if self.status else ""
        suffix = f" ({self.location})" if self.location else ""
        return f"{prefix}{self.message}{suffix}"


class AuthenticationError(GitHubAPIError):
    """Missing or invalid credential. Always fatal."""


class NotFoundError(GitHubAPIError):
    """Repository, ref, path or manifest does not exist."""


class ConflictError(GitHubAPIError):
    """A write raced against a newer state token (stale sha)."""


class EmptyRepositoryError(ConflictError):
    """The repository has no commits yet."""


class RateLimitError(GitHubAPIError):
    """The API rate limit for the credential is exhausted."""
