"""GitHub REST API access for the clone and sync engine."""

from stencil.github.client import GITHUB_API_BASE, GitHubClient
from stencil.github.errors import (
    AuthenticationError,
    ConflictError,
    EmptyRepositoryError,
    GitHubAPIError,
    NotFoundError,
    RateLimitError,
)

__all__ = [
    "GITHUB_API_BASE",
    "GitHubClient",
    "GitHubAPIError",
    "AuthenticationError",
    "ConflictError",
    "EmptyRepositoryError",
    "NotFoundError",
    "RateLimitError",
]
