"""Translate stencil exceptions into HTTP errors."""

from __future__ import annotations

from fastapi import HTTPException, status

from stencil.errors import RefUpdateError, SyncError
from stencil.github.errors import (
    AuthenticationError,
    ConflictError,
    GitHubAPIError,
    NotFoundError,
    RateLimitError,
)


def http_exception_for(exc: Exception) -> HTTPException:
    if isinstance(exc, SyncError) and isinstance(exc.__cause__, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, AuthenticationError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, RateLimitError):
        return HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(exc))
    if isinstance(exc, (ConflictError, RefUpdateError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, GitHubAPIError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
