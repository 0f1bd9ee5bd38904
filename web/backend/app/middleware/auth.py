"""Auth middleware -- FastAPI dependencies for GitHub credentials.

Supports two credentials per request:
1. ``Authorization: Bearer <token>`` header -- target (project) token,
   falling back to ``GITHUB_TOKEN``
2. ``X-Template-Token: <token>`` header -- read-only template token,
   falling back to ``STENCIL_SOURCE_TOKEN``
"""

from __future__ import annotations

from typing import AsyncIterator, Optional

import httpx
from fastapi import Depends, Header, HTTPException, status

from stencil.config import SyncSettings, get_source_token, get_target_token, load_settings
from stencil.service import TemplateSync

# Shared settings instance
_settings: Optional[SyncSettings] = None


def get_settings() -> SyncSettings:
    """Return the singleton SyncSettings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


async def get_github_token(authorization: Optional[str] = Header(None)) -> str:
    """FastAPI dependency that extracts the target GitHub token.

    Raises ``401 Unauthorized`` if neither the header nor the environment
    provides one.
    """
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() in ("bearer", "token") and token:
            return token

    token = get_target_token()
    if token:
        return token

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="GitHub authentication required",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_template_token(
    x_template_token: Optional[str] = Header(None, alias="X-Template-Token"),
) -> Optional[str]:
    return x_template_token or get_source_token() or None


def get_transport() -> Optional[httpx.AsyncBaseTransport]:
    """HTTP transport for GitHub clients; ``None`` means the network."""
    return None


async def get_template_sync(
    token: str = Depends(get_github_token),
    template_token: Optional[str] = Depends(get_template_token),
    settings: SyncSettings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_transport),
) -> AsyncIterator[TemplateSync]:
    """Yield a TemplateSync bound to the request's credentials."""
    service = TemplateSync(
        token=token, source_token=template_token, settings=settings, transport=transport
    )
    try:
        yield service
    finally:
        await service.aclose()
