"""FastAPI application for the Stencil web service.

Provides REST API endpoints wrapping the stencil package for:
- Creating project repositories from templates
- Checking projects for unsynced template changes
- Syncing projects with their template
- Validating template manifests
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stencil import __version__
from web.backend.app.routers import projects, templates

app = FastAPI(
    title="Stencil API",
    description=(
        "REST API for Stencil. "
        "Provides endpoints for creating repositories from templates, "
        "drift checks and template sync."
    ),
    version=__version__,
)

# ---------------------------------------------------------------------------
# CORS middleware (allow all origins for development)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(projects.router)
app.include_router(templates.router)


# ---------------------------------------------------------------------------
# Root and health-check endpoints
# ---------------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root():
    """Return basic API information."""
    return {
        "name": "Stencil API",
        "version": __version__,
        "description": "Template provisioning and sync REST API",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


@app.get("/health", tags=["meta"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
