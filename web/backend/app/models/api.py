"""Pydantic models for API request/response serialization.

These models mirror the stencil dataclasses and provide proper JSON
serialization for the FastAPI endpoints. Request fields use the
camelCase names of the HTTP API.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Shared models
# ---------------------------------------------------------------------------


class SkippedFileResponse(_ApiModel):
    """Mirrors stencil.models.SkippedFile."""

    path: str
    reason: str


class CommitResponse(_ApiModel):
    """Mirrors stencil.models.CommitInfo."""

    sha: str
    message: str = ""
    author: str = "Unknown"
    date: str = ""


# ---------------------------------------------------------------------------
# Clone models
# ---------------------------------------------------------------------------


class CloneRequest(_ApiModel):
    """Request body for creating a project from a template."""

    template_owner: str = Field(alias="templateOwner")
    template_repo: str = Field(alias="templateRepo")
    project_name: str = Field(alias="projectName")
    description: Optional[str] = None
    is_private: bool = Field(default=False, alias="isPrivate")
    include_branches: bool = Field(default=False, alias="includeBranches")
    target_username: Optional[str] = Field(default=None, alias="targetUsername")


class CloneResponse(_ApiModel):
    """Mirrors stencil.models.CloneResult."""

    success: bool = True
    message: str
    full_name: str
    html_url: str = ""
    default_branch: str = "main"
    files_count: int = 0
    strategy: str = ""
    skipped: list[SkippedFileResponse] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Sync models
# ---------------------------------------------------------------------------


class SyncRequest(_ApiModel):
    """Request body for replaying a template onto a project."""

    template_owner: str = Field(alias="templateOwner")
    template_repo: str = Field(alias="templateRepo")
    project_owner: str = Field(alias="projectOwner")
    project_repo: str = Field(alias="projectRepo")
    target_branch: Optional[str] = Field(default=None, alias="targetBranch")
    create_pull_request: bool = Field(default=True, alias="createPullRequest")
    commit_message: Optional[str] = Field(default=None, alias="commitMessage")
    direct_to_main: bool = Field(default=False, alias="directToMain")


class SyncResponse(_ApiModel):
    """Mirrors stencil.models.SyncResult."""

    success: bool = True
    message: str
    files_count: int = 0
    sync_branch: str = ""
    pull_request_url: Optional[str] = None
    template_sha: str = ""
    commit_sha: str = ""
    excluded: list[str] = Field(default_factory=list)
    skipped: list[SkippedFileResponse] = Field(default_factory=list)


class UpdateCheckResponse(_ApiModel):
    """Mirrors stencil.models.UpdateCheckResult.

    ``changed_files`` is null when ``all_files_changed`` is true.
    """

    has_updates: bool = False
    latest_commit: Optional[CommitResponse] = None
    changed_files: Optional[list[str]] = None
    all_files_changed: bool = False
    last_synced_sha: Optional[str] = None
    message: str = ""


# ---------------------------------------------------------------------------
# Template models
# ---------------------------------------------------------------------------


class ValidateTemplateRequest(_ApiModel):
    owner: str
    repo: str
    branch: str = "main"
    path: str = ".template.json"


class ValidateTemplateResponse(_ApiModel):
    valid: bool
    name: str = ""
    description: str = ""
    features: list[str] = Field(default_factory=list)
    exclude_files: list[str] = Field(default_factory=list)
    error: str = ""
