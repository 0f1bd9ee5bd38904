"""Projects router -- create projects from templates and keep them in sync."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from stencil.errors import SyncError
from stencil.github.errors import GitHubAPIError
from stencil.service import TemplateSync

from web.backend.app.errors import http_exception_for
from web.backend.app.middleware.auth import get_template_sync
from web.backend.app.models.api import (
    CloneRequest,
    CloneResponse,
    CommitResponse,
    SkippedFileResponse,
    SyncRequest,
    SyncResponse,
    UpdateCheckResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["projects"])


def _skipped_to_response(skipped) -> list[SkippedFileResponse]:
    return [SkippedFileResponse(path=s.path, reason=s.reason) for s in skipped]


def _clone_result_to_response(result) -> CloneResponse:
    """Convert a CloneResult dataclass to a Pydantic response."""
    repo = result.repository
    return CloneResponse(
        message=result.message,
        full_name=repo.full_name,
        html_url=repo.html_url,
        default_branch=repo.default_branch,
        files_count=result.files_count,
        strategy=result.strategy,
        skipped=_skipped_to_response(result.skipped),
    )


def _sync_result_to_response(result) -> SyncResponse:
    """Convert a SyncResult dataclass to a Pydantic response."""
    return SyncResponse(
        message=result.message,
        files_count=result.files_count,
        sync_branch=result.sync_branch,
        pull_request_url=result.pull_request_url,
        template_sha=result.template_sha,
        commit_sha=result.commit_sha,
        excluded=result.excluded,
        skipped=_skipped_to_response(result.skipped),
    )


def _update_check_to_response(result) -> UpdateCheckResponse:
    commit = result.latest_commit
    return UpdateCheckResponse(
        has_updates=result.has_updates,
        latest_commit=CommitResponse(
            sha=commit.sha, message=commit.message, author=commit.author, date=commit.date
        )
        if commit
        else None,
        changed_files=result.changed_files,
        all_files_changed=result.all_files_changed,
        last_synced_sha=result.last_synced_sha,
        message=result.message,
    )


@router.post(
    "/api/projects/clone",
    response_model=CloneResponse,
    status_code=201,
    summary="Create a new project repository from a template",
)
async def clone_project(
    request: CloneRequest,
    service: TemplateSync = Depends(get_template_sync),
):
    """Create ``projectName`` populated with the template's files.

    The contents API strategy is tried first; the git database strategy is
    the fallback. Files that could not be copied are listed in ``skipped``.
    """
    try:
        result = await service.clone_as_template(
            request.template_owner,
            request.template_repo,
            request.project_name,
            target_description=request.description,
            is_private=request.is_private,
            include_branches=request.include_branches,
            target_username=request.target_username,
        )
    except (GitHubAPIError, SyncError) as exc:
        logger.error(f"Clone of {request.template_owner}/{request.template_repo} failed: {exc}")
        raise http_exception_for(exc)

    return _clone_result_to_response(result)


@router.get(
    "/api/projects/sync-template",
    response_model=UpdateCheckResponse,
    summary="Check a project for unsynced template changes",
)
async def check_template_updates(
    template_owner: str = Query(..., alias="templateOwner"),
    template_repo: str = Query(..., alias="templateRepo"),
    project_owner: str = Query(..., alias="projectOwner"),
    project_repo: str = Query(..., alias="projectRepo"),
    template_branch: Optional[str] = Query(None, alias="templateBranch"),
    created_at: Optional[str] = Query(None, alias="createdAt"),
    service: TemplateSync = Depends(get_template_sync),
):
    try:
        result = await service.check_for_updates(
            template_owner,
            template_repo,
            project_owner,
            project_repo,
            template_branch=template_branch,
            target_created_at=created_at,
        )
    except GitHubAPIError as exc:
        raise http_exception_for(exc)

    return _update_check_to_response(result)


@router.post(
    "/api/projects/sync-template",
    response_model=SyncResponse,
    summary="Replay the current template content onto a project",
)
async def sync_template(
    request: SyncRequest,
    service: TemplateSync = Depends(get_template_sync),
):
    """Write the template's files onto the project.

    By default the commit lands on a fresh ``sync-template-*`` branch and a
    pull request is opened; ``directToMain`` commits to the default branch.
    """
    try:
        result = await service.sync_with_template(
            request.template_owner,
            request.template_repo,
            request.project_owner,
            request.project_repo,
            target_branch=request.target_branch,
            create_pull_request=request.create_pull_request,
            commit_message=request.commit_message,
            direct_to_main=request.direct_to_main,
        )
    except (GitHubAPIError, SyncError) as exc:
        logger.error(f"Sync of {request.project_owner}/{request.project_repo} failed: {exc}")
        raise http_exception_for(exc)

    return _sync_result_to_response(result)
