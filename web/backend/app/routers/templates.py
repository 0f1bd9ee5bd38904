"""Templates router -- template manifest validation."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from stencil.github.errors import AuthenticationError, GitHubAPIError
from stencil.manifest import fetch_manifest
from stencil.service import TemplateSync

from web.backend.app.errors import http_exception_for
from web.backend.app.middleware.auth import get_template_sync
from web.backend.app.models.api import ValidateTemplateRequest, ValidateTemplateResponse

router = APIRouter(tags=["templates"])


@router.post(
    "/api/templates/validate",
    response_model=ValidateTemplateResponse,
    summary="Validate a template repository's manifest",
)
async def validate_template(
    request: ValidateTemplateRequest,
    service: TemplateSync = Depends(get_template_sync),
):
    """Read ``.template.json`` from the template and report whether it is usable.

    A missing or malformed manifest is a ``valid: false`` answer, not an
    HTTP error. Rejected credentials still produce 401.
    """
    try:
        manifest = await fetch_manifest(
            service.source, request.owner, request.repo, request.branch, request.path
        )
    except AuthenticationError as exc:
        raise http_exception_for(exc)
    except (GitHubAPIError, ValueError) as exc:
        return ValidateTemplateResponse(valid=False, error=str(exc))

    return ValidateTemplateResponse(
        valid=True,
        name=manifest.name,
        description=manifest.description,
        features=manifest.features,
        exclude_files=manifest.exclude_files,
    )
