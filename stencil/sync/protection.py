"""Best-effort copy of branch protection rules from a template to a project."""

from __future__ import annotations

import logging

from stencil.github.client import GitHubClient
from stencil.github.errors import GitHubAPIError

logger = logging.getLogger(__name__)


def simplify_protection(protection: dict) -> dict:
    """Reduce a protection read-out to a payload the update endpoint accepts.

    Only pull-request review settings are carried over; status checks,
    admin enforcement and push restrictions are reset.
    """
    reviews = protection.get("required_pull_request_reviews")
    simplified_reviews = None
    if reviews:
        simplified_reviews = {
            "dismiss_stale_reviews": bool(reviews.get("dismiss_stale_reviews", False)),
            "require_code_owner_reviews": bool(reviews.get("require_code_owner_reviews", False)),
            "required_approving_review_count": reviews.get("required_approving_review_count") or 1,
        }
    return {
        "required_status_checks": None,
        "enforce_admins": False,
        "required_pull_request_reviews": simplified_reviews,
        "restrictions": None,
        "allow_force_pushes": False,
        "allow_deletions": False,
    }


async def mirror_branch_protection(
    source: GitHubClient,
    target: GitHubClient,
    source_owner: str,
    source_repo: str,
    target_owner: str,
    target_repo: str,
    branch: str,
) -> bool:
    """Copy ``branch`` protection from source to target. Never raises."""
    try:
        protection = await source.get_branch_protection(source_owner, source_repo, branch)
        await target.update_branch_protection(
            target_owner, target_repo, branch, simplify_protection(protection)
        )
    except GitHubAPIError as e:
        logger.info(f"Could not copy branch protection rules for {branch}: {e}")
        return False
    logger.info(f"Applied branch protection to {target_owner}/{target_repo} {branch}")
    return True
