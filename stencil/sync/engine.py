"""Sync engine: replay a template's current content onto an existing project.

The whole current template file set (minus denylisted paths) is written as
one tree on top of the project's current tree, so files the template does
not carry are left untouched. The commit lands either directly on the
default branch or on a review branch with a pull request.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from stencil.config import SyncSettings
from stencil.errors import SyncError
from stencil.github.client import GitHubClient
from stencil.github.errors import AuthenticationError, GitHubAPIError, NotFoundError
from stencil.manifest import fetch_manifest
from stencil.models import TEMPLATE_SHA_TRAILER, CommitInfo, Repository, SyncResult
from stencil.sync.drift import DriftDetector
from stencil.sync.enumerator import ContentEnumerator
from stencil.sync.filters import filter_sync_files
from stencil.sync.objects import CommitWriter, ObjectBuilder

logger = logging.getLogger(__name__)

SYNC_BRANCH_PREFIX = "sync-template"
PR_TITLE_MARKER = "[sync-template]"


@dataclass
class SyncRequest:
    """Parameters of a sync-with-template operation."""

    source_owner: str
    source_repo: str
    target_owner: str
    target_repo: str
    target_branch: str | None = None
    create_pull_request: bool = True
    commit_message: str | None = None
    direct_to_main: bool = False

    @property
    def source_full_name(self) -> str:
        return f"{self.source_owner}/{self.source_repo}"


def generate_sync_branch_name(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{SYNC_BRANCH_PREFIX}-{now.strftime('%Y-%m-%dT%H-%M-%S')}"


def build_commit_message(request: SyncRequest, template_sha: str) -> str:
    """Commit message carrying the ``template-sha`` trailer."""
    trailer = f"{TEMPLATE_SHA_TRAILER}: {template_sha}"
    if request.commit_message:
        if trailer in request.commit_message:
            return request.commit_message
        return f"{request.commit_message.rstrip()}\n\n{trailer}"
    return f"Sync with template {request.source_full_name}\n\n{trailer}"


def build_pull_request_body(request: SyncRequest, commit: CommitInfo, files_count: int) -> str:
    return f"""This pull request syncs your project with the latest changes from the template repository.

## Template Information
- **Template**: {request.source_full_name}
- **Template Commit**: {commit.sha}
- **Files Updated**: {files_count}

## Latest Template Commit
- **Message**: {commit.message}
- **Author**: {commit.author or 'Unknown'}
- **Date**: {commit.date or 'Unknown'}

## Review Guidelines
Please review the changes carefully before merging:
1. Check for any conflicts with your local modifications
2. Ensure the updates don't break your existing functionality
3. Test the changes in a development environment if possible

<!-- {TEMPLATE_SHA_TRAILER}: {commit.sha} -->"""


class SyncEngine:
    """Replays template content onto a project repository."""

    def __init__(
        self,
        target: GitHubClient,
        source: GitHubClient | None = None,
        settings: SyncSettings | None = None,
    ):
        self.target = target
        self.source = source or target
        self.settings = settings or SyncSettings()

    async def sync(self, request: SyncRequest) -> SyncResult:
        """Write the template's current files onto the project.

        Raises:
            AuthenticationError: A credential was rejected.
            RefUpdateError: The commit was created but the branch could not move.
            SyncError: Any other failure.
        """
        logger.info(
            f"Syncing {request.target_owner}/{request.target_repo} "
            f"with template {request.source_full_name}..."
        )
        try:
            return await self._sync(request)
        except (AuthenticationError, SyncError):
            raise
        except GitHubAPIError as e:
            logger.error(f"Error syncing with template: {e}")
            raise SyncError(f"Failed to sync with template: {e}") from e

    async def _sync(self, request: SyncRequest) -> SyncResult:
        target_repo = Repository.from_api(
            await self.target.get_repo(request.target_owner, request.target_repo)
        )
        default_branch = target_repo.default_branch
        source_repo = Repository.from_api(
            await self.source.get_repo(request.source_owner, request.source_repo)
        )

        detector = DriftDetector(self.target, self.source, self.settings)
        latest = await detector.latest_template_commit(
            request.source_owner, request.source_repo, source_repo.default_branch
        )
        if latest is None:
            raise SyncError("No commits found in template repository")

        if request.direct_to_main:
            branch = default_branch
        else:
            branch = request.target_branch or generate_sync_branch_name()

        enumerator = ContentEnumerator(self.source, self.settings)
        files = await enumerator.get_all_files(
            request.source_owner, request.source_repo, source_repo.default_branch
        )
        if not files:
            return SyncResult(
                files_count=0,
                message="Template repository is empty, nothing to sync",
                template_sha=latest.sha,
                skipped=enumerator.skipped,
            )
        logger.info(f"Found {len(files)} files in template repository")

        writer = CommitWriter(self.target)
        owner, repo = request.target_owner, request.target_repo
        default_head, _ = await writer.get_head(owner, repo, default_branch)

        if branch != default_branch:
            if not await writer.branch_exists(owner, repo, branch):
                await writer.create_branch(owner, repo, branch, default_head)
                await asyncio.sleep(self.settings.branch_create_delay)
        else:
            logger.info(f"Syncing directly to {default_branch} branch")

        # Re-read right before building; the branch may have moved.
        try:
            head_sha, head_tree = await writer.get_head(owner, repo, branch)
        except GitHubAPIError as e:
            raise SyncError(f"Failed to get current state of branch {branch}: {e}") from e

        excludes = list(self.settings.extra_excludes)
        excludes.extend(await self._manifest_excludes(request, source_repo.default_branch))
        files_to_sync, excluded = filter_sync_files(files, excludes)
        logger.info(f"Syncing {len(files_to_sync)} files (excluded {len(excluded)} files)")

        if not files_to_sync:
            return SyncResult(
                files_count=0,
                message="No template files left to sync after exclusions",
                sync_branch=branch,
                template_sha=latest.sha,
                excluded=excluded,
                skipped=enumerator.skipped,
            )

        builder = ObjectBuilder(self.target, self.settings)
        tree_sha = await builder.build_tree(owner, repo, files_to_sync, base_tree=head_tree)
        commit_sha = await writer.commit_to_branch(
            owner,
            repo,
            branch,
            tree_sha,
            build_commit_message(request, latest.sha),
            [head_sha],
            force=False,
        )
        logger.info(f"Successfully updated branch {branch} with template changes")

        files_count = len(files_to_sync) - len(builder.skipped)
        pull_request_url = None
        if request.create_pull_request and branch != default_branch:
            pull_request_url = await self._open_pull_request(
                request, latest, branch, default_branch, files_count
            )

        return SyncResult(
            files_count=files_count,
            message=f"Successfully synced with template {request.source_full_name}",
            sync_branch=branch,
            pull_request_url=pull_request_url,
            template_sha=latest.sha,
            commit_sha=commit_sha,
            excluded=excluded,
            skipped=enumerator.skipped + builder.skipped,
        )

    async def _manifest_excludes(self, request: SyncRequest, branch: str) -> list[str]:
        try:
            manifest = await fetch_manifest(
                self.source, request.source_owner, request.source_repo, branch
            )
        except NotFoundError:
            return []
        except (GitHubAPIError, ValueError) as e:
            logger.warning(f"Ignoring unreadable template manifest: {e}")
            return []
        return manifest.exclude_files

    async def _open_pull_request(
        self,
        request: SyncRequest,
        latest: CommitInfo,
        head: str,
        base: str,
        files_count: int,
    ) -> str | None:
        try:
            pr = await self.target.create_pull_request(
                request.target_owner,
                request.target_repo,
                title=f"{PR_TITLE_MARKER} Update from {request.source_full_name}",
                head=head,
                base=base,
                body=build_pull_request_body(request, latest, files_count),
            )
        except GitHubAPIError as e:
            logger.error(f"Error creating pull request: {e}")
            return None
        logger.info(f"Created pull request: {pr.get('html_url')}")
        return pr.get("html_url")
