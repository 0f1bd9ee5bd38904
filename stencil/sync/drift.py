"""Drift detection: has the template moved on since it was last applied?

The last applied template state is recovered from the project's own commit
history. The newest commit that is a sync commit or an initial import is the
anchor; its ``template-sha`` trailer is the baseline for the changed-file
list, and its date is the baseline for drift.
"""

from __future__ import annotations

import logging
from datetime import datetime

from stencil.config import SyncSettings
from stencil.github.client import GitHubClient
from stencil.github.errors import EmptyRepositoryError, GitHubAPIError
from stencil.models import CommitInfo, UpdateCheckResult, is_anchor_message, parse_timestamp

logger = logging.getLogger(__name__)


def find_sync_anchor(history: list[CommitInfo]) -> tuple[CommitInfo | None, str | None]:
    """Find the newest anchor commit and the template sha last applied.

    ``history`` is newest first. The sha comes from the anchor itself, or
    from the nearest older anchor when the newest one (a merge commit, say)
    carries no trailer.
    """
    anchor: CommitInfo | None = None
    for commit in history:
        if not is_anchor_message(commit.message):
            continue
        if anchor is None:
            anchor = commit
        if commit.template_sha:
            return anchor, commit.template_sha
    return anchor, None


def is_newer(template_date: datetime | None, baseline: datetime | None) -> bool:
    """Strictly-newer comparison; a missing baseline means everything is new."""
    if template_date is None:
        return False
    if baseline is None:
        return True
    return template_date > baseline


class DriftDetector:
    """Compares a template's latest commit against a project's sync anchor."""

    def __init__(
        self,
        target: GitHubClient,
        source: GitHubClient | None = None,
        settings: SyncSettings | None = None,
    ):
        self.target = target
        self.source = source or target
        self.settings = settings or SyncSettings()

    async def latest_template_commit(
        self, owner: str, repo: str, branch: str | None = None
    ) -> CommitInfo | None:
        if not branch:
            branch = (await self.source.get_repo(owner, repo)).get("default_branch") or "main"
        try:
            commits = await self.source.list_commits(owner, repo, sha=branch, per_page=1)
        except EmptyRepositoryError:
            return None
        return CommitInfo.from_api(commits[0]) if commits else None

    async def check(
        self,
        source_owner: str,
        source_repo: str,
        target_owner: str,
        target_repo: str,
        template_branch: str | None = None,
        target_created_at: str | None = None,
    ) -> UpdateCheckResult:
        """Check whether the template has commits newer than the last sync.

        Args:
            template_branch: Branch tracked on the template; defaults to
                its default branch.
            target_created_at: Creation time of the project, used as the
                baseline when no anchor exists. Read from the project
                repository when omitted.
        """
        latest = await self.latest_template_commit(source_owner, source_repo, template_branch)
        if latest is None:
            return UpdateCheckResult(
                has_updates=False, message="No commits found in template repository"
            )

        history = [
            CommitInfo.from_api(c)
            for c in await self.target.list_commits(
                target_owner, target_repo, per_page=self.settings.history_page_size
            )
        ]
        anchor, last_synced_sha = find_sync_anchor(history)

        if anchor is not None:
            baseline = anchor.timestamp
        else:
            if target_created_at is None:
                target_data = await self.target.get_repo(target_owner, target_repo)
                target_created_at = target_data.get("created_at", "")
            baseline = parse_timestamp(target_created_at)

        result = UpdateCheckResult(
            has_updates=is_newer(latest.timestamp, baseline),
            latest_commit=latest,
            last_synced_sha=last_synced_sha,
        )

        if not result.has_updates:
            result.message = "Project is up to date with its template"
            return result

        if last_synced_sha:
            try:
                comparison = await self.source.compare_commits(
                    source_owner, source_repo, last_synced_sha, latest.sha
                )
                result.changed_files = [f["filename"] for f in comparison.get("files") or []]
            except GitHubAPIError as e:
                # Base commit may have been force-pushed away on the template.
                logger.error(f"Error comparing commits {last_synced_sha[:12]}..{latest.sha[:12]}: {e}")
        else:
            result.all_files_changed = True

        result.message = f"Template {source_owner}/{source_repo} has updates ({latest.sha[:12]})"
        return result
