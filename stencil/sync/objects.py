"""Git object writing: blobs, trees, commits and branch refs on a target repo."""

from __future__ import annotations

import asyncio
import logging

from stencil.config import SyncSettings
from stencil.errors import RefUpdateError, SyncError
from stencil.github.client import GitHubClient
from stencil.github.errors import (
    AuthenticationError,
    ConflictError,
    GitHubAPIError,
    NotFoundError,
)
from stencil.models import File, SkippedFile, TreeEntry

logger = logging.getLogger(__name__)


def _is_stale_base(error: GitHubAPIError) -> bool:
    """True when a tree write failed because its base tree cannot be resolved."""
    if isinstance(error, (NotFoundError, ConflictError)):
        return True
    return error.status == 422 and "base_tree" in error.message


class ObjectBuilder:
    """Creates blobs and a tree for a file set on a target repository.

    Blob writes run in concurrent batches with a pause between batches. A
    blob that still fails after ``settings.blob_retries`` attempts is left
    out of the tree and recorded in :attr:`skipped`.
    """

    def __init__(self, client: GitHubClient, settings: SyncSettings | None = None):
        self.client = client
        self.settings = settings or SyncSettings()
        self.skipped: list[SkippedFile] = []

    async def build_tree(
        self,
        owner: str,
        repo: str,
        files: list[File],
        base_tree: str | None = None,
    ) -> str:
        """Write every file as a blob and return the sha of the new tree.

        When ``base_tree`` is given, entries not in ``files`` are inherited
        from it. If the base tree turns out to be stale, the tree is built
        once more without it.

        Raises:
            SyncError: If no blob could be created at all.
        """
        # Freshly created repositories are eventually consistent.
        await asyncio.sleep(self.settings.blob_warmup_delay)

        entries = await self.create_blobs(owner, repo, files)
        if files and not entries:
            raise SyncError(f"Failed to create any blobs in {owner}/{repo}")

        tree = [entry.to_api() for entry in entries]
        try:
            data = await self.client.create_tree(owner, repo, tree, base_tree=base_tree)
        except GitHubAPIError as e:
            if not base_tree or not _is_stale_base(e):
                raise
            logger.warning(
                f"Failed to create tree on base tree {base_tree[:12]} ({e}), "
                "retrying without base tree"
            )
            data = await self.client.create_tree(owner, repo, tree)

        logger.info(f"Created tree {data['sha'][:12]} with {len(tree)} entries in {owner}/{repo}")
        return data["sha"]

    async def create_blobs(self, owner: str, repo: str, files: list[File]) -> list[TreeEntry]:
        entries: list[TreeEntry] = []
        size = max(self.settings.batch_size, 1)
        for start in range(0, len(files), size):
            batch = files[start:start + size]
            results = await asyncio.gather(
                *(self._create_blob_with_retry(owner, repo, f) for f in batch)
            )
            entries.extend(e for e in results if e is not None)

            if start + size < len(files):
                await asyncio.sleep(self.settings.write_batch_delay)
        return entries

    async def _create_blob_with_retry(
        self, owner: str, repo: str, file: File
    ) -> TreeEntry | None:
        retries = max(self.settings.blob_retries, 1)
        for attempt in range(1, retries + 1):
            try:
                blob = await self.client.create_blob(owner, repo, file.content)
                return TreeEntry(path=file.path, sha=blob["sha"])
            except AuthenticationError:
                raise
            except GitHubAPIError as e:
                if attempt == retries:
                    logger.error(f"Failed to create blob for {file.path}: {e}")
                    self.skipped.append(SkippedFile(path=file.path, reason=str(e)))
                    return None
                logger.info(f"Retry {attempt} for creating blob {file.path} ({e.status or 'unknown error'})")
                await asyncio.sleep(self.settings.blob_retry_delay * attempt)
        return None


class CommitWriter:
    """Creates commits and moves branch refs on a target repository."""

    def __init__(self, client: GitHubClient):
        self.client = client

    async def get_head(self, owner: str, repo: str, branch: str) -> tuple[str, str]:
        """Return ``(commit_sha, tree_sha)`` for the tip of ``branch``."""
        ref = await self.client.get_ref(owner, repo, f"heads/{branch}")
        commit_sha = ref["object"]["sha"]
        commit = await self.client.get_commit(owner, repo, commit_sha)
        return commit_sha, commit["tree"]["sha"]

    async def branch_exists(self, owner: str, repo: str, branch: str) -> bool:
        try:
            await self.client.get_ref(owner, repo, f"heads/{branch}")
        except GitHubAPIError as e:
            if e.status == 404:
                return False
            raise
        return True

    async def create_branch(self, owner: str, repo: str, branch: str, sha: str) -> None:
        await self.client.create_ref(owner, repo, f"refs/heads/{branch}", sha)
        logger.info(f"Created branch {branch} at {sha[:12]} in {owner}/{repo}")

    async def create_commit(
        self,
        owner: str,
        repo: str,
        tree_sha: str,
        message: str,
        parents: list[str] | None = None,
        author: dict | None = None,
    ) -> str:
        data = await self.client.create_commit(
            owner, repo, message=message, tree=tree_sha, parents=parents or [], author=author
        )
        return data["sha"]

    async def update_branch(
        self, owner: str, repo: str, branch: str, sha: str, force: bool = True
    ) -> None:
        """Point ``branch`` at ``sha``.

        Raises:
            RefUpdateError: The ref could not be moved; ``sha`` is orphaned.
        """
        try:
            await self.client.update_ref(owner, repo, f"heads/{branch}", sha, force=force)
        except GitHubAPIError as e:
            raise RefUpdateError(branch, sha, e) from e
        logger.info(f"Updated {owner}/{repo} {branch} -> {sha[:12]}")

    async def commit_to_branch(
        self,
        owner: str,
        repo: str,
        branch: str,
        tree_sha: str,
        message: str,
        parents: list[str] | None = None,
        force: bool = True,
    ) -> str:
        """Create a commit and move ``branch`` to it. Returns the commit sha."""
        sha = await self.create_commit(owner, repo, tree_sha, message, parents)
        await self.update_branch(owner, repo, branch, sha, force=force)
        return sha
