"""Content enumeration: read the full file set of a repository at a ref."""

from __future__ import annotations

import asyncio
import logging

from stencil.config import SyncSettings
from stencil.github.client import GitHubClient, decode_content
from stencil.github.errors import (
    AuthenticationError,
    EmptyRepositoryError,
    GitHubAPIError,
    RateLimitError,
)
from stencil.models import File, SkippedFile

logger = logging.getLogger(__name__)


class ContentEnumerator:
    """Lists and fetches every file of a repository through the git API.

    Blob reads are issued in concurrent batches of ``settings.batch_size``
    with a pause between batches. Files that cannot be fetched or are not
    valid UTF-8 are dropped and recorded in :attr:`skipped`.
    """

    def __init__(self, client: GitHubClient, settings: SyncSettings | None = None):
        self.client = client
        self.settings = settings or SyncSettings()
        self.skipped: list[SkippedFile] = []

    async def resolve_ref(self, owner: str, repo: str, ref: str) -> str | None:
        """Resolve a branch name or raw commit sha to a commit sha."""
        try:
            data = await self.client.get_ref(owner, repo, f"heads/{ref}")
            return data["object"]["sha"]
        except (AuthenticationError, RateLimitError, EmptyRepositoryError):
            raise
        except GitHubAPIError:
            pass

        try:
            commit = await self.client.get_commit(owner, repo, ref)
            return commit["sha"]
        except (AuthenticationError, RateLimitError, EmptyRepositoryError):
            raise
        except GitHubAPIError:
            logger.error(f"Reference {ref} not found in {owner}/{repo}")
            return None

    async def get_all_files(self, owner: str, repo: str, ref: str) -> list[File]:
        """Return every blob reachable from ``ref``, in tree order.

        An unresolvable ref or an empty repository yields ``[]``.
        """
        try:
            commit_sha = await self.resolve_ref(owner, repo, ref)
            if commit_sha is None:
                return []
            tree = await self.client.get_tree(owner, repo, commit_sha, recursive=True)
        except EmptyRepositoryError:
            logger.info(f"Repository {owner}/{repo} is empty, returning empty file list")
            return []

        if tree.get("truncated"):
            logger.warning(f"Tree listing for {owner}/{repo}@{ref} was truncated by GitHub")

        blobs = [
            item for item in tree.get("tree", [])
            if item.get("type") == "blob" and item.get("sha") and item.get("path")
        ]

        files: list[File] = []
        size = max(self.settings.batch_size, 1)
        for start in range(0, len(blobs), size):
            batch = blobs[start:start + size]
            results = await asyncio.gather(
                *(self._fetch_file(owner, repo, item) for item in batch)
            )
            files.extend(f for f in results if f is not None)

            if start + size < len(blobs):
                await asyncio.sleep(self.settings.batch_delay)

        logger.info(f"Enumerated {len(files)} of {len(blobs)} files from {owner}/{repo}@{ref}")
        return files

    async def _fetch_file(self, owner: str, repo: str, item: dict) -> File | None:
        path = item["path"]
        try:
            blob = await self.client.get_blob(owner, repo, item["sha"])
            content = decode_content(blob.get("content", ""), blob.get("encoding", "base64"))
            content.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning(f"Skipping binary file: {path}")
            self.skipped.append(SkippedFile(path=path, reason="not valid UTF-8"))
            return None
        except (AuthenticationError, RateLimitError):
            raise
        except (GitHubAPIError, ValueError) as e:
            logger.error(f"Error fetching {path}: {e}")
            self.skipped.append(SkippedFile(path=path, reason=str(e)))
            return None
        return File(path=path, content=content)

    async def list_branches(self, owner: str, repo: str) -> list[str]:
        """Branch names of a repository; ``[]`` if they cannot be listed."""
        try:
            branches = await self.client.list_branches(owner, repo)
        except GitHubAPIError as e:
            logger.error(f"Error getting branches for {owner}/{repo}: {e}")
            return []
        return [b["name"] for b in branches if b.get("name")]


async def get_all_files(
    client: GitHubClient,
    owner: str,
    repo: str,
    ref: str,
    settings: SyncSettings | None = None,
) -> list[File]:
    """Convenience wrapper around :meth:`ContentEnumerator.get_all_files`."""
    return await ContentEnumerator(client, settings).get_all_files(owner, repo, ref)

