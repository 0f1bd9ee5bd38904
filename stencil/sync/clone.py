"""First-time population of a new repository from a template.

Two strategies conform to :class:`CloneStrategy`:

- :class:`ContentStrategy` writes each file through the contents API, one
  commit per file, strictly in sequence. Partial success is possible.
- :class:`GitStrategy` builds one tree and one commit from all files and
  moves the default branch in a single step. All or nothing.

:class:`CloneOrchestrator` tries the contents strategy first and falls back
to the git strategy on any error other than an authentication failure.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from stencil.config import SyncSettings
from stencil.errors import CloneError, SyncError
from stencil.github.client import GitHubClient
from stencil.github.errors import AuthenticationError, ConflictError, GitHubAPIError
from stencil.models import CloneResult, File, Repository, SkippedFile
from stencil.sync.enumerator import ContentEnumerator
from stencil.sync.objects import CommitWriter, ObjectBuilder
from stencil.sync.protection import mirror_branch_protection

logger = logging.getLogger(__name__)


@dataclass
class CloneRequest:
    """Parameters of a clone-as-template operation."""

    source_owner: str
    source_repo: str
    target_name: str
    target_description: str | None = None
    is_private: bool = False
    include_branches: bool = False
    target_username: str | None = None

    @property
    def source_full_name(self) -> str:
        return f"{self.source_owner}/{self.source_repo}"


class CloneStrategy(Protocol):
    name: str

    async def clone(self, request: CloneRequest) -> CloneResult: ...


# ---------------------------------------------------------------------------
# Steps shared by both strategies
# ---------------------------------------------------------------------------


async def authenticate_target(client: GitHubClient, target_username: str | None) -> tuple[str, str]:
    """Validate the target credential. Returns ``(target_owner, login)``."""
    try:
        user = await client.get_authenticated_user()
    except GitHubAPIError as e:
        raise AuthenticationError(
            "GitHub authentication failed. Please ensure you have a valid GitHub token.",
            status=e.status,
        ) from e
    login = user.get("login", "")
    owner = target_username or login
    logger.info(f"Authenticated as: {login}, target owner: {owner}")
    return owner, login


async def create_target_repository(
    client: GitHubClient,
    request: CloneRequest,
    owner: str,
    login: str,
    source: Repository,
) -> Repository:
    """Create the target pre-initialized with a placeholder commit."""
    description = (
        request.target_description
        or source.description
        or f"Cloned from {request.source_full_name}"
    )
    data = await client.create_repo(
        name=request.target_name,
        description=description,
        private=request.is_private,
        auto_init=True,
        org=owner if owner != login else None,
    )
    repo = Repository.from_api(data)
    logger.info(f"Created repository: {repo.html_url or repo.full_name}")
    return repo


async def copy_branches(
    source: GitHubClient,
    target: GitHubClient,
    settings: SyncSettings,
    request: CloneRequest,
    source_default: str,
    owner: str,
    parent_sha: str,
) -> list[str]:
    """Replicate every non-default source branch as its own commit on the target.

    Each branch is committed on top of ``parent_sha``. Failures are logged
    per branch and never abort the clone.
    """
    enumerator = ContentEnumerator(source, settings)
    builder = ObjectBuilder(target, settings)
    writer = CommitWriter(target)
    created: list[str] = []

    for branch in await enumerator.list_branches(request.source_owner, request.source_repo):
        if branch == source_default:
            continue
        try:
            files = await enumerator.get_all_files(request.source_owner, request.source_repo, branch)
            if not files:
                logger.info(f"Skipping empty branch {branch}")
                continue
            tree_sha = await builder.build_tree(owner, request.target_name, files)
            commit_sha = await writer.create_commit(
                owner,
                request.target_name,
                tree_sha,
                f"Branch {branch} - Cloned from {request.source_full_name}",
                [parent_sha],
            )
            await writer.create_branch(owner, request.target_name, branch, commit_sha)
            created.append(branch)
        except (GitHubAPIError, SyncError) as e:
            logger.error(f"Error creating branch {branch}: {e}")
    return created


async def mirror_default_protection(
    source: GitHubClient,
    target: GitHubClient,
    request: CloneRequest,
    source_repo: Repository,
    owner: str,
) -> bool:
    return await mirror_branch_protection(
        source, target,
        request.source_owner, request.source_repo,
        owner, request.target_name,
        source_repo.default_branch,
    )


# ---------------------------------------------------------------------------
# Contents strategy
# ---------------------------------------------------------------------------


class SequentialWriter:
    """Writes files through the contents API strictly one at a time.

    Every write commits against the branch's current head, so two writes in
    flight race on the same state token. A single worker draining a queue
    makes the ordering explicit. A conflicting write is retried once after
    ``settings.conflict_retry_delay``; a file that still fails is skipped.
    """

    def __init__(
        self,
        client: GitHubClient,
        owner: str,
        repo: str,
        settings: SyncSettings,
        branch: str | None = None,
    ):
        self.client = client
        self.owner = owner
        self.repo = repo
        self.settings = settings
        self.branch = branch
        self.written: list[str] = []
        self.skipped: list[SkippedFile] = []

    async def write_all(self, files: list[File]) -> int:
        queue: asyncio.Queue[File | None] = asyncio.Queue()
        for f in files:
            queue.put_nowait(f)
        queue.put_nowait(None)

        await asyncio.create_task(self._drain(queue))
        return len(self.written)

    async def _drain(self, queue: asyncio.Queue) -> None:
        while True:
            file = await queue.get()
            if file is None:
                return
            await self._write(file)
            if not queue.empty():
                await asyncio.sleep(self.settings.file_write_delay)

    async def _write(self, file: File) -> None:
        try:
            await self._put(file)
        except AuthenticationError:
            raise
        except ConflictError as e:
            logger.warning(f"SHA conflict detected for {file.path}, retrying... ({e})")
            await asyncio.sleep(self.settings.conflict_retry_delay)
            try:
                await self._put(file, existing_sha=await self._current_sha(file.path))
            except AuthenticationError:
                raise
            except GitHubAPIError as retry_error:
                logger.error(f"Failed to create {file.path} after retry: {retry_error}")
                self.skipped.append(SkippedFile(path=file.path, reason=str(retry_error)))
                return
            logger.info(f"Created: {file.path} (after retry)")
        except GitHubAPIError as e:
            logger.error(f"Failed to create {file.path}: {e}")
            self.skipped.append(SkippedFile(path=file.path, reason=str(e)))
            return
        else:
            logger.debug(f"Created: {file.path}")
        self.written.append(file.path)

    async def _put(self, file: File, existing_sha: str | None = None) -> None:
        await self.client.put_content(
            self.owner,
            self.repo,
            file.path,
            file.content,
            message=f"Add {file.path}",
            sha=existing_sha,
            branch=self.branch,
            committer=self.settings.committer,
        )

    async def _current_sha(self, path: str) -> str | None:
        try:
            data = await self.client.get_content(self.owner, self.repo, path, ref=self.branch)
        except GitHubAPIError:
            return None
        return data.get("sha") if isinstance(data, dict) else None


class ContentStrategy:
    """Clone by writing each file with its own contents-API commit."""

    name = "contents"

    def __init__(
        self,
        target: GitHubClient,
        source: GitHubClient | None = None,
        settings: SyncSettings | None = None,
    ):
        self.target = target
        self.source = source or target
        self.settings = settings or SyncSettings()

    async def clone(self, request: CloneRequest) -> CloneResult:
        logger.info(
            f"Cloning {request.source_full_name} as {request.target_name} using Contents API..."
        )
        owner, login = await authenticate_target(self.target, request.target_username)
        source_repo = Repository.from_api(
            await self.source.get_repo(request.source_owner, request.source_repo)
        )
        new_repo = await create_target_repository(self.target, request, owner, login, source_repo)

        logger.info("Waiting for repository to be fully initialized...")
        await asyncio.sleep(self.settings.repo_init_delay)

        enumerator = ContentEnumerator(self.source, self.settings)
        files = await enumerator.get_all_files(
            request.source_owner, request.source_repo, source_repo.default_branch
        )

        if not files:
            logger.warning(f"Source repository {request.source_full_name} appears to be empty")
            await mirror_default_protection(self.source, self.target, request, source_repo, owner)
            return CloneResult(
                repository=new_repo,
                files_count=0,
                message=f"Successfully created repository {request.target_name} (source was empty)",
                strategy=self.name,
                skipped=enumerator.skipped,
            )

        logger.info(f"Creating {len(files)} files using Contents API...")
        await self._remove_placeholder(owner, request.target_name, files)

        writer = SequentialWriter(self.target, owner, request.target_name, self.settings)
        created = await writer.write_all(files)

        if request.include_branches:
            await self._copy_branches(request, source_repo, owner, new_repo.default_branch)

        await mirror_default_protection(self.source, self.target, request, source_repo, owner)

        return CloneResult(
            repository=new_repo,
            files_count=created,
            message=(
                f"Successfully cloned {request.source_full_name} to "
                f"{request.target_name} using Contents API"
            ),
            strategy=self.name,
            skipped=enumerator.skipped + writer.skipped,
        )

    async def _remove_placeholder(self, owner: str, repo: str, files: list[File]) -> None:
        placeholder = self.settings.placeholder_path
        if not any(f.path == placeholder for f in files):
            return
        try:
            existing = await self.target.get_content(owner, repo, placeholder)
            await self.target.delete_content(
                owner, repo, placeholder, existing["sha"], message=f"Remove auto-generated {placeholder}"
            )
            logger.info(f"Removed auto-generated {placeholder}")
        except (GitHubAPIError, KeyError, TypeError) as e:
            logger.info(f"No existing {placeholder} to remove ({e})")

    async def _copy_branches(
        self, request: CloneRequest, source_repo: Repository, owner: str, branch: str
    ) -> None:
        try:
            head_sha, _ = await CommitWriter(self.target).get_head(owner, request.target_name, branch)
        except GitHubAPIError as e:
            logger.error(f"Cannot copy branches, {branch} head unreadable: {e}")
            return
        await copy_branches(
            self.source, self.target, self.settings, request,
            source_repo.default_branch, owner, head_sha,
        )


# ---------------------------------------------------------------------------
# Git strategy
# ---------------------------------------------------------------------------


class GitStrategy:
    """Clone by building a single tree and commit through the git database API."""

    name = "git"

    def __init__(
        self,
        target: GitHubClient,
        source: GitHubClient | None = None,
        settings: SyncSettings | None = None,
    ):
        self.target = target
        self.source = source or target
        self.settings = settings or SyncSettings()

    async def clone(self, request: CloneRequest) -> CloneResult:
        logger.info(f"Cloning {request.source_full_name} as {request.target_name} using Git API...")
        owner, login = await authenticate_target(self.target, request.target_username)
        source_repo = Repository.from_api(
            await self.source.get_repo(request.source_owner, request.source_repo)
        )
        new_repo = await self._create_or_reuse(request, owner, login, source_repo)

        logger.info("Waiting for repository to be fully initialized...")
        await asyncio.sleep(self.settings.repo_init_delay)
        await self._wait_until_ready(owner, request.target_name)

        enumerator = ContentEnumerator(self.source, self.settings)
        files = await enumerator.get_all_files(
            request.source_owner, request.source_repo, source_repo.default_branch
        )

        if not files:
            logger.warning(f"Source repository {request.source_full_name} appears to be empty")
            await mirror_default_protection(self.source, self.target, request, source_repo, owner)
            return CloneResult(
                repository=new_repo,
                files_count=0,
                message=f"Successfully created repository {request.target_name} (source was empty)",
                strategy=self.name,
                skipped=enumerator.skipped,
            )

        writer = CommitWriter(self.target)
        branch = new_repo.default_branch
        parent_sha: str | None = None
        base_tree: str | None = None
        try:
            parent_sha, base_tree = await writer.get_head(owner, request.target_name, branch)
        except AuthenticationError:
            raise
        except GitHubAPIError:
            logger.info("No existing HEAD found, creating initial commit")

        logger.info(f"Copying {len(files)} files using Git API...")
        builder = ObjectBuilder(self.target, self.settings)
        tree_sha = await builder.build_tree(owner, request.target_name, files, base_tree)

        message = f"Initial commit - Cloned from {request.source_full_name}"
        if parent_sha:
            commit_sha = await writer.commit_to_branch(
                owner, request.target_name, branch, tree_sha, message, [parent_sha]
            )
        else:
            commit_sha = await writer.create_commit(owner, request.target_name, tree_sha, message)
            await writer.create_branch(owner, request.target_name, branch, commit_sha)

        if request.include_branches:
            await copy_branches(
                self.source, self.target, self.settings, request,
                source_repo.default_branch, owner, commit_sha,
            )

        await mirror_default_protection(self.source, self.target, request, source_repo, owner)

        return CloneResult(
            repository=new_repo,
            files_count=len(files) - len(builder.skipped),
            message=(
                f"Successfully cloned {request.source_full_name} to "
                f"{request.target_name} using Git API"
            ),
            strategy=self.name,
            skipped=enumerator.skipped + builder.skipped,
        )

    async def _create_or_reuse(
        self, request: CloneRequest, owner: str, login: str, source_repo: Repository
    ) -> Repository:
        """Create the target, or pick up one left behind by a failed earlier attempt."""
        try:
            return await create_target_repository(self.target, request, owner, login, source_repo)
        except GitHubAPIError as e:
            if e.status != 422:
                raise
            try:
                existing = await self.target.get_repo(owner, request.target_name)
            except GitHubAPIError:
                raise e
            logger.info(f"Reusing existing repository {owner}/{request.target_name}")
            return Repository.from_api(existing)

    async def _wait_until_ready(self, owner: str, repo: str) -> None:
        attempts = self.settings.ready_poll_attempts
        for attempt in range(1, attempts + 1):
            try:
                await self.target.get_repo(owner, repo)
            except AuthenticationError:
                raise
            except GitHubAPIError:
                logger.info(f"Repository not ready yet, attempt {attempt}/{attempts}")
                await asyncio.sleep(self.settings.ready_poll_interval)
            else:
                logger.info("Repository is ready")
                return
        raise SyncError("Repository creation timed out. Please try again.")


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class CloneOrchestrator:
    """Runs the preferred strategy and falls back to the other on failure."""

    def __init__(self, preferred: CloneStrategy, fallback: CloneStrategy):
        self.preferred = preferred
        self.fallback = fallback

    @classmethod
    def default(
        cls,
        target: GitHubClient,
        source: GitHubClient | None = None,
        settings: SyncSettings | None = None,
    ) -> "CloneOrchestrator":
        return cls(
            ContentStrategy(target, source, settings),
            GitStrategy(target, source, settings),
        )

    async def clone(self, request: CloneRequest) -> CloneResult:
        """Clone the template.

        Raises:
            AuthenticationError: The target credential is invalid.
            CloneError: Both strategies failed; the fallback's error is the cause.
        """
        try:
            return await self.preferred.clone(request)
        except AuthenticationError:
            raise
        except Exception as e:
            logger.warning(
                f"{self.preferred.name} approach failed, trying {self.fallback.name} fallback: {e}"
            )

        try:
            return await self.fallback.clone(request)
        except Exception as fallback_error:
            logger.error("Both clone approaches failed")
            raise CloneError(
                f"Failed to clone repository using both methods. Last error: {fallback_error}"
            ) from fallback_error
