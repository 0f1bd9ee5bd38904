"""High-level entry point: clone, sync and update checks against GitHub."""

from __future__ import annotations

import httpx

from stencil.config import SyncSettings
from stencil.github.client import GitHubClient
from stencil.models import CloneResult, SyncResult, UpdateCheckResult
from stencil.sync.clone import CloneOrchestrator, CloneRequest
from stencil.sync.drift import DriftDetector
from stencil.sync.engine import SyncEngine, SyncRequest


class TemplateSync:
    """Clones templates into new repositories and keeps them in sync.

    Parameters
    ----------
    token : str | None
        Credential for the target (project) repositories, read/write.
    source_token : str | None
        Credential for reading template repositories. Defaults to ``token``.
    settings : SyncSettings | None
        Retry, batching and delay configuration.
    transport : httpx.AsyncBaseTransport | None
        Custom HTTP transport shared by every client, mainly for tests.

    Use as an async context manager so HTTP connections are closed::

        async with TemplateSync(token) as ts:
            await ts.clone_as_template("acme", "service-template", "billing")
    """

    def __init__(
        self,
        token: str | None = None,
        source_token: str | None = None,
        settings: SyncSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or SyncSettings()
        self._transport = transport
        self.target = self._client(token)
        self.source = self._client(source_token) if source_token else self.target
        self._extra_clients: list[GitHubClient] = []

    def _client(self, token: str | None) -> GitHubClient:
        return GitHubClient(
            token,
            base_url=self.settings.api_url,
            timeout=self.settings.timeout,
            transport=self._transport,
        )

    def _source_for(self, source_token: str | None) -> GitHubClient:
        if not source_token:
            return self.source
        client = self._client(source_token)
        self._extra_clients.append(client)
        return client

    async def __aenter__(self) -> "TemplateSync":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        for client in self._extra_clients:
            await client.aclose()
        self._extra_clients.clear()
        if self.source is not self.target:
            await self.source.aclose()
        await self.target.aclose()

    async def clone_as_template(
        self,
        source_owner: str,
        source_repo: str,
        target_name: str,
        target_description: str | None = None,
        is_private: bool = False,
        include_branches: bool = False,
        source_token: str | None = None,
        target_username: str | None = None,
    ) -> CloneResult:
        """Create ``target_name`` populated with the template's content.

        Raises only if both clone strategies fail (``CloneError``) or the
        target credential is rejected (``AuthenticationError``).
        """
        orchestrator = CloneOrchestrator.default(
            self.target, self._source_for(source_token), self.settings
        )
        return await orchestrator.clone(
            CloneRequest(
                source_owner=source_owner,
                source_repo=source_repo,
                target_name=target_name,
                target_description=target_description,
                is_private=is_private,
                include_branches=include_branches,
                target_username=target_username,
            )
        )

    async def sync_with_template(
        self,
        source_owner: str,
        source_repo: str,
        target_owner: str,
        target_repo: str,
        target_branch: str | None = None,
        create_pull_request: bool = True,
        source_token: str | None = None,
        commit_message: str | None = None,
        direct_to_main: bool = False,
    ) -> SyncResult:
        engine = SyncEngine(self.target, self._source_for(source_token), self.settings)
        return await engine.sync(
            SyncRequest(
                source_owner=source_owner,
                source_repo=source_repo,
                target_owner=target_owner,
                target_repo=target_repo,
                target_branch=target_branch,
                create_pull_request=create_pull_request,
                commit_message=commit_message,
                direct_to_main=direct_to_main,
            )
        )

    async def check_for_updates(
        self,
        source_owner: str,
        source_repo: str,
        target_owner: str,
        target_repo: str,
        template_branch: str | None = None,
        target_created_at: str | None = None,
        source_token: str | None = None,
    ) -> UpdateCheckResult:
        """Read-only drift check, meant to run before :meth:`sync_with_template`."""
        detector = DriftDetector(self.target, self._source_for(source_token), self.settings)
        return await detector.check(
            source_owner,
            source_repo,
            target_owner,
            target_repo,
            template_branch=template_branch,
            target_created_at=target_created_at,
        )
