"""Async GitHub REST client used by the clone and sync engine.

Wraps a single ``httpx.AsyncClient`` and exposes exactly the endpoints the
engine needs: repositories, git objects (blobs, trees, commits, refs), the
single-file contents API, branches, branch protection, commit history and
pull requests. Responses are returned as decoded JSON; failures are raised
as the exceptions in :mod:`stencil.github.errors`.
"""

from __future__ import annotations

import base64
import logging
from typing import Any
from urllib.parse import quote

import httpx

from stencil.github.errors import (
    AuthenticationError,
    ConflictError,
    EmptyRepositoryError,
    GitHubAPIError,
    NotFoundError,
    RateLimitError,
)

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"

_DEFAULT_HEADERS = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
}


def encode_content(content: bytes) -> str:
    """Base64-encode raw bytes for a GitHub write payload."""
    return base64.b64encode(content).decode("ascii")


def decode_content(content: str, encoding: str = "base64") -> bytes:
    """Decode a blob/content payload returned by GitHub."""
    if encoding == "base64":
        return base64.b64decode(content)
    return content.encode("utf-8")


class GitHubClient:
    """Thin async wrapper around the GitHub REST API.

    Parameters
    ----------
    token : str | None
        Personal access / OAuth token. Requests are anonymous without one.
    base_url : str
        API root, overridable for GitHub Enterprise.
    timeout : float
        Per-request timeout in seconds.
    transport : httpx.AsyncBaseTransport | None
        Custom transport, mainly for tests.
    """

    def __init__(
        self,
        token: str | None = None,
        base_url: str = GITHUB_API_BASE,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = dict(_DEFAULT_HEADERS)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.token = token
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        owner: str = "",
        repo: str = "",
        path: str = "",
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        try:
            resp = await self._client.request(method, url, params=params, json=json)
        except httpx.RequestError as exc:
            raise GitHubAPIError(
                f"Failed to reach GitHub API: {exc}", owner=owner, repo=repo, path=path
            ) from exc

        logger.debug(f"{method} {url} -> {resp.status_code}")

        if resp.is_error:
            raise _error_from_response(resp, owner=owner, repo=repo, path=path)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    # ------------------------------------------------------------------
    # Users and repositories
    # ------------------------------------------------------------------

    async def get_authenticated_user(self) -> dict:
        return await self._request("GET", "/user")

    async def get_repo(self, owner: str, repo: str) -> dict:
        return await self._request("GET", f"/repos/{owner}/{repo}", owner=owner, repo=repo)

    async def create_repo(
        self,
        name: str,
        description: str = "",
        private: bool = False,
        auto_init: bool = True,
        org: str | None = None,
    ) -> dict:
        """Create a repository for the authenticated user, or under ``org``."""
        url = f"/orgs/{org}/repos" if org else "/user/repos"
        return await self._request(
            "POST",
            url,
            owner=org or "",
            repo=name,
            json={
                "name": name,
                "description": description,
                "private": private,
                "auto_init": auto_init,
            },
        )

    async def list_branches(self, owner: str, repo: str, per_page: int = 100) -> list[dict]:
        return await self._request(
            "GET",
            f"/repos/{owner}/{repo}/branches",
            owner=owner,
            repo=repo,
            params={"per_page": per_page},
        )

    async def list_commits(
        self,
        owner: str,
        repo: str,
        sha: str | None = None,
        per_page: int = 30,
    ) -> list[dict]:
        params: dict[str, Any] = {"per_page": per_page}
        if sha:
            params["sha"] = sha
        return await self._request(
            "GET", f"/repos/{owner}/{repo}/commits", owner=owner, repo=repo, params=params
        )

    async def compare_commits(self, owner: str, repo: str, base: str, head: str) -> dict:
        return await self._request(
            "GET", f"/repos/{owner}/{repo}/compare/{base}...{head}", owner=owner, repo=repo
        )

    # ------------------------------------------------------------------
    # Git database: refs, commits, trees, blobs
    # ------------------------------------------------------------------

    async def get_ref(self, owner: str, repo: str, ref: str) -> dict:
        """Read a ref such as ``heads/main``."""
        return await self._request(
            "GET", f"/repos/{owner}/{repo}/git/ref/{ref}", owner=owner, repo=repo, path=ref
        )

    async def create_ref(self, owner: str, repo: str, ref: str, sha: str) -> dict:
        """Create a fully-qualified ref such as ``refs/heads/feature``."""
        return await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/refs",
            owner=owner,
            repo=repo,
            path=ref,
            json={"ref": ref, "sha": sha},
        )

    async def update_ref(
        self, owner: str, repo: str, ref: str, sha: str, force: bool = False
    ) -> dict:
        return await self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/git/refs/{ref}",
            owner=owner,
            repo=repo,
            path=ref,
            json={"sha": sha, "force": force},
        )

    async def get_commit(self, owner: str, repo: str, sha: str) -> dict:
        return await self._request(
            "GET", f"/repos/{owner}/{repo}/git/commits/{sha}", owner=owner, repo=repo
        )

    async def create_commit(
        self,
        owner: str,
        repo: str,
        message: str,
        tree: str,
        parents: list[str],
        author: dict | None = None,
    ) -> dict:
        payload: dict[str, Any] = {"message": message, "tree": tree, "parents": parents}
        if author:
            payload["author"] = author
        return await self._request(
            "POST", f"/repos/{owner}/{repo}/git/commits", owner=owner, repo=repo, json=payload
        )

    async def get_tree(self, owner: str, repo: str, sha: str, recursive: bool = True) -> dict:
        params = {"recursive": "1"} if recursive else None
        return await self._request(
            "GET",
            f"/repos/{owner}/{repo}/git/trees/{sha}",
            owner=owner,
            repo=repo,
            params=params,
        )

    async def create_tree(
        self, owner: str, repo: str, tree: list[dict], base_tree: str | None = None
    ) -> dict:
        payload: dict[str, Any] = {"tree": tree}
        if base_tree:
            payload["base_tree"] = base_tree
        return await self._request(
            "POST", f"/repos/{owner}/{repo}/git/trees", owner=owner, repo=repo, json=payload
        )

    async def get_blob(self, owner: str, repo: str, sha: str) -> dict:
        return await self._request(
            "GET", f"/repos/{owner}/{repo}/git/blobs/{sha}", owner=owner, repo=repo
        )

    async def create_blob(self, owner: str, repo: str, content: bytes) -> dict:
        return await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/blobs",
            owner=owner,
            repo=repo,
            json={"content": encode_content(content), "encoding": "base64"},
        )

    # ------------------------------------------------------------------
    # Contents API (one commit per call)
    # ------------------------------------------------------------------

    async def get_content(
        self, owner: str, repo: str, path: str, ref: str | None = None
    ) -> dict:
        return await self._request(
            "GET",
            f"/repos/{owner}/{repo}/contents/{quote(path)}",
            owner=owner,
            repo=repo,
            path=path,
            params={"ref": ref} if ref else None,
        )

    async def put_content(
        self,
        owner: str,
        repo: str,
        path: str,
        content: bytes,
        message: str,
        sha: str | None = None,
        branch: str | None = None,
        committer: dict | None = None,
    ) -> dict:
        """Create or update a single file."""
        payload: dict[str, Any] = {"message": message, "content": encode_content(content)}
        if sha:
            payload["sha"] = sha
        if branch:
            payload["branch"] = branch
        if committer:
            payload["committer"] = committer
        return await self._request(
            "PUT",
            f"/repos/{owner}/{repo}/contents/{quote(path)}",
            owner=owner,
            repo=repo,
            path=path,
            json=payload,
        )

    async def delete_content(
        self, owner: str, repo: str, path: str, sha: str, message: str
    ) -> dict:
        return await self._request(
            "DELETE",
            f"/repos/{owner}/{repo}/contents/{quote(path)}",
            owner=owner,
            repo=repo,
            path=path,
            json={"message": message, "sha": sha},
        )

    # ------------------------------------------------------------------
    # Branch protection and pull requests
    # ------------------------------------------------------------------

    async def get_branch_protection(self, owner: str, repo: str, branch: str) -> dict:
        return await self._request(
            "GET",
            f"/repos/{owner}/{repo}/branches/{branch}/protection",
            owner=owner,
            repo=repo,
            path=branch,
        )

    async def update_branch_protection(
        self, owner: str, repo: str, branch: str, settings: dict
    ) -> dict:
        return await self._request(
            "PUT",
            f"/repos/{owner}/{repo}/branches/{branch}/protection",
            owner=owner,
            repo=repo,
            path=branch,
            json=settings,
        )

    async def create_pull_request(
        self, owner: str, repo: str, title: str, head: str, base: str, body: str = ""
    ) -> dict:
        return await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            owner=owner,
            repo=repo,
            json={"title": title, "head": head, "base": base, "body": body},
        )


def _error_from_response(
    resp: httpx.Response, owner: str = "", repo: str = "", path: str = ""
) -> GitHubAPIError:
    """Map an error response onto the client's exception hierarchy."""
    try:
        data = resp.json()
        message = data.get("message", "") if isinstance(data, dict) else str(data)
    except ValueError:
        message = resp.text
    message = message or resp.reason_phrase
    status = resp.status_code
    ctx = {"status": status, "owner": owner, "repo": repo, "path": path}

    if status == 401:
        return AuthenticationError(f"GitHub authentication failed: {message}", **ctx)
    if status == 403 and resp.headers.get("X-RateLimit-Remaining") == "0":
        return RateLimitError(f"GitHub API rate limit exceeded: {message}", **ctx)
    if status == 404:
        return NotFoundError(message or "Not Found", **ctx)
    if status == 409:
        if "Git Repository is empty" in message:
            return EmptyRepositoryError(message, **ctx)
        return ConflictError(message, **ctx)
    if status == 422 and "sha" in message.lower():
        return ConflictError(message, **ctx)
    return GitHubAPIError(f"GitHub API error: {message}", **ctx)
