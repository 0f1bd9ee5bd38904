"""Shared fixtures: an in-memory GitHub served through ``httpx.MockTransport``."""

from __future__ import annotations

import base64
import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from stencil.config import SyncSettings
from stencil.github.client import GitHubClient
from stencil.service import TemplateSync

TOKEN = "test-token"
LOGIN = "octocat"

_REPO = r"^/repos/(?P<owner>[^/]+)/(?P<repo>[^/]+)"


class FakeError(Exception):
    def __init__(self, status: int, message: str, headers: dict | None = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.headers = headers or {}


def _empty() -> FakeError:
    return FakeError(409, "Git Repository is empty.")


@dataclass
class FakeRepo:
    owner: str
    name: str
    default_branch: str = "main"
    private: bool = False
    description: str = ""
    created_at: str = ""
    refs: dict[str, str] = field(default_factory=dict)
    protection: dict[str, dict] = field(default_factory=dict)
    pulls: list[dict] = field(default_factory=list)

    def to_api(self) -> dict:
        return {
            "name": self.name,
            "full_name": f"{self.owner}/{self.name}",
            "owner": {"login": self.owner},
            "default_branch": self.default_branch,
            "private": self.private,
            "html_url": f"https://github.com/{self.owner}/{self.name}",
            "description": self.description,
            "created_at": self.created_at,
        }


@dataclass
class Failure:
    method: str
    pattern: re.Pattern
    status: int
    message: str
    times: int | None
    headers: dict


class FakeGitHub:
    """Just enough of the GitHub REST API to clone and sync repositories.

    Objects live in one content-addressed store shared by all repos.
    Trees are flat ``path -> blob sha`` mappings. Every commit and every
    repository creation advances a fake clock by one minute.
    """

    def __init__(self):
        self.repos: dict[tuple[str, str], FakeRepo] = {}
        self.blobs: dict[str, bytes] = {}
        self.trees: dict[str, dict[str, str]] = {}
        self.commits: dict[str, dict] = {}
        self.tokens = {TOKEN: LOGIN}
        self.requests: list[tuple[str, str]] = []
        self.failures: list[Failure] = []
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._routes = [
            ("GET", r"^/user$", self._get_user),
            ("POST", r"^/user/repos$", self._create_user_repo),
            ("POST", r"^/orgs/(?P<org>[^/]+)/repos$", self._create_org_repo),
            ("GET", _REPO + r"$", self._get_repo),
            ("GET", _REPO + r"/branches$", self._list_branches),
            ("GET", _REPO + r"/branches/(?P<branch>.+)/protection$", self._get_protection),
            ("PUT", _REPO + r"/branches/(?P<branch>.+)/protection$", self._put_protection),
            ("GET", _REPO + r"/commits$", self._list_commits),
            ("GET", _REPO + r"/compare/(?P<base>[^.]+)\.\.\.(?P<head>.+)$", self._compare),
            ("GET", _REPO + r"/git/ref/heads/(?P<branch>.+)$", self._get_ref),
            ("POST", _REPO + r"/git/refs$", self._create_ref),
            ("PATCH", _REPO + r"/git/refs/heads/(?P<branch>.+)$", self._update_ref),
            ("GET", _REPO + r"/git/commits/(?P<sha>[^/]+)$", self._get_commit),
            ("POST", _REPO + r"/git/commits$", self._create_commit),
            ("GET", _REPO + r"/git/trees/(?P<sha>[^/]+)$", self._get_tree),
            ("POST", _REPO + r"/git/trees$", self._create_tree),
            ("GET", _REPO + r"/git/blobs/(?P<sha>[^/]+)$", self._get_blob),
            ("POST", _REPO + r"/git/blobs$", self._create_blob),
            ("GET", _REPO + r"/contents/(?P<path>.+)$", self._get_content),
            ("PUT", _REPO + r"/contents/(?P<path>.+)$", self._put_content),
            ("DELETE", _REPO + r"/contents/(?P<path>.+)$", self._delete_content),
            ("POST", _REPO + r"/pulls$", self._create_pull),
        ]

    # --- Test helpers ---

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def client(self, token: str | None = TOKEN) -> GitHubClient:
        return GitHubClient(token, transport=self.transport)

    def fail(self, method, pattern, status=500, message="Server Error", times=1, headers=None):
        """Make matching requests fail; ``times=None`` fails forever."""
        self.failures.append(
            Failure(method, re.compile(pattern), status, message, times, headers or {})
        )

    def tick(self) -> str:
        self._clock += timedelta(minutes=1)
        return self._clock.strftime("%Y-%m-%dT%H:%M:%SZ")

    def add_repo(
        self,
        owner: str,
        name: str,
        files: dict | None = None,
        default_branch: str = "main",
        description: str = "",
        message: str = "Initial commit",
    ) -> FakeRepo:
        repo = FakeRepo(
            owner=owner,
            name=name,
            default_branch=default_branch,
            description=description,
            created_at=self.tick(),
        )
        self.repos[(owner, name)] = repo
        if files:
            self.commit_files(owner, name, files, message)
        return repo

    def commit_files(
        self,
        owner: str,
        name: str,
        files: dict,
        message: str,
        branch: str | None = None,
        delete: tuple[str, ...] = (),
    ) -> str:
        repo = self.repos[(owner, name)]
        branch = branch or repo.default_branch
        parent = repo.refs.get(branch)
        entries = dict(self.trees[self.commits[parent]["tree"]]) if parent else {}
        for path, content in files.items():
            entries[path] = self._store_blob(_as_bytes(content))
        for path in delete:
            entries.pop(path, None)
        sha = self._store_commit(self._store_tree(entries), [parent] if parent else [], message)
        repo.refs[branch] = sha
        return sha

    def files(self, owner: str, name: str, branch: str | None = None) -> dict[str, bytes]:
        repo = self.repos[(owner, name)]
        head = repo.refs[branch or repo.default_branch]
        tree = self.trees[self.commits[head]["tree"]]
        return {path: self.blobs[sha] for path, sha in tree.items()}

    def head(self, owner: str, name: str, branch: str | None = None) -> dict:
        repo = self.repos[(owner, name)]
        return self.commits[repo.refs[branch or repo.default_branch]]

    def history(self, owner: str, name: str, branch: str | None = None) -> list[dict]:
        repo = self.repos[(owner, name)]
        return self._walk(repo.refs[branch or repo.default_branch])

    def count(self, method: str, pattern: str) -> int:
        regex = re.compile(pattern)
        return sum(1 for m, p in self.requests if m == method and regex.search(p))

    # --- Object store ---

    def _store_blob(self, content: bytes) -> str:
        sha = hashlib.sha1(b"blob %d\0" % len(content) + content).hexdigest()
        self.blobs[sha] = content
        return sha

    def _store_tree(self, entries: dict[str, str]) -> str:
        sha = hashlib.sha1(json.dumps(sorted(entries.items())).encode()).hexdigest()
        self.trees[sha] = dict(entries)
        return sha

    def _store_commit(self, tree: str, parents: list[str], message: str, author=None) -> str:
        date = self.tick()
        sha = hashlib.sha1(f"{tree}{parents}{message}{date}".encode()).hexdigest()
        self.commits[sha] = {
            "sha": sha,
            "tree": tree,
            "parents": list(parents),
            "message": message,
            "date": date,
            "author": (author or {}).get("name", "Test Author"),
        }
        return sha

    def _walk(self, sha: str | None) -> list[dict]:
        out = []
        while sha:
            commit = self.commits[sha]
            out.append(commit)
            sha = commit["parents"][0] if commit["parents"] else None
        return out

    def _is_ancestor(self, ancestor: str, sha: str) -> bool:
        stack = [sha]
        seen = set()
        while stack:
            current = stack.pop()
            if current == ancestor:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.commits[current]["parents"])
        return False

    def _commit_api(self, commit: dict) -> dict:
        return {
            "sha": commit["sha"],
            "commit": {
                "message": commit["message"],
                "author": {"name": commit["author"], "date": commit["date"]},
            },
        }

    # --- Transport ---

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.requests.append((method, path))

        for failure in self.failures:
            if failure.method == method and failure.pattern.search(path) and failure.times != 0:
                if failure.times is not None:
                    failure.times -= 1
                return _json_response(
                    failure.status, {"message": failure.message}, failure.headers
                )

        body = json.loads(request.content) if request.content else {}
        try:
            login = self._authenticate(request)
            for route_method, pattern, handler in self._routes:
                if route_method != method:
                    continue
                match = re.match(pattern, path)
                if match:
                    status, payload = handler(
                        login=login, body=body, params=request.url.params, **match.groupdict()
                    )
                    return _json_response(status, payload)
            raise FakeError(404, "Not Found")
        except FakeError as e:
            return _json_response(e.status, {"message": e.message}, e.headers)

    def _authenticate(self, request: httpx.Request) -> str | None:
        header = request.headers.get("Authorization")
        if not header:
            return None
        token = header.partition(" ")[2]
        if token not in self.tokens:
            raise FakeError(401, "Bad credentials")
        return self.tokens[token]

    def _repo(self, owner: str, repo: str) -> FakeRepo:
        try:
            return self.repos[(owner, repo)]
        except KeyError:
            raise FakeError(404, "Not Found")

    def _resolve(self, repo: FakeRepo, ref: str) -> str:
        if not repo.refs:
            raise _empty()
        if ref in repo.refs:
            return repo.refs[ref]
        if ref in self.commits:
            return ref
        raise FakeError(404, "No commit found for SHA: " + ref)

    # --- Users and repositories ---

    def _get_user(self, login, **_):
        if login is None:
            raise FakeError(401, "Requires authentication")
        return 200, {"login": login}

    def _new_repo(self, owner: str, body: dict):
        name = body["name"]
        if (owner, name) in self.repos:
            raise FakeError(422, "Repository creation failed: name already exists on this account")
        repo = self.add_repo(owner, name, description=body.get("description", ""))
        repo.private = bool(body.get("private"))
        if body.get("auto_init"):
            self.commit_files(owner, name, {"README.md": f"# {name}\n"}, "Initial commit")
        return 201, repo.to_api()

    def _create_user_repo(self, login, body, **_):
        if login is None:
            raise FakeError(401, "Requires authentication")
        return self._new_repo(login, body)

    def _create_org_repo(self, login, body, org, **_):
        if login is None:
            raise FakeError(401, "Requires authentication")
        return self._new_repo(org, body)

    def _get_repo(self, owner, repo, **_):
        return 200, self._repo(owner, repo).to_api()

    def _list_branches(self, owner, repo, **_):
        r = self._repo(owner, repo)
        return 200, [{"name": name, "commit": {"sha": sha}} for name, sha in r.refs.items()]

    def _get_protection(self, owner, repo, branch, **_):
        r = self._repo(owner, repo)
        if branch not in r.protection:
            raise FakeError(404, "Branch not protected")
        return 200, r.protection[branch]

    def _put_protection(self, owner, repo, branch, body, **_):
        r = self._repo(owner, repo)
        if branch not in r.refs:
            raise FakeError(404, "Branch not found")
        r.protection[branch] = body
        return 200, body

    def _list_commits(self, owner, repo, params, **_):
        r = self._repo(owner, repo)
        head = self._resolve(r, params.get("sha") or r.default_branch)
        per_page = int(params.get("per_page", 30))
        return 200, [self._commit_api(c) for c in self._walk(head)[:per_page]]

    def _compare(self, owner, repo, base, head, **_):
        r = self._repo(owner, repo)
        base_tree = self.trees[self.commits[self._resolve(r, base)]["tree"]]
        head_tree = self.trees[self.commits[self._resolve(r, head)]["tree"]]
        files = []
        for path in sorted(set(base_tree) | set(head_tree)):
            if path not in base_tree:
                files.append({"filename": path, "status": "added"})
            elif path not in head_tree:
                files.append({"filename": path, "status": "removed"})
            elif base_tree[path] != head_tree[path]:
                files.append({"filename": path, "status": "modified"})
        return 200, {"status": "ahead", "files": files}

    # --- Git database ---

    def _get_ref(self, owner, repo, branch, **_):
        r = self._repo(owner, repo)
        if not r.refs:
            raise _empty()
        if branch not in r.refs:
            raise FakeError(404, "Not Found")
        return 200, {
            "ref": f"refs/heads/{branch}",
            "object": {"sha": r.refs[branch], "type": "commit"},
        }

    def _create_ref(self, owner, repo, body, **_):
        r = self._repo(owner, repo)
        branch = body["ref"].removeprefix("refs/heads/")
        if branch in r.refs:
            raise FakeError(422, "Reference already exists")
        if body["sha"] not in self.commits:
            raise FakeError(422, "Object does not exist")
        r.refs[branch] = body["sha"]
        return 201, {"ref": body["ref"], "object": {"sha": body["sha"], "type": "commit"}}

    def _update_ref(self, owner, repo, branch, body, **_):
        r = self._repo(owner, repo)
        if branch not in r.refs:
            raise FakeError(422, "Reference does not exist")
        sha = body["sha"]
        if not body.get("force") and not self._is_ancestor(r.refs[branch], sha):
            raise FakeError(422, "Update is not a fast forward")
        r.refs[branch] = sha
        return 200, {"ref": f"refs/heads/{branch}", "object": {"sha": sha, "type": "commit"}}

    def _get_commit(self, owner, repo, sha, **_):
        r = self._repo(owner, repo)
        if not r.refs:
            raise _empty()
        if sha not in self.commits:
            raise FakeError(404, "Not Found")
        commit = self.commits[sha]
        return 200, {
            "sha": sha,
            "message": commit["message"],
            "tree": {"sha": commit["tree"]},
            "parents": [{"sha": p} for p in commit["parents"]],
        }

    def _create_commit(self, owner, repo, body, **_):
        self._repo(owner, repo)
        if body["tree"] not in self.trees:
            raise FakeError(422, "Tree SHA does not exist")
        for parent in body.get("parents", []):
            if parent not in self.commits:
                raise FakeError(422, "Parent SHA does not exist or is not a commit object")
        sha = self._store_commit(
            body["tree"], body.get("parents", []), body["message"], body.get("author")
        )
        return 201, {"sha": sha, "tree": {"sha": body["tree"]}}

    def _get_tree(self, owner, repo, sha, **_):
        r = self._repo(owner, repo)
        if not r.refs:
            raise _empty()
        tree_sha = self.commits[sha]["tree"] if sha in self.commits else sha
        if tree_sha not in self.trees:
            raise FakeError(404, "Not Found")
        entries = []
        dirs = set()
        for path, blob_sha in sorted(self.trees[tree_sha].items()):
            parts = path.split("/")[:-1]
            for i in range(1, len(parts) + 1):
                directory = "/".join(parts[:i])
                if directory not in dirs:
                    dirs.add(directory)
                    entries.append({"path": directory, "mode": "040000", "type": "tree", "sha": "0" * 40})
            entries.append({"path": path, "mode": "100644", "type": "blob", "sha": blob_sha})
        return 200, {"sha": tree_sha, "tree": entries, "truncated": False}

    def _create_tree(self, owner, repo, body, **_):
        r = self._repo(owner, repo)
        if not r.refs:
            raise _empty()
        entries: dict[str, str] = {}
        base = body.get("base_tree")
        if base:
            if base not in self.trees:
                raise FakeError(422, "Invalid tree info: base_tree is not a valid tree")
            entries.update(self.trees[base])
        for item in body["tree"]:
            if item["sha"] not in self.blobs:
                raise FakeError(422, f"Invalid tree info: {item['sha']} is not a valid blob")
            entries[item["path"]] = item["sha"]
        return 201, {"sha": self._store_tree(entries)}

    def _get_blob(self, owner, repo, sha, **_):
        self._repo(owner, repo)
        if sha not in self.blobs:
            raise FakeError(404, "Not Found")
        content = base64.b64encode(self.blobs[sha]).decode()
        return 200, {"sha": sha, "content": content, "encoding": "base64"}

    def _create_blob(self, owner, repo, body, **_):
        r = self._repo(owner, repo)
        if not r.refs:
            raise _empty()
        return 201, {"sha": self._store_blob(base64.b64decode(body["content"]))}

    # --- Contents API ---

    def _get_content(self, owner, repo, path, params, **_):
        r = self._repo(owner, repo)
        head = self._resolve(r, params.get("ref") or r.default_branch)
        tree = self.trees[self.commits[head]["tree"]]
        if path not in tree:
            raise FakeError(404, "Not Found")
        sha = tree[path]
        return 200, {
            "type": "file",
            "path": path,
            "sha": sha,
            "content": base64.b64encode(self.blobs[sha]).decode(),
            "encoding": "base64",
        }

    def _write_content(self, r: FakeRepo, path: str, body: dict, content: bytes | None):
        branch = body.get("branch") or r.default_branch
        parent = r.refs.get(branch)
        entries = dict(self.trees[self.commits[parent]["tree"]]) if parent else {}
        existing = entries.get(path)
        if existing and not body.get("sha"):
            raise FakeError(422, 'Invalid request.\n\n"sha" wasn\'t supplied.')
        if body.get("sha") and body["sha"] != existing:
            raise FakeError(409, f"{path} does not match {body['sha']}")
        if content is None:
            if existing is None:
                raise FakeError(404, "Not Found")
            del entries[path]
        else:
            entries[path] = self._store_blob(content)
        sha = self._store_commit(
            self._store_tree(entries), [parent] if parent else [], body["message"],
            body.get("committer"),
        )
        r.refs[branch] = sha
        return sha, entries.get(path)

    def _put_content(self, owner, repo, path, body, **_):
        r = self._repo(owner, repo)
        commit_sha, blob_sha = self._write_content(
            r, path, body, base64.b64decode(body["content"])
        )
        return 201, {"content": {"path": path, "sha": blob_sha}, "commit": {"sha": commit_sha}}

    def _delete_content(self, owner, repo, path, body, **_):
        r = self._repo(owner, repo)
        commit_sha, _ = self._write_content(r, path, body, None)
        return 200, {"content": None, "commit": {"sha": commit_sha}}

    def _create_pull(self, owner, repo, body, **_):
        r = self._repo(owner, repo)
        if body["head"] not in r.refs or body["base"] not in r.refs:
            raise FakeError(422, "Validation Failed")
        number = len(r.pulls) + 1
        pull = dict(body, number=number, html_url=f"https://github.com/{owner}/{repo}/pull/{number}")
        r.pulls.append(pull)
        return 201, pull


def _as_bytes(content) -> bytes:
    return content if isinstance(content, bytes) else content.encode("utf-8")


def _json_response(status: int, payload, headers: dict | None = None) -> httpx.Response:
    return httpx.Response(status, json=payload, headers=headers or {})


# --- Fixtures ---


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def settings():
    return SyncSettings.no_delays()


@pytest_asyncio.fixture
async def client(github):
    async with github.client() as c:
        yield c


@pytest_asyncio.fixture
async def service(github, settings):
    async with TemplateSync(token=TOKEN, settings=settings, transport=github.transport) as ts:
        yield ts
