"""Template manifest: optional ``.template.json`` describing a template repo.

Example::

    {
      "name": "FastAPI service",
      "description": "Opinionated service skeleton",
      "category": "backend",
      "features": ["docker", "ci"],
      "excludeFiles": ["docs/internal", "*.log"]
    }
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from stencil.github.client import GitHubClient, decode_content
from stencil.github.errors import GitHubAPIError, NotFoundError

DEFAULT_MANIFEST_PATH = ".template.json"


@dataclass
class TemplateManifest:
    name: str
    description: str = ""
    category: str = ""
    icon: str = ""
    features: list[str] = field(default_factory=list)
    exclude_files: list[str] = field(default_factory=list)
    replace_variables: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "TemplateManifest":
        if not isinstance(data, dict) or not data.get("name"):
            raise ValueError("Template manifest must be an object with a 'name'")
        return cls(
            name=str(data["name"]),
            description=data.get("description", ""),
            category=data.get("category", ""),
            icon=data.get("icon", ""),
            features=list(data.get("features") or []),
            exclude_files=list(data.get("excludeFiles") or []),
            replace_variables=bool(data.get("replaceVariables", False)),
        )


async def fetch_manifest(
    client: GitHubClient,
    owner: str,
    repo: str,
    branch: str = "main",
    path: str = DEFAULT_MANIFEST_PATH,
) -> TemplateManifest:
    """Read and parse the manifest of a template repository.

    Raises:
        NotFoundError: The manifest file does not exist.
        ValueError: The manifest is not valid JSON or lacks a name.
    """
    try:
        data = await client.get_content(owner, repo, path, ref=branch)
    except NotFoundError as e:
        raise NotFoundError(
            f"Template manifest not found at {path}. "
            f"Create a {path} file in your template repository.",
            status=404,
            owner=owner,
            repo=repo,
            path=path,
        ) from e

    if not isinstance(data, dict) or data.get("type") != "file":
        raise NotFoundError(
            "Template manifest not found", status=404, owner=owner, repo=repo, path=path
        )

    raw = decode_content(data.get("content", ""), data.get("encoding", "base64"))
    try:
        return TemplateManifest.from_dict(json.loads(raw.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid template manifest {owner}/{repo}:{path}: {e}") from e


async def validate_template(
    client: GitHubClient,
    owner: str,
    repo: str,
    branch: str = "main",
    path: str = DEFAULT_MANIFEST_PATH,
) -> bool:
    """True if the repository carries a readable manifest."""
    try:
        await fetch_manifest(client, owner, repo, branch, path)
    except (GitHubAPIError, ValueError):
        return False
    return True
