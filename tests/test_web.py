"""Tests for the FastAPI web service."""

import json

import pytest
from fastapi.testclient import TestClient

from stencil.config import SyncSettings
from web.backend.app.main import app
from web.backend.app.middleware.auth import get_settings, get_transport

from conftest import LOGIN, TOKEN

AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def api(github, monkeypatch):
    monkeypatch.delenv("STENCIL_SOURCE_TOKEN", raising=False)
    app.dependency_overrides[get_settings] = lambda: SyncSettings.no_delays()
    app.dependency_overrides[get_transport] = lambda: github.transport
    yield TestClient(app)
    app.dependency_overrides.clear()


def _clone_body(**overrides):
    body = {"templateOwner": "acme", "templateRepo": "tpl", "projectName": "demo"}
    body.update(overrides)
    return body


def _sync_query():
    return {
        "templateOwner": "acme",
        "templateRepo": "tpl",
        "projectOwner": LOGIN,
        "projectRepo": "demo",
    }


# --- Meta ---


def test_health(api):
    response = api.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_root(api):
    assert api.get("/").json()["name"] == "Stencil API"


# --- Auth ---


def test_missing_token_is_401(monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    client = TestClient(app)

    response = client.post("/api/projects/clone", json=_clone_body())

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_rejected_token_is_401(github, api):
    github.add_repo("acme", "tpl", {"a.txt": "hello"})

    response = api.post(
        "/api/projects/clone", json=_clone_body(), headers={"Authorization": "Bearer wrong"}
    )

    assert response.status_code == 401
    assert "valid GitHub token" in response.json()["detail"]


def test_token_from_environment(github, api, monkeypatch):
    github.add_repo("acme", "tpl", {"a.txt": "hello"})
    monkeypatch.setenv("GITHUB_TOKEN", TOKEN)

    response = api.post("/api/projects/clone", json=_clone_body())

    assert response.status_code == 201


def _add_manifest_template(github):
    github.add_repo("acme", "tpl", {".template.json": json.dumps({"name": "Tpl"})})
    github.tokens["template-token"] = "reader"


def test_template_token_header_reads_template(github, api):
    _add_manifest_template(github)
    body = {"owner": "acme", "repo": "tpl"}

    ok = api.post(
        "/api/templates/validate", json=body, headers={**AUTH, "X-Template-Token": "template-token"}
    )
    assert ok.status_code == 200
    assert ok.json()["valid"] is True

    bad = api.post(
        "/api/templates/validate", json=body, headers={**AUTH, "X-Template-Token": "wrong"}
    )
    assert bad.status_code == 401


def test_template_token_from_environment(github, api, monkeypatch):
    _add_manifest_template(github)
    monkeypatch.setenv("STENCIL_SOURCE_TOKEN", "wrong")

    body = {"owner": "acme", "repo": "tpl"}
    assert api.post("/api/templates/validate", json=body, headers=AUTH).status_code == 401

    monkeypatch.setenv("STENCIL_SOURCE_TOKEN", "template-token")
    response = api.post("/api/templates/validate", json=body, headers=AUTH)

    assert response.status_code == 200


# --- Projects ---


def test_clone_project(github, api):
    github.add_repo("acme", "tpl", {"a.txt": "hello"})

    response = api.post(
        "/api/projects/clone", json=_clone_body(isPrivate=True, description="Demo"), headers=AUTH
    )

    assert response.status_code == 201
    data = response.json()
    assert data["success"]
    assert data["full_name"] == f"{LOGIN}/demo"
    assert data["files_count"] == 1
    assert data["strategy"] == "contents"
    assert github.repos[(LOGIN, "demo")].private


def test_clone_missing_template_is_404(api):
    response = api.post("/api/projects/clone", json=_clone_body(), headers=AUTH)
    assert response.status_code == 404


def test_update_check_and_sync(github, api):
    github.add_repo("acme", "tpl", {"a.txt": "hello"})
    assert api.post("/api/projects/clone", json=_clone_body(), headers=AUTH).status_code == 201

    response = api.get("/api/projects/sync-template", params=_sync_query(), headers=AUTH)
    assert response.status_code == 200
    assert response.json()["has_updates"] is False

    template_sha = github.commit_files("acme", "tpl", {"b.txt": "b"}, "Add b")
    data = api.get("/api/projects/sync-template", params=_sync_query(), headers=AUTH).json()
    assert data["has_updates"] is True
    assert data["all_files_changed"] is True
    assert data["changed_files"] is None
    assert data["latest_commit"]["sha"] == template_sha

    response = api.post("/api/projects/sync-template", json=_sync_query(), headers=AUTH)
    assert response.status_code == 200
    data = response.json()
    assert data["files_count"] == 2
    assert data["sync_branch"].startswith("sync-template-")
    assert data["pull_request_url"] == f"https://github.com/{LOGIN}/demo/pull/1"
    assert data["template_sha"] == template_sha


def test_direct_sync(github, api):
    github.add_repo("acme", "tpl", {"a.txt": "hello", ".env": "X=1"})
    github.add_repo(LOGIN, "demo", {"README.md": "# Demo"})

    body = dict(_sync_query(), directToMain=True, commitMessage="chore: sync")
    data = api.post("/api/projects/sync-template", json=body, headers=AUTH).json()

    assert data["sync_branch"] == "main"
    assert data["pull_request_url"] is None
    assert data["excluded"] == [".env"]
    assert github.head(LOGIN, "demo")["message"].startswith("chore: sync")


def test_sync_missing_project_is_404(github, api):
    github.add_repo("acme", "tpl", {"a.txt": "hello"})
    response = api.post("/api/projects/sync-template", json=_sync_query(), headers=AUTH)
    assert response.status_code == 404


def test_sync_requires_fields(api):
    response = api.post("/api/projects/sync-template", json={"templateOwner": "acme"}, headers=AUTH)
    assert response.status_code == 422


# --- Templates ---


def test_validate_template(github, api):
    manifest = {"name": "Tpl", "excludeFiles": ["docs/internal"]}
    github.add_repo("acme", "tpl", {".template.json": json.dumps(manifest)})

    response = api.post("/api/templates/validate", json={"owner": "acme", "repo": "tpl"}, headers=AUTH)

    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is True
    assert data["name"] == "Tpl"
    assert data["exclude_files"] == ["docs/internal"]


def test_validate_template_without_manifest(github, api):
    github.add_repo("acme", "tpl", {"a.txt": "a"})

    data = api.post(
        "/api/templates/validate", json={"owner": "acme", "repo": "tpl"}, headers=AUTH
    ).json()

    assert data["valid"] is False
    assert "not found" in data["error"]
