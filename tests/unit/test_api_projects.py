"""Tests for FastAPI /api/projects routes."""

import pytest
from fastapi.testclient import TestClient

from api.main import app
from tests.conftest import TEST_API_KEY


@pytest.fixture
def client(isolated_config, api_services):
    return TestClient(app, headers={"X-API-Key": TEST_API_KEY})


def _create(client, name="web", **extra):
    body = {"name": name, "repo_url": "https://github.com/org/web.git", **extra}
    return client.post("/api/projects", json=body)


class TestAuth:
    def test_missing_key(self, api_services):
        resp = TestClient(app).get("/api/projects")
        assert resp.status_code == 401

    def test_wrong_key(self, api_services):
        resp = TestClient(app, headers={"X-API-Key": "nope"}).get("/api/projects")
        assert resp.status_code == 403

    def test_health_is_public(self):
        assert TestClient(app).get("/api/health").json() == {"status": "ok"}


class TestProjects:
    def test_create_and_list(self, client):
        resp = _create(client, branch="prod", env_vars={"PORT": "8080"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["name"] == "web"
        assert data["branch"] == "prod"
        assert data["env_keys"] == ["PORT"]
        assert data["buildpack"] is None

        listed = client.get("/api/projects").json()
        assert [p["name"] for p in listed] == ["web"]

    def test_duplicate_name(self, client):
        _create(client)
        assert _create(client).status_code == 409

    @pytest.mark.parametrize(
        "repo_url",
        [
            "http://github.com/org/web.git",
            "https://localhost/org/web.git",
            "https://192.168.1.4/org/web.git",
            "--upload-pack=x",
        ],
    )
    def test_rejects_bad_repo_url(self, client, repo_url):
        resp = client.post("/api/projects", json={"name": "web", "repo_url": repo_url})
        assert resp.status_code == 422

    def test_rejects_bad_name(self, client):
        assert _create(client, name="../etc").status_code == 422

    def test_get_unknown(self, client):
        assert client.get("/api/projects/999").status_code == 404

    def test_env_set_list_delete(self, client, api_services):
        project_id = _create(client).json()["id"]
        resp = client.put(f"/api/projects/{project_id}/env", json={"key": "TOKEN", "value": "s3"})
        assert resp.status_code == 200
        assert client.get(f"/api/projects/{project_id}/env").json() == ["TOKEN"]
        assert api_services.store.get_project(project_id).env_vars == {"TOKEN": "s3"}

        assert client.delete(f"/api/projects/{project_id}/env/TOKEN").status_code == 200
        assert client.get(f"/api/projects/{project_id}/env").json() == []
        assert client.delete(f"/api/projects/{project_id}/env/TOKEN").status_code == 404

    def test_env_rejects_invalid_key(self, client):
        project_id = _create(client).json()["id"]
        resp = client.put(f"/api/projects/{project_id}/env", json={"key": "1-BAD", "value": "x"})
        assert resp.status_code == 422

    def test_project_deployments(self, client, api_services):
        project_id = _create(client).json()["id"]
        dep = api_services.orchestrator.trigger_build(project_id)
        assert api_services.orchestrator.wait(dep.id, timeout=30)

        deps = client.get(f"/api/projects/{project_id}/deployments").json()
        assert [d["id"] for d in deps] == [dep.id]
        assert deps[0]["status"] == "running"
        assert deps[0]["url"] == f"http://localhost:{deps[0]['port']}"
