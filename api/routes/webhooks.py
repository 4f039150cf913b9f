"""Git hosting push webhooks that trigger deployments.

These endpoints authenticate with the hosting provider's own mechanism
(GitHub HMAC signature, GitLab shared token) instead of the platform API
key.  When the corresponding secret is not configured the check is skipped.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from api.deps import get_services
from cli.core.exceptions import DeployHubError
from cli.core.services import Services
from cli.core.store import ProjectInfo

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


def _branch_from_ref(ref: str) -> str:
    return ref[len("refs/heads/"):] if ref.startswith("refs/heads/") else ""


def _repo_matches(repo_url: str, full_name: str) -> bool:
    """True if *repo_url* points at the repository ``owner/name``."""
    path = repo_url.strip().rstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    path = path.lower()
    full_name = full_name.strip("/").lower()
    return path.endswith("/" + full_name) or path.endswith(":" + full_name)


def _matching_projects(services: Services, full_name: str, branch: str) -> list[ProjectInfo]:
    candidates = services.store.find_projects_for_repo(full_name, branch)
    return [p for p in candidates if _repo_matches(p.repo_url, full_name)]


def _trigger_all(
    services: Services,
    projects: list[ProjectInfo],
    revision: str | None,
    message: str | None,
) -> dict[str, Any]:
    triggered: list[dict[str, str]] = []
    for project in projects:
        try:
            dep = services.orchestrator.trigger_build(
                project.id, revision=revision, message=message
            )
        except DeployHubError as exc:
            logger.error("Could not trigger deployment of %s: %s", project.name, exc)
            continue
        logger.info("Push to %s triggered deployment %s", project.name, dep.id)
        triggered.append({"project": project.name, "deployment_id": dep.id})
    return {"message": f"Triggered {len(triggered)} deployment(s)", "deployments": triggered}


def _parse_json(body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(body or b"{}")
    except ValueError as exc:
        raise HTTPException(400, "Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(400, "Invalid JSON payload")
    return payload


@router.post("/github")
async def github_webhook(
    request: Request, services: Services = Depends(get_services)
) -> dict[str, Any]:
    """Receive GitHub push events."""
    body = await request.body()

    secret = os.environ.get("GITHUB_WEBHOOK_SECRET", "")
    if secret:
        sig_header = request.headers.get("X-Hub-Signature-256", "")
        if not sig_header:
            raise HTTPException(401, "Missing X-Hub-Signature-256 header")
        expected_sig = "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(sig_header, expected_sig):
            raise HTTPException(401, "Invalid signature")

    event = request.headers.get("X-GitHub-Event", "")
    if event == "ping":
        return {"message": "pong"}
    if event != "push":
        return {"message": f"Ignored event: {event}"}

    payload = _parse_json(body)
    if payload.get("deleted"):
        return {"message": "Ignored branch deletion"}
    branch = _branch_from_ref(payload.get("ref", ""))
    full_name = (payload.get("repository") or {}).get("full_name", "")
    if not branch or not full_name:
        return {"message": "Missing ref or repository in payload"}

    projects = _matching_projects(services, full_name, branch)
    if not projects:
        logger.info("No project for %s branch %s", full_name, branch)
        return {"message": "No matching project found"}

    head_commit = payload.get("head_commit") or {}
    return _trigger_all(
        services,
        projects,
        head_commit.get("id") or payload.get("after"),
        head_commit.get("message"),
    )


@router.post("/gitlab")
async def gitlab_webhook(
    request: Request, services: Services = Depends(get_services)
) -> dict[str, Any]:
    """Receive GitLab push hooks."""
    expected = os.environ.get("GITLAB_WEBHOOK_TOKEN", "")
    if expected:
        token = request.headers.get("X-Gitlab-Token", "")
        if not hmac.compare_digest(token.encode(), expected.encode()):
            raise HTTPException(401, "Invalid token")

    event = request.headers.get("X-Gitlab-Event", "")
    if event != "Push Hook":
        return {"message": f"Ignored event: {event}"}

    payload = _parse_json(await request.body())
    branch = _branch_from_ref(payload.get("ref", ""))
    full_name = (payload.get("project") or {}).get("path_with_namespace", "")
    if not branch or not full_name:
        return {"message": "Missing ref or project in payload"}

    projects = _matching_projects(services, full_name, branch)
    if not projects:
        logger.info("No project for %s branch %s", full_name, branch)
        return {"message": "No matching project found"}

    commits = payload.get("commits") or []
    message = commits[-1].get("message") if commits else None
    return _trigger_all(services, projects, payload.get("checkout_sha"), message)
