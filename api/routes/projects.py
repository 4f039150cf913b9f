"""Project registration and environment management."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

import cli.core.config as config
from api.deps import get_services, http_error
from api.schemas import DeploymentOut, EnvVarSet, ProjectCreate, ProjectOut
from cli.core.exceptions import ProjectNotFoundError
from cli.core.services import Services
from cli.core.store import DeploymentInfo, ProjectInfo

router = APIRouter(prefix="/projects", tags=["projects"])
logger = logging.getLogger(__name__)


def project_out(p: ProjectInfo) -> ProjectOut:
    return ProjectOut(
        id=p.id,
        name=p.name,
        owner=p.owner,
        repo_url=p.repo_url,
        branch=p.branch,
        buildpack=p.buildpack,
        env_keys=sorted(p.env_vars),
        created_at=p.created_at,
    )


def deployment_out(d: DeploymentInfo) -> DeploymentOut:
    out = DeploymentOut.model_validate(d)
    if d.port:
        out.url = f"http://{config.PUBLIC_HOST}:{d.port}"
    return out


def _get_project(services: Services, project_id: int) -> ProjectInfo:
    project = services.store.get_project(project_id)
    if project is None:
        raise HTTPException(404, f"Project {project_id} not found")
    return project


@router.get("", response_model=list[ProjectOut])
def list_projects(services: Services = Depends(get_services)) -> list[ProjectOut]:
    return [project_out(p) for p in services.store.list_projects()]


@router.post("", response_model=ProjectOut, status_code=201)
def create_project(
    body: ProjectCreate, services: Services = Depends(get_services)
) -> ProjectOut:
    if services.store.find_project(body.name, body.owner) is not None:
        raise HTTPException(409, f"Project '{body.name}' already exists")
    project = services.store.create_project(
        body.name,
        body.repo_url,
        branch=body.branch,
        owner=body.owner,
        env_vars=body.env_vars,
    )
    logger.info("Created project %s (%s)", project.name, project.repo_url)
    return project_out(project)


@router.get("/{project_id}", response_model=ProjectOut)
def get_project(project_id: int, services: Services = Depends(get_services)) -> ProjectOut:
    return project_out(_get_project(services, project_id))


@router.get("/{project_id}/deployments", response_model=list[DeploymentOut])
def project_deployments(
    project_id: int,
    limit: int = 20,
    services: Services = Depends(get_services),
) -> list[DeploymentOut]:
    _get_project(services, project_id)
    limit = max(1, min(limit, 100))
    return [deployment_out(d) for d in services.store.list_deployments(project_id, limit=limit)]


@router.get("/{project_id}/env")
def list_env(project_id: int, services: Services = Depends(get_services)) -> list[str]:
    """Variable names only; values are never returned."""
    return sorted(_get_project(services, project_id).env_vars)


@router.put("/{project_id}/env")
def set_env(
    project_id: int, body: EnvVarSet, services: Services = Depends(get_services)
) -> dict[str, str]:
    project = _get_project(services, project_id)
    env_vars = {**project.env_vars, body.key: body.value}
    try:
        services.store.set_env_vars(project_id, env_vars)
    except ProjectNotFoundError as exc:
        raise http_error(exc) from exc
    return {"message": f"Set '{body.key}' for '{project.name}'"}


@router.delete("/{project_id}/env/{key}")
def delete_env(
    project_id: int, key: str, services: Services = Depends(get_services)
) -> dict[str, str]:
    project = _get_project(services, project_id)
    if key not in project.env_vars:
        raise HTTPException(404, f"Variable '{key}' not set for '{project.name}'")
    env_vars = {k: v for k, v in project.env_vars.items() if k != key}
    try:
        services.store.set_env_vars(project_id, env_vars)
    except ProjectNotFoundError as exc:
        raise http_error(exc) from exc
    return {"message": f"Deleted '{key}' from '{project.name}'"}
