"""Manual triggers and queries/actions on individual deployments."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_services, http_error
from api.routes.projects import deployment_out
from api.schemas import ContainerLogs, DeploymentLog, DeploymentOut, TriggerRequest
from cli.core.exceptions import DeployHubError
from cli.core.services import Services
from cli.core.store import DeploymentInfo

router = APIRouter(prefix="/deployments", tags=["deployments"])
logger = logging.getLogger(__name__)


def _get_deployment(services: Services, deployment_id: str) -> DeploymentInfo:
    dep = services.store.get_deployment(deployment_id)
    if dep is None:
        raise HTTPException(404, f"Deployment {deployment_id} not found")
    return dep


@router.post("/trigger/{project_id}", response_model=DeploymentOut, status_code=202)
def trigger(
    project_id: int,
    body: TriggerRequest | None = None,
    services: Services = Depends(get_services),
) -> DeploymentOut:
    """Start a build of the project's branch. Returns once the record exists."""
    body = body or TriggerRequest()
    try:
        dep = services.orchestrator.trigger_build(
            project_id, revision=body.revision, message=body.message
        )
    except DeployHubError as exc:
        raise http_error(exc) from exc
    logger.info("Manual deployment %s triggered for project %s", dep.id, project_id)
    return deployment_out(dep)


@router.get("/{deployment_id}", response_model=DeploymentOut)
def get_deployment(
    deployment_id: str, services: Services = Depends(get_services)
) -> DeploymentOut:
    return deployment_out(_get_deployment(services, deployment_id))


@router.get("/{deployment_id}/logs", response_model=DeploymentLog)
def get_deployment_log(
    deployment_id: str, services: Services = Depends(get_services)
) -> DeploymentLog:
    dep = _get_deployment(services, deployment_id)
    return DeploymentLog(deployment_id=dep.id, status=dep.status, log=dep.log)


@router.get("/{deployment_id}/container-logs", response_model=ContainerLogs)
def get_container_logs(
    deployment_id: str,
    tail: int = 100,
    services: Services = Depends(get_services),
) -> ContainerLogs:
    tail = max(1, min(tail, 10000))
    try:
        output = services.orchestrator.container_logs(deployment_id, tail=tail)
    except DeployHubError as exc:
        raise http_error(exc) from exc
    return ContainerLogs(deployment_id=deployment_id, tail=tail, logs=output)


@router.post("/{deployment_id}/stop", response_model=DeploymentOut)
def stop_deployment(
    deployment_id: str, services: Services = Depends(get_services)
) -> DeploymentOut:
    try:
        dep = services.orchestrator.stop_deployment(deployment_id)
    except DeployHubError as exc:
        raise http_error(exc) from exc
    return deployment_out(dep)


@router.post("/{deployment_id}/restart", response_model=DeploymentOut)
def restart_deployment(
    deployment_id: str, services: Services = Depends(get_services)
) -> DeploymentOut:
    try:
        dep = services.orchestrator.restart_deployment(deployment_id)
    except DeployHubError as exc:
        raise http_error(exc) from exc
    return deployment_out(dep)
