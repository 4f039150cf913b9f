"""Shared FastAPI dependencies."""

from __future__ import annotations

import threading

from fastapi import FastAPI, HTTPException, Request

from cli.core.exceptions import (
    AllocatorExhausted,
    ContainerRuntimeError,
    DeployHubError,
    DeploymentNotFoundError,
    InvalidTransitionError,
    ProjectNotFoundError,
)
from cli.core.services import Services, build_services

_lock = threading.Lock()


def services_for(app: FastAPI) -> Services:
    """The process-wide component graph, built on first use."""
    state = app.state
    services = getattr(state, "services", None)
    if services is None:
        with _lock:
            services = getattr(state, "services", None)
            if services is None:
                services = state.services = build_services()
    return services


def get_services(request: Request) -> Services:
    return services_for(request.app)


def http_error(exc: DeployHubError) -> HTTPException:
    """Map a core error to the HTTP status the API reports for it."""
    if isinstance(exc, (ProjectNotFoundError, DeploymentNotFoundError)):
        return HTTPException(404, str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(409, str(exc))
    if isinstance(exc, AllocatorExhausted):
        return HTTPException(503, str(exc))
    if isinstance(exc, ContainerRuntimeError):
        return HTTPException(502, str(exc))
    return HTTPException(500, str(exc))
