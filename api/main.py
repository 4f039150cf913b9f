"""FastAPI application: web API layer for deployhub."""

import logging
import os

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from api.auth import get_or_create_api_key, require_api_key, require_stream_key
from api.deps import get_services, services_for
from api.routes import deployments, logs, projects, webhooks
from cli.core.database import init_db
from cli.core.exceptions import ContainerRuntimeError

logger = logging.getLogger(__name__)

app = FastAPI(
    title="deployhub",
    description="Build and run containers from git repositories",
    version="0.1.0",
)

# CORS origins, configurable via CORS_ORIGINS env var (comma-separated).
_default_origins = "http://localhost:5173,http://localhost:3000"
cors_origins = [
    o.strip() for o in os.environ.get("CORS_ORIGINS", _default_origins).split(",") if o.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Unauthenticated health endpoint for load balancers and container healthchecks.
@app.get("/api/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/ports", tags=["health"], dependencies=[Depends(require_api_key)])
def port_usage(request: Request) -> dict[str, int | list[int]]:
    allocator = get_services(request).allocator
    return {
        "min": allocator.port_min,
        "max": allocator.port_max,
        "in_use": sorted(allocator.in_use),
    }


# Register API routes
api_deps = [Depends(require_api_key)]
app.include_router(projects.router, prefix="/api", dependencies=api_deps)
app.include_router(deployments.router, prefix="/api", dependencies=api_deps)
app.include_router(logs.router, prefix="/api", dependencies=[Depends(require_stream_key)])
app.include_router(webhooks.router, prefix="/api")  # provider signature/token auth


@app.on_event("startup")
def on_startup() -> None:
    init_db()
    get_or_create_api_key()
    services = services_for(app)
    try:
        reclaimed = services.runtime.reclaim_ports()
    except ContainerRuntimeError as exc:
        logger.warning("Could not re-seed port allocator: %s", exc)
        return
    if reclaimed:
        logger.info("Reserved %d port(s) held by running containers", len(reclaimed))
