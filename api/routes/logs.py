"""Live deployment log streaming over Server-Sent Events."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from api.deps import get_services
from cli.core.events import ALL_DEPLOYMENTS
from cli.core.services import Services

router = APIRouter(tags=["logs"])
logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# Seconds between disconnect checks while a stream is idle.
POLL_INTERVAL = 1.0


def _sse(data: dict[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


@router.get("/deployments/{deployment_id}/logs/stream")
async def stream_deployment_logs(
    deployment_id: str,
    request: Request,
    services: Services = Depends(get_services),
) -> StreamingResponse:
    """Replay the persisted log, then follow the deployment until it settles."""
    if services.store.get_deployment(deployment_id) is None:
        raise HTTPException(404, f"Deployment {deployment_id} not found")

    async def _generate() -> AsyncIterator[str]:
        # Subscribe before reading history so nothing published in between is lost.
        sub = services.bus.subscribe_async(deployment_id)
        try:
            dep = services.store.get_deployment(deployment_id)
            if dep is None:
                return
            seen = len(dep.log)
            for line in dep.log.splitlines():
                yield _sse({"type": "log", "line": line})
            if dep.status.is_terminal:
                yield _sse({"done": True, "status": dep.status.value})
                return

            while True:
                event = await sub.aget(POLL_INTERVAL)
                if event is None:
                    if await request.is_disconnected():
                        logger.debug("Log stream client for %s went away", deployment_id)
                        return
                    yield ": keep-alive\n\n"
                    continue
                if event.kind == "log":
                    if event.offset is not None and event.offset <= seen:
                        continue
                    seen = event.offset or seen
                    yield _sse({"type": "log", "line": event.line})
                elif event.status is not None:
                    yield _sse({"type": "status", "status": event.status.value})
                    if event.status.is_terminal:
                        yield _sse({"done": True, "status": event.status.value})
                        return
        finally:
            sub.close()

    return StreamingResponse(_generate(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/logs/stream")
async def stream_all_logs(
    request: Request,
    services: Services = Depends(get_services),
) -> StreamingResponse:
    """Follow build output of every deployment. Runs until the client disconnects."""

    async def _generate() -> AsyncIterator[str]:
        sub = services.bus.subscribe_async(ALL_DEPLOYMENTS)
        try:
            while True:
                event = await sub.aget(POLL_INTERVAL)
                if event is None:
                    if await request.is_disconnected():
                        return
                    yield ": keep-alive\n\n"
                    continue
                yield _sse(
                    {"type": "log", "deployment_id": event.deployment_id, "line": event.line}
                )
        finally:
            sub.close()

    return StreamingResponse(_generate(), media_type="text/event-stream", headers=SSE_HEADERS)
