"""Wiring of the pipeline components into one explicitly constructed graph."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import cli.core.config as config
from cli.core.events import EventBus
from cli.core.git import clone_repository
from cli.core.orchestrator import BuildOrchestrator, Cloner
from cli.core.ports import PortAllocator
from cli.core.runtime import ContainerRuntime
from cli.core.store import DeploymentStore


@dataclass
class Services:
    store: DeploymentStore
    bus: EventBus
    allocator: PortAllocator
    runtime: ContainerRuntime
    orchestrator: BuildOrchestrator


def build_services(
    *,
    docker_client: Any | None = None,
    cloner: Cloner = clone_repository,
) -> Services:
    """Construct store, bus, allocator, runtime and orchestrator from config."""
    config.ensure_config_dir()
    store = DeploymentStore()
    bus = EventBus(store)
    allocator = PortAllocator(config.PORT_MIN, config.PORT_MAX)
    runtime = ContainerRuntime(
        allocator,
        docker_client,
        probe_timeout=config.PROBE_TIMEOUT,
        probe_interval=config.PROBE_INTERVAL,
    )
    orchestrator = BuildOrchestrator(
        store,
        bus,
        runtime,
        allocator,
        builds_dir=config.BUILDS_DIR,
        cloner=cloner,
        public_host=config.PUBLIC_HOST,
    )
    return Services(
        store=store, bus=bus, allocator=allocator, runtime=runtime, orchestrator=orchestrator
    )
