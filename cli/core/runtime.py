"""Container engine adapter: image builds and managed container lifecycle."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import docker
import docker.errors
import httpx

from cli.core.exceptions import BuildError, ContainerRuntimeError, HealthProbeTimeout
from cli.core.ports import PortAllocator

logger = logging.getLogger(__name__)

LABEL_MANAGED = "deployhub.managed"
LABEL_PROJECT = "deployhub.project"
LABEL_PROJECT_NAME = "deployhub.project_name"
LABEL_DEPLOYMENT = "deployhub.deployment"


@dataclass
class ContainerHandle:
    """A started container and where it can be reached."""

    id: str
    name: str
    port: int
    container_port: int
    ready: bool = False
    replaced: list[str] = field(default_factory=list)


class ContainerRuntime:
    """The only component that talks to the container engine.

    The docker client is created on first use so that constructing the
    runtime (e.g. at API import time) never requires a running daemon.
    """

    def __init__(
        self,
        allocator: PortAllocator,
        client: Any | None = None,
        *,
        probe_timeout: float = 30.0,
        probe_interval: float = 1.0,
    ) -> None:
        self.allocator = allocator
        self._client = client
        self.probe_timeout = probe_timeout
        self.probe_interval = probe_interval

    @property
    def client(self) -> Any:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except docker.errors.DockerException as exc:
                raise ContainerRuntimeError(f"Cannot connect to container engine: {exc}") from exc
        return self._client

    # ── Images ────────────────────────────────────────────────

    def build_image(self, context_dir: Path, tag: str) -> Iterator[str]:
        """Build *context_dir* as *tag*, yielding engine output line by line.

        Engine error lines are yielded as they arrive; once the stream ends
        a :class:`BuildError` carrying them is raised.
        """
        errors: list[str] = []
        try:
            stream = self.client.api.build(
                path=str(context_dir), tag=tag, rm=True, forcerm=True, decode=True
            )
            for chunk in stream:
                if "stream" in chunk:
                    for line in chunk["stream"].splitlines():
                        if line.strip():
                            yield line
                elif "error" in chunk:
                    msg = chunk["error"].strip()
                    errors.append(msg)
                    yield f"ERROR: {msg}"
                elif "status" in chunk:
                    status = chunk["status"]
                    if chunk.get("progress") is None and status.strip():
                        yield status if "id" not in chunk else f"{chunk['id']}: {status}"
        except docker.errors.APIError as exc:
            raise BuildError(f"Image build failed: {exc.explanation or exc}", errors) from exc
        if errors:
            raise BuildError(f"Image build failed: {errors[-1]}", errors)

    def exposed_port(self, image_tag: str) -> int | None:
        """First port the image declares with EXPOSE, if any."""
        try:
            attrs = self.client.images.get(image_tag).attrs
        except docker.errors.DockerException:
            return None
        exposed = (attrs.get("Config") or {}).get("ExposedPorts") or {}
        for port_key in exposed:
            try:
                return int(str(port_key).split("/", 1)[0])
            except ValueError:
                continue
        return None

    # ── Containers ────────────────────────────────────────────

    def run_container(
        self,
        image_tag: str,
        env_vars: Mapping[str, str],
        host_port: int,
        *,
        project_id: int | str,
        project_name: str,
        container_name: str,
        deployment_id: str = "",
        log_fn: Callable[[str], None] | None = None,
    ) -> ContainerHandle:
        """Start *image_tag* bound to *host_port*, replacing the project's old containers."""

        def _log(msg: str) -> None:
            if log_fn is not None:
                log_fn(msg)

        replaced = self.remove_project_containers(project_id)
        if replaced:
            _log(f"Removed {len(replaced)} previous container(s)")

        container_port = self.exposed_port(image_tag) or host_port
        environment = dict(env_vars)
        environment["PORT"] = str(container_port)

        try:
            container = self.client.containers.create(
                image_tag,
                name=container_name,
                environment=environment,
                ports={f"{container_port}/tcp": host_port},
                labels={
                    LABEL_MANAGED: "true",
                    LABEL_PROJECT: str(project_id),
                    LABEL_PROJECT_NAME: project_name,
                    LABEL_DEPLOYMENT: deployment_id,
                },
                restart_policy={"Name": "always"},
            )
        except docker.errors.DockerException as exc:
            raise ContainerRuntimeError(f"Failed to create container: {exc}") from exc

        try:
            container.start()
        except docker.errors.DockerException as exc:
            try:
                self._discard(container)
            except docker.errors.DockerException as cleanup_exc:
                logger.warning("Could not remove unstarted container %s: %s", container.id, cleanup_exc)
            raise ContainerRuntimeError(f"Failed to start container: {exc}") from exc

        _log(f"Container {container.id[:12]} started, waiting for port {host_port}")
        try:
            self.wait_until_ready(container, host_port)
        except HealthProbeTimeout as exc:
            # Not fatal: the container keeps running.
            logger.warning("%s", exc)
            _log(f"{exc}; it may still be starting")
            ready = False
        else:
            _log("Container is responding")
            ready = True
        return ContainerHandle(
            id=container.id,
            name=container_name,
            port=host_port,
            container_port=container_port,
            ready=ready,
            replaced=replaced,
        )

    def wait_until_ready(self, container: Any, port: int) -> None:
        """Poll until the container runs and answers HTTP.

        Raises :class:`HealthProbeTimeout` once ``probe_timeout`` elapses.
        """
        deadline = time.monotonic() + self.probe_timeout
        while True:
            try:
                container.reload()
                if container.status == "running" and self._probe(port):
                    return
            except docker.errors.DockerException as exc:
                logger.debug("Readiness check for %s failed: %s", container.id, exc)
            if time.monotonic() + self.probe_interval > deadline:
                break
            time.sleep(self.probe_interval)
        raise HealthProbeTimeout(
            f"Container {container.id[:12]} did not answer within {self.probe_timeout:g}s"
        )

    def _probe(self, port: int) -> bool:
        try:
            httpx.head(f"http://127.0.0.1:{port}", timeout=1.0)
        except httpx.HTTPError:
            return False
        return True

    def remove_project_containers(self, project_id: int | str) -> list[str]:
        """Stop and remove every managed container of *project_id*. Best-effort."""
        try:
            containers = self.client.containers.list(
                all=True, filters={"label": [f"{LABEL_PROJECT}={project_id}"]}
            )
        except docker.errors.DockerException as exc:
            logger.warning("Could not list containers for project %s: %s", project_id, exc)
            return []
        removed: list[str] = []
        for container in containers:
            ports = _host_ports(container)
            try:
                self._discard(container, stop=True)
            except docker.errors.NotFound:
                # Already removed by a concurrent deployment.
                pass
            except docker.errors.DockerException as exc:
                logger.warning("Failed to remove stale container %s: %s", container.id, exc)
                continue
            for port in ports:
                self.allocator.release(port)
            removed.append(container.id)
        return removed

    def stop(self, container_id: str) -> None:
        """Stop and remove a container, returning its host ports to the allocator."""
        try:
            container = self.client.containers.get(container_id)
        except docker.errors.NotFound:
            logger.info("Container %s already gone", container_id)
            return
        except docker.errors.DockerException as exc:
            raise ContainerRuntimeError(f"Cannot inspect container {container_id}: {exc}") from exc
        try:
            self._discard(container, stop=True)
        except docker.errors.NotFound:
            pass
        except docker.errors.DockerException as exc:
            # Still bound; keep its ports out of circulation.
            raise ContainerRuntimeError(f"Failed to stop container {container_id}: {exc}") from exc
        self._release_ports(container)

    def restart(self, container_id: str) -> None:
        try:
            self.client.containers.get(container_id).restart()
        except docker.errors.DockerException as exc:
            raise ContainerRuntimeError(f"Failed to restart container {container_id}: {exc}") from exc

    def fetch_logs(self, container_id: str, tail: int = 100) -> str:
        tail = max(1, min(tail, 10000))  # clamp to sane range
        try:
            raw = self.client.containers.get(container_id).logs(
                stdout=True, stderr=True, tail=tail, timestamps=True
            )
        except docker.errors.DockerException as exc:
            raise ContainerRuntimeError(f"Failed to fetch logs for {container_id}: {exc}") from exc
        return raw.decode(errors="replace") if isinstance(raw, bytes) else str(raw)

    def list_managed(self) -> list[dict[str, Any]]:
        try:
            containers = self.client.containers.list(
                all=True, filters={"label": [f"{LABEL_MANAGED}=true"]}
            )
        except docker.errors.DockerException as exc:
            raise ContainerRuntimeError(f"Cannot list managed containers: {exc}") from exc
        return [
            {
                "id": c.id,
                "name": c.name,
                "project": c.labels.get(LABEL_PROJECT_NAME, ""),
                "deployment": c.labels.get(LABEL_DEPLOYMENT, ""),
                "state": c.status,
                "ports": _host_ports(c),
            }
            for c in containers
        ]

    def reclaim_ports(self) -> list[int]:
        """Reserve host ports already bound by running managed containers."""
        reserved: list[int] = []
        for info in self.list_managed():
            if info["state"] != "running":
                continue
            for port in info["ports"]:
                if self.allocator.reserve(port):
                    reserved.append(port)
        return reserved

    def _release_ports(self, container: Any) -> None:
        for port in _host_ports(container):
            self.allocator.release(port)

    @staticmethod
    def _discard(container: Any, *, stop: bool = False) -> None:
        if stop:
            try:
                container.stop(timeout=10)
            except docker.errors.APIError as exc:
                if isinstance(exc, docker.errors.NotFound):
                    raise
                logger.debug("Stop of %s failed, forcing removal: %s", container.id, exc)
        container.remove(force=True)


def _host_ports(container: Any) -> list[int]:
    bindings = ((container.attrs or {}).get("HostConfig") or {}).get("PortBindings") or {}
    ports: list[int] = []
    for entries in bindings.values():
        for binding in entries or []:
            host_port = binding.get("HostPort")
            if host_port and str(host_port).isdigit():
                ports.append(int(host_port))
    return ports
