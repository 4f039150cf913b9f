"""Build-and-deploy pipeline for a single deployment.

``trigger_build()`` records a ``pending`` deployment and hands the id to a
background thread that runs :meth:`BuildOrchestrator.run`: clone, detect,
build, run.  The thread shares nothing with the caller except the
deployment id; progress is observable only through the event bus and the
persisted deployment record.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import threading
from collections.abc import Callable
from pathlib import Path

from cli.core import buildpacks
from cli.core.events import EventBus
from cli.core.exceptions import (
    DeployHubError,
    DeploymentNotFoundError,
    DetectionError,
    InvalidTransitionError,
    ProjectNotFoundError,
)
from cli.core.git import clone_repository, current_revision, strip_vcs_metadata
from cli.core.ports import PortAllocator
from cli.core.runtime import ContainerHandle, ContainerRuntime
from cli.core.store import DeploymentInfo, DeploymentStore, ProjectInfo, utcnow
from cli.models.deployment import IN_FLIGHT_STATUSES, DeploymentStatus

logger = logging.getLogger(__name__)

Cloner = Callable[[str, str, Path], None]

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Image-name-safe form of *name*: lowercase runs of [a-z0-9] joined by "-"."""
    return _SLUG_RE.sub("-", name.lower()).strip("-") or "project"


def image_tag_for(project_name: str, deployment_id: str, prefix: str = "deployhub") -> str:
    return f"{prefix}/{slugify(project_name)}:{deployment_id[:8]}"


def container_name_for(project_name: str, deployment_id: str) -> str:
    return f"deployhub-{slugify(project_name)}-{deployment_id[:8]}"


class BuildOrchestrator:
    def __init__(
        self,
        store: DeploymentStore,
        bus: EventBus,
        runtime: ContainerRuntime,
        allocator: PortAllocator,
        *,
        builds_dir: Path,
        cloner: Cloner = clone_repository,
        public_host: str = "localhost",
    ) -> None:
        self.store = store
        self.bus = bus
        self.runtime = runtime
        self.allocator = allocator
        self.builds_dir = Path(builds_dir)
        self.cloner = cloner
        self.public_host = public_host
        self._threads: dict[str, threading.Thread] = {}
        self._threads_lock = threading.Lock()

    # ── Entry point ───────────────────────────────────────────

    def trigger_build(
        self,
        project_id: int,
        *,
        revision: str | None = None,
        message: str | None = None,
    ) -> DeploymentInfo:
        """Create a pending deployment and start its pipeline in the background."""
        if self.store.get_project(project_id) is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        dep = self.store.create_deployment(project_id, commit_sha=revision, commit_message=message)

        thread = threading.Thread(
            target=self.run,
            args=(dep.id,),
            name=f"build-{dep.id[:8]}",
            daemon=True,
        )
        with self._threads_lock:
            self._threads[dep.id] = thread
        thread.start()
        return dep

    def wait(self, deployment_id: str, timeout: float | None = None) -> bool:
        """Block until the pipeline thread for *deployment_id* finishes.

        Returns False if the thread is still alive after *timeout*.
        """
        with self._threads_lock:
            thread = self._threads.get(deployment_id)
        if thread is None:
            return True
        thread.join(timeout)
        if thread.is_alive():
            return False
        with self._threads_lock:
            self._threads.pop(deployment_id, None)
        return True

    # ── Pipeline ──────────────────────────────────────────────

    def run(self, deployment_id: str) -> None:
        dep = self.store.get_deployment(deployment_id)
        if dep is None:
            logger.error("Deployment %s does not exist", deployment_id)
            return
        if dep.status != DeploymentStatus.PENDING:
            logger.warning(
                "Deployment %s is already %s, not running it again", deployment_id, dep.status.value
            )
            return

        project = self.store.get_project(dep.project_id)
        work_dir = self.builds_dir / deployment_id
        port: int | None = None
        handle: ContainerHandle | None = None

        def _log(msg: str) -> None:
            self.bus.publish_log(deployment_id, msg)

        try:
            if project is None:
                raise ProjectNotFoundError(f"Project {dep.project_id} not found")

            _log(f"Starting build for {project.name}")
            _log(f"Repository: {project.repo_url}")
            _log(f"Branch: {project.branch}")
            if dep.commit_sha:
                _log(f"Revision: {dep.commit_sha}")

            self._prepare_workdir(work_dir)

            _log("Cloning repository...")
            self.cloner(project.repo_url, project.branch, work_dir)
            _log("Repository cloned")

            if not dep.commit_sha:
                revision = current_revision(work_dir)
                if revision:
                    self.store.update_deployment(deployment_id, commit_sha=revision)
                    _log(f"Checked out commit {revision}")
            strip_vcs_metadata(work_dir)

            self._prepare_build_file(project, work_dir, _log)

            tag = image_tag_for(project.name, deployment_id)
            self._transition(deployment_id, DeploymentStatus.BUILDING, {DeploymentStatus.PENDING})
            _log(f"Building image {tag}")
            for line in self.runtime.build_image(work_dir, tag):
                _log(line)
            _log("Image built successfully")
            self.store.update_deployment(deployment_id, image_tag=tag)

            self._transition(
                deployment_id, DeploymentStatus.DEPLOYING, {DeploymentStatus.BUILDING}
            )
            _log("Deploying container...")
            port = self.allocator.allocate()
            _log(f"Allocated port {port}")
            handle = self.runtime.run_container(
                tag,
                project.env_vars,
                port,
                project_id=project.id,
                project_name=project.name,
                container_name=container_name_for(project.name, deployment_id),
                deployment_id=deployment_id,
                log_fn=_log,
            )
            _log(f"Container deployed: {handle.id[:12]}")

            superseded = self.store.mark_superseded(project.id, handle.replaced)
            for old_id in superseded:
                self.bus.publish_status(old_id, DeploymentStatus.STOPPED)

            url = f"http://{self.public_host}:{handle.port}"
            _log(f"Running on port {handle.port}")
            _log("Deployment complete!")
            _log(f"Access at: {url}")
            self._transition(
                deployment_id,
                DeploymentStatus.RUNNING,
                {DeploymentStatus.DEPLOYING},
                container_id=handle.id,
                port=handle.port,
                finished_at=utcnow(),
            )
            logger.info("Deployment %s of %s running on port %s", deployment_id, project.name, port)
        except Exception as exc:
            if isinstance(exc, DeployHubError):
                logger.error("Deployment %s failed: %s", deployment_id, exc)
            else:
                logger.exception("Unexpected error in deployment %s", deployment_id)
            if handle is not None:
                self._discard_container(handle)
            elif port is not None:
                self.allocator.release(port)
            self._fail(deployment_id, exc)
        finally:
            self._cleanup(work_dir)

    def _prepare_build_file(
        self, project: ProjectInfo, work_dir: Path, _log: Callable[[str], None]
    ) -> None:
        files = sorted(os.listdir(work_dir))
        visible = [f for f in files if not f.startswith(".")]
        _log(f"Files: {', '.join(visible)}")

        if buildpacks.has_custom_build_file(files):
            _log(f"Using existing {buildpacks.DOCKERFILE_NAME}")
            self.store.set_buildpack(project.id, buildpacks.CUSTOM_BUILDPACK)
            return

        bp = buildpacks.detect(files)
        if bp is None:
            raise DetectionError("No buildpack matched and no custom build file present")
        _log(f"Detected buildpack: {bp.name}")
        (work_dir / buildpacks.DOCKERFILE_NAME).write_text(bp.render(project.env_vars))
        _log(f"Generated {buildpacks.DOCKERFILE_NAME}")
        self.store.set_buildpack(project.id, bp.name)

    def _transition(
        self,
        deployment_id: str,
        status: DeploymentStatus,
        allowed_from: set[DeploymentStatus],
        **fields: object,
    ) -> None:
        if not self.store.transition(deployment_id, status, allowed_from=allowed_from, **fields):
            raise InvalidTransitionError(
                f"Deployment {deployment_id} could not move to {status.value}"
            )
        self.bus.publish_status(deployment_id, status)

    def _fail(self, deployment_id: str, exc: Exception) -> None:
        self.bus.publish_log(deployment_id, f"Build failed: {exc}")
        moved = self.store.transition(
            deployment_id,
            DeploymentStatus.FAILED,
            allowed_from=IN_FLIGHT_STATUSES,
            container_id=None,
            port=None,
            finished_at=utcnow(),
        )
        if moved:
            self.bus.publish_status(deployment_id, DeploymentStatus.FAILED)

    def _discard_container(self, handle: ContainerHandle) -> None:
        try:
            self.runtime.stop(handle.id)
        except DeployHubError as exc:
            logger.warning("Could not remove container %s: %s", handle.id, exc)
        self.allocator.release(handle.port)

    def _prepare_workdir(self, work_dir: Path) -> None:
        if work_dir.exists():
            shutil.rmtree(work_dir)
        work_dir.parent.mkdir(parents=True, exist_ok=True)

    def _cleanup(self, work_dir: Path) -> None:
        try:
            shutil.rmtree(work_dir)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove build directory %s: %s", work_dir, exc)

    # ── Running deployments ───────────────────────────────────

    def _require_running(self, deployment_id: str) -> DeploymentInfo:
        dep = self.store.get_deployment(deployment_id)
        if dep is None:
            raise DeploymentNotFoundError(f"Deployment {deployment_id} not found")
        if dep.status != DeploymentStatus.RUNNING or not dep.container_id:
            raise InvalidTransitionError(
                f"Deployment {deployment_id} is {dep.status.value}, not running"
            )
        return dep

    def stop_deployment(self, deployment_id: str) -> DeploymentInfo:
        dep = self._require_running(deployment_id)
        assert dep.container_id is not None
        self.runtime.stop(dep.container_id)
        self.allocator.release(dep.port)
        self.bus.publish_log(deployment_id, f"Container {dep.container_id[:12]} stopped")
        self.store.transition(
            deployment_id,
            DeploymentStatus.STOPPED,
            allowed_from={DeploymentStatus.RUNNING},
            container_id=None,
            port=None,
            finished_at=dep.finished_at or utcnow(),
        )
        self.bus.publish_status(deployment_id, DeploymentStatus.STOPPED)
        stopped = self.store.get_deployment(deployment_id)
        assert stopped is not None
        return stopped

    def restart_deployment(self, deployment_id: str) -> DeploymentInfo:
        dep = self._require_running(deployment_id)
        assert dep.container_id is not None
        self.runtime.restart(dep.container_id)
        self.bus.publish_log(deployment_id, f"Container {dep.container_id[:12]} restarted")
        return dep

    def container_logs(self, deployment_id: str, tail: int = 100) -> str:
        dep = self._require_running(deployment_id)
        assert dep.container_id is not None
        return self.runtime.fetch_logs(dep.container_id, tail=tail)
