"""Persistence for projects and deployments.

Every method opens its own short session and returns plain dataclasses, so
callers on build threads never hold ORM objects across sessions.  Writes
that depend on current row state are expressed as single conditional
``UPDATE`` statements keyed by id, which makes each transition idempotent
and free of lost updates between threads.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update

from cli.core.crypto import dump_env, load_env
from cli.core.database import get_session, init_db
from cli.core.exceptions import ProjectNotFoundError
from cli.models.deployment import SEALED_STATUSES, Deployment, DeploymentStatus
from cli.models.project import Project

_DEPLOYMENT_FIELDS = frozenset(
    {"image_tag", "container_id", "port", "commit_sha", "commit_message", "finished_at"}
)


def utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


@dataclass
class ProjectInfo:
    id: int
    name: str
    owner: str
    repo_url: str
    branch: str
    buildpack: str | None
    env_vars: dict[str, str] = field(default_factory=dict)
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, p: Project) -> ProjectInfo:
        return cls(
            id=p.id,
            name=p.name,
            owner=p.owner,
            repo_url=p.repo_url,
            branch=p.branch,
            buildpack=p.buildpack,
            env_vars=load_env(p.env_vars),
            created_at=p.created_at,
        )


@dataclass
class DeploymentInfo:
    id: str
    project_id: int
    status: DeploymentStatus
    log: str
    image_tag: str | None
    container_id: str | None
    port: int | None
    commit_sha: str | None
    commit_message: str | None
    started_at: datetime | None
    finished_at: datetime | None

    @classmethod
    def from_model(cls, d: Deployment) -> DeploymentInfo:
        return cls(
            id=d.id,
            project_id=d.project_id,
            status=DeploymentStatus(d.status),
            log=d.log or "",
            image_tag=d.image_tag,
            container_id=d.container_id,
            port=d.port,
            commit_sha=d.commit_sha,
            commit_message=d.commit_message,
            started_at=d.started_at,
            finished_at=d.finished_at,
        )


class DeploymentStore:
    """Project and deployment records backed by the SQLAlchemy session."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        init_db()

    # ── Projects ──────────────────────────────────────────────

    def create_project(
        self,
        name: str,
        repo_url: str,
        *,
        branch: str = "main",
        owner: str = "default",
        env_vars: dict[str, str] | None = None,
    ) -> ProjectInfo:
        with get_session() as session:
            project = Project(
                name=name,
                owner=owner,
                repo_url=repo_url,
                branch=branch,
                env_vars=dump_env(env_vars or {}),
            )
            session.add(project)
            session.flush()
            return ProjectInfo.from_model(project)

    def get_project(self, project_id: int) -> ProjectInfo | None:
        with get_session() as session:
            project = session.get(Project, project_id)
            return ProjectInfo.from_model(project) if project else None

    def find_project(self, name: str, owner: str | None = None) -> ProjectInfo | None:
        with get_session() as session:
            q = session.query(Project).filter(Project.name == name)
            if owner:
                q = q.filter(Project.owner == owner)
            project = q.order_by(Project.id).first()
            return ProjectInfo.from_model(project) if project else None

    def list_projects(self) -> list[ProjectInfo]:
        with get_session() as session:
            projects = session.query(Project).order_by(Project.name).all()
            return [ProjectInfo.from_model(p) for p in projects]

    def find_projects_for_repo(self, repo_fragment: str, branch: str) -> list[ProjectInfo]:
        """Projects whose repository URL contains *repo_fragment* on *branch*."""
        with get_session() as session:
            projects = (
                session.query(Project)
                .filter(Project.repo_url.contains(repo_fragment), Project.branch == branch)
                .order_by(Project.id)
                .all()
            )
            return [ProjectInfo.from_model(p) for p in projects]

    def set_env_vars(self, project_id: int, env_vars: dict[str, str]) -> None:
        with self._lock, get_session() as session:
            project = session.get(Project, project_id)
            if project is None:
                raise ProjectNotFoundError(f"Project {project_id} not found")
            project.env_vars = dump_env(env_vars)

    def set_buildpack(self, project_id: int, buildpack: str) -> None:
        with get_session() as session:
            session.execute(
                update(Project).where(Project.id == project_id).values(buildpack=buildpack)
            )

    # ── Deployments ───────────────────────────────────────────

    def create_deployment(
        self,
        project_id: int,
        *,
        commit_sha: str | None = None,
        commit_message: str | None = None,
    ) -> DeploymentInfo:
        with get_session() as session:
            if session.get(Project, project_id) is None:
                raise ProjectNotFoundError(f"Project {project_id} not found")
            dep = Deployment(
                id=uuid.uuid4().hex,
                project_id=project_id,
                status=DeploymentStatus.PENDING.value,
                log="",
                commit_sha=commit_sha,
                commit_message=commit_message,
                started_at=utcnow(),
            )
            session.add(dep)
            session.flush()
            return DeploymentInfo.from_model(dep)

    def get_deployment(self, deployment_id: str) -> DeploymentInfo | None:
        with get_session() as session:
            dep = session.get(Deployment, deployment_id)
            return DeploymentInfo.from_model(dep) if dep else None

    def find_deployment(self, id_or_prefix: str) -> DeploymentInfo | None:
        """Look up a deployment by full id or by an unambiguous id prefix."""
        exact = self.get_deployment(id_or_prefix)
        if exact is not None or not id_or_prefix:
            return exact
        with get_session() as session:
            deps = (
                session.query(Deployment)
                .filter(Deployment.id.startswith(id_or_prefix, autoescape=True))
                .limit(2)
                .all()
            )
            return DeploymentInfo.from_model(deps[0]) if len(deps) == 1 else None

    def list_deployments(self, project_id: int, limit: int = 20) -> list[DeploymentInfo]:
        with get_session() as session:
            deps = (
                session.query(Deployment)
                .filter(Deployment.project_id == project_id)
                .order_by(Deployment.started_at.desc())
                .limit(limit)
                .all()
            )
            return [DeploymentInfo.from_model(d) for d in deps]

    def update_deployment(self, deployment_id: str, **fields: Any) -> None:
        """Set plain attribute fields. Status changes go through :meth:`transition`."""
        unknown = set(fields) - _DEPLOYMENT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update deployment fields: {sorted(unknown)}")
        with self._lock, get_session() as session:
            session.execute(
                update(Deployment).where(Deployment.id == deployment_id).values(**fields)
            )

    def transition(
        self,
        deployment_id: str,
        status: DeploymentStatus,
        *,
        allowed_from: Iterable[DeploymentStatus],
        **fields: Any,
    ) -> bool:
        """Move a deployment to *status* if it is currently in *allowed_from*.

        Returns False (and changes nothing) when the row is missing or in
        another state, so re-applying the same transition is harmless.
        """
        unknown = set(fields) - _DEPLOYMENT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update deployment fields: {sorted(unknown)}")
        sources = [s.value for s in allowed_from]
        with self._lock, get_session() as session:
            result = session.execute(
                update(Deployment)
                .where(Deployment.id == deployment_id, Deployment.status.in_(sources))
                .values(status=status.value, **fields)
            )
            return result.rowcount == 1

    def append_log(self, deployment_id: str, line: str) -> int | None:
        """Append *line* to the deployment log.

        Returns the log length in characters after the append, or None when
        the deployment is missing or already failed/stopped.
        """
        sealed = [s.value for s in SEALED_STATUSES]
        with self._lock, get_session() as session:
            result = session.execute(
                update(Deployment)
                .where(Deployment.id == deployment_id, Deployment.status.not_in(sealed))
                .values(log=func.coalesce(Deployment.log, "") + line + "\n")
            )
            if result.rowcount != 1:
                return None
            return session.execute(
                select(func.length(Deployment.log)).where(Deployment.id == deployment_id)
            ).scalar_one()

    def read_log(self, deployment_id: str) -> str:
        with get_session() as session:
            log = session.execute(
                select(Deployment.log).where(Deployment.id == deployment_id)
            ).scalar_one_or_none()
            return log or ""

    def mark_superseded(self, project_id: int, container_ids: Iterable[str]) -> list[str]:
        """Stop running deployments of *project_id* whose container was replaced."""
        ids = list(container_ids)
        if not ids:
            return []
        with self._lock, get_session() as session:
            deps = (
                session.query(Deployment)
                .filter(
                    Deployment.project_id == project_id,
                    Deployment.status == DeploymentStatus.RUNNING.value,
                    Deployment.container_id.in_(ids),
                )
                .all()
            )
            for dep in deps:
                dep.status = DeploymentStatus.STOPPED.value
                dep.container_id = None
                dep.port = None
                dep.finished_at = dep.finished_at or utcnow()
            return [d.id for d in deps]
