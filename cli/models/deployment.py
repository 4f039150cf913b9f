from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cli.core.database import Base

if TYPE_CHECKING:
    from cli.models.project import Project


class DeploymentStatus(str, enum.Enum):
    PENDING = "pending"
    BUILDING = "building"
    DEPLOYING = "deploying"
    RUNNING = "running"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {DeploymentStatus.RUNNING, DeploymentStatus.FAILED, DeploymentStatus.STOPPED}
)
# Log text is frozen once a deployment reaches one of these.
SEALED_STATUSES = frozenset({DeploymentStatus.FAILED, DeploymentStatus.STOPPED})
IN_FLIGHT_STATUSES = frozenset(
    {DeploymentStatus.PENDING, DeploymentStatus.BUILDING, DeploymentStatus.DEPLOYING}
)


class Deployment(Base):
    __tablename__ = "deployments"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=DeploymentStatus.PENDING.value)
    log: Mapped[str] = mapped_column(Text, default="")
    image_tag: Mapped[str | None] = mapped_column(String(255))
    container_id: Mapped[str | None] = mapped_column(String(64))
    port: Mapped[int | None] = mapped_column(Integer)
    commit_sha: Mapped[str | None] = mapped_column(String(40))
    commit_message: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime] = mapped_column(default=func.now())
    finished_at: Mapped[datetime | None] = mapped_column()

    project: Mapped[Project] = relationship(back_populates="deployments")

    def __repr__(self) -> str:
        return f"<Deployment {self.id} project_id={self.project_id} status={self.status}>"
