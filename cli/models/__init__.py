from cli.models.deployment import Deployment, DeploymentStatus
from cli.models.project import Project

__all__ = [
    "Project",
    "Deployment",
    "DeploymentStatus",
]
