class DeployHubError(Exception):
    """Base exception for all deployhub errors."""


class CloneError(DeployHubError):
    """Repository clone failed (network, authentication or unknown branch)."""


class DetectionError(DeployHubError):
    """No buildpack matched and the repository has no build file."""


class BuildError(DeployHubError):
    """Image build returned an error."""

    def __init__(self, message: str, lines: list[str] | None = None) -> None:
        super().__init__(message)
        self.lines = lines or []


class ContainerRuntimeError(DeployHubError):
    """Container could not be created, started or controlled."""


class HealthProbeTimeout(DeployHubError):
    """Container did not answer HTTP within the probe window. Never fatal."""


class AllocatorExhausted(DeployHubError):
    """Every port in the configured range is held."""


ExhaustedRange = AllocatorExhausted


class ProjectNotFoundError(DeployHubError):
    """Requested project does not exist."""


class DeploymentNotFoundError(DeployHubError):
    """Requested deployment does not exist."""


class InvalidTransitionError(DeployHubError):
    """Deployment is not in a state that allows the requested action."""
