"""Pydantic schemas for API request/response models."""

import re
from datetime import datetime
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

from cli.models.deployment import DeploymentStatus

# Reusable validation patterns
_SAFE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$")
_BRANCH_PATTERN = re.compile(r"^[a-zA-Z0-9._/-]+$")
_ENV_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_REPO_URL_PATTERN = re.compile(
    r"^https://[a-zA-Z0-9]([a-zA-Z0-9._-]*[a-zA-Z0-9])?"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9._-]*[a-zA-Z0-9])?)*"
    r"(:[0-9]{1,5})?"
    r"(/[a-zA-Z0-9._~:@!$&'()*+,;=%-]*)+$"
)


def _validate_safe_name(v: str) -> str:
    if not _SAFE_NAME_PATTERN.match(v):
        raise ValueError("Only alphanumeric characters, dots, hyphens, and underscores allowed")
    return v


def _validate_repo_url(v: str) -> str:
    if not _REPO_URL_PATTERN.match(v):
        raise ValueError(
            "repo_url must be an HTTPS URL (e.g. https://github.com/user/repo.git)"
        )
    hostname = urlparse(v).hostname or ""
    _blocked_prefixes = ("localhost", "127.", "0.0.0.0", "169.254.", "10.")
    if any(hostname.startswith(b) for b in _blocked_prefixes):
        raise ValueError("repo_url must not point to localhost or private addresses")
    if hostname.endswith(".local") or hostname == "::1":
        raise ValueError("repo_url must not point to localhost or private addresses")
    parts = hostname.split(".")
    if len(parts) == 4 and all(p.isdigit() for p in parts):
        first, second = int(parts[0]), int(parts[1])
        if first == 172 and 16 <= second <= 31:
            raise ValueError("repo_url must not point to private addresses")
        if first == 192 and second == 168:
            raise ValueError("repo_url must not point to private addresses")
    return v


# ── Project ─────────────────────────────────────────────


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    repo_url: str = Field(..., min_length=1, max_length=500)
    branch: str = Field(default="main", min_length=1, max_length=255)
    owner: str = Field(default="default", min_length=1, max_length=100)
    env_vars: dict[str, str] = {}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _validate_safe_name(v)

    @field_validator("repo_url")
    @classmethod
    def validate_repo_url(cls, v: str) -> str:
        return _validate_repo_url(v)

    @field_validator("branch")
    @classmethod
    def validate_branch(cls, v: str) -> str:
        if not _BRANCH_PATTERN.match(v) or v.startswith("-"):
            raise ValueError("Invalid branch name")
        return v

    @field_validator("env_vars")
    @classmethod
    def validate_env_keys(cls, v: dict[str, str]) -> dict[str, str]:
        for key in v:
            if not _ENV_KEY_PATTERN.match(key):
                raise ValueError(f"Invalid variable name: {key!r}")
        return v


class ProjectOut(BaseModel):
    id: int
    name: str
    owner: str
    repo_url: str
    branch: str
    buildpack: str | None
    env_keys: list[str] = []
    created_at: datetime | None = None


class EnvVarSet(BaseModel):
    key: str = Field(..., min_length=1, max_length=255)
    value: str

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        if not _ENV_KEY_PATTERN.match(v):
            raise ValueError("Variable names must be letters, digits and underscores")
        return v


# ── Deployment ──────────────────────────────────────────


class TriggerRequest(BaseModel):
    revision: str | None = Field(default=None, max_length=64)
    message: str | None = Field(default=None, max_length=1000)


class DeploymentOut(BaseModel):
    id: str
    project_id: int
    status: DeploymentStatus
    image_tag: str | None
    container_id: str | None
    port: int | None
    url: str | None = None
    commit_sha: str | None
    commit_message: str | None
    started_at: datetime | None
    finished_at: datetime | None

    model_config = {"from_attributes": True}


class DeploymentLog(BaseModel):
    deployment_id: str
    status: DeploymentStatus
    log: str


class ContainerLogs(BaseModel):
    deployment_id: str
    tail: int
    logs: str
