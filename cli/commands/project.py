import re

import click

from cli.core.buildpacks import get_buildpack
from cli.core.console import console, error, info, print_table, styled_status, success
from cli.core.store import DeploymentStore, ProjectInfo

_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$")


def _get_project(store: DeploymentStore, name: str, owner: str | None = None) -> ProjectInfo:
    project = store.find_project(name, owner)
    if project is None:
        error(f"Project '{name}' not found")
        raise SystemExit(1)
    return project


@click.group()
def project() -> None:
    """Manage projects (git repositories to deploy)."""


@project.command()
@click.option("--name", required=True, help="Project name")
@click.option("--repo", "repo_url", required=True, help="Git repository URL")
@click.option("--branch", default="main", show_default=True, help="Branch to deploy")
@click.option("--owner", default="default", show_default=True, help="Owning user id")
def create(name: str, repo_url: str, branch: str, owner: str) -> None:
    """Register a new project."""
    if not _NAME_RE.match(name):
        error("Project names may only contain letters, digits, dots, hyphens and underscores")
        raise SystemExit(1)
    store = DeploymentStore()
    if store.find_project(name, owner) is not None:
        error(f"Project '{name}' already exists")
        raise SystemExit(1)
    created = store.create_project(name, repo_url, branch=branch, owner=owner)
    success(f"Created project '{created.name}' (id {created.id})")


@project.command("list")
def list_projects() -> None:
    """List all projects."""
    store = DeploymentStore()
    projects = store.list_projects()
    if not projects:
        info("No projects found.")
        return
    rows = []
    for p in projects:
        latest = store.list_deployments(p.id, limit=1)
        status = styled_status(latest[0].status.value) if latest else None
        rows.append((p.id, p.name, p.repo_url, p.branch, p.buildpack, status))
    print_table("Projects", ["ID", "Name", "Repository", "Branch", "Buildpack", "Last deploy"], rows)


@project.command()
@click.argument("name")
@click.option("--owner", default=None, help="Owning user id")
def show(name: str, owner: str | None) -> None:
    """Show a project and its recent deployments."""
    store = DeploymentStore()
    p = _get_project(store, name, owner)

    console.print(f"[bold]{p.name}[/] (id {p.id}, owner {p.owner})")
    console.print(f"  Repository: {p.repo_url}")
    console.print(f"  Branch:     {p.branch}")
    if p.buildpack:
        bp = get_buildpack(p.buildpack)
        label = bp.name if bp else f"{p.buildpack} (repository Dockerfile)"
        console.print(f"  Buildpack:  {label}")
    console.print(f"  Env vars:   {len(p.env_vars)}")

    deployments = store.list_deployments(p.id)
    if not deployments:
        info("No deployments yet.")
        return
    rows = [
        (
            d.id[:8],
            styled_status(d.status.value),
            (d.commit_sha or "")[:7] or None,
            d.port,
            d.started_at.strftime("%Y-%m-%d %H:%M:%S") if d.started_at else None,
        )
        for d in deployments
    ]
    print_table("Deployments", ["ID", "Status", "Commit", "Port", "Started"], rows)
