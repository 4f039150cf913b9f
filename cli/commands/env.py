import re

import click

from cli.core.console import error, info, print_table, success
from cli.core.store import DeploymentStore, ProjectInfo

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _get_project(store: DeploymentStore, name: str) -> ProjectInfo:
    project = store.find_project(name)
    if project is None:
        error(f"Project '{name}' not found")
        raise SystemExit(1)
    return project


@click.group()
def env() -> None:
    """Manage project environment variables."""


@env.command("set")
@click.argument("project_name")
@click.argument("pairs", nargs=-1, required=True)
def set_env(project_name: str, pairs: tuple[str, ...]) -> None:
    """Set environment variables (KEY=VALUE pairs)."""
    store = DeploymentStore()
    project = _get_project(store, project_name)
    data = dict(project.env_vars)

    for pair in pairs:
        if "=" not in pair:
            error(f"Invalid format: '{pair}'. Expected KEY=VALUE")
            raise SystemExit(1)
        key, value = pair.split("=", 1)
        if not _ENV_KEY_RE.match(key):
            error(f"Invalid variable name: '{key}'")
            raise SystemExit(1)
        data[key] = value

    store.set_env_vars(project.id, data)
    success(f"Set {len(pairs)} variable(s) for '{project_name}'")
    info("Trigger a new deployment to apply the changes.")


@env.command("get")
@click.argument("project_name")
@click.argument("key")
def get_env(project_name: str, key: str) -> None:
    """Print the value of an environment variable."""
    project = _get_project(DeploymentStore(), project_name)
    if key not in project.env_vars:
        error(f"Variable '{key}' not set for '{project_name}'")
        raise SystemExit(1)
    click.echo(project.env_vars[key])


@env.command("list")
@click.argument("project_name")
@click.option("--show-values", is_flag=True, help="Show decrypted values")
def list_env(project_name: str, show_values: bool) -> None:
    """List environment variables for a project."""
    project = _get_project(DeploymentStore(), project_name)
    if not project.env_vars:
        info(f"No environment variables set for '{project_name}'")
        return

    rows = []
    for key in sorted(project.env_vars):
        value = project.env_vars[key] if show_values else "••••••••"
        rows.append((key, value))
    print_table(f"Environment: {project_name}", ["Key", "Value"], rows)


@env.command("delete")
@click.argument("project_name")
@click.argument("key")
def delete_env(project_name: str, key: str) -> None:
    """Delete an environment variable."""
    store = DeploymentStore()
    project = _get_project(store, project_name)
    data = dict(project.env_vars)
    if key not in data:
        error(f"Variable '{key}' not set for '{project_name}'")
        raise SystemExit(1)
    del data[key]
    store.set_env_vars(project.id, data)
    success(f"Deleted '{key}' from '{project_name}'")
