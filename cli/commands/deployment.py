import click

import cli.core.config as config
from cli.core.console import (
    console,
    error,
    info,
    log_line,
    print_table,
    status_spinner,
    styled_status,
    success,
    warning,
)
from cli.core.exceptions import ContainerRuntimeError, DeployHubError
from cli.core.services import Services, build_services
from cli.core.store import DeploymentInfo, DeploymentStore
from cli.models.deployment import DeploymentStatus


def _get_deployment(store: DeploymentStore, dep_id: str) -> DeploymentInfo:
    dep = store.find_deployment(dep_id)
    if dep is None:
        error(f"Deployment '{dep_id}' not found")
        raise SystemExit(1)
    return dep


def _follow(services: Services, deployment_id: str, quiet: bool) -> DeploymentInfo:
    """Print the deployment's log live until the pipeline reaches a terminal status."""
    with services.bus.subscribe(deployment_id) as sub:
        history = services.store.read_log(deployment_id)
        seen = len(history)
        if not quiet:
            for line in history.splitlines():
                log_line(line)
        while True:
            event = sub.get(timeout=0.5)
            if event is None:
                if not services.orchestrator.wait(deployment_id, timeout=0):
                    continue
                event = sub.get_nowait()
                if event is None:
                    break
            if event.kind == "log":
                # Already printed as part of the history snapshot.
                if event.offset is not None and event.offset <= seen:
                    continue
                seen = event.offset or seen
                if not quiet and event.line is not None:
                    log_line(event.line)
            elif event.status is not None and event.status.is_terminal:
                break
    services.orchestrator.wait(deployment_id)
    final = services.store.get_deployment(deployment_id)
    assert final is not None
    return final


@click.group()
def deployment() -> None:
    """Trigger and manage deployments."""


@deployment.command()
@click.argument("project_name")
@click.option("--revision", default=None, help="Commit the deployment is for")
@click.option("--message", default=None, help="Commit message to record")
@click.option("--quiet", is_flag=True, help="Do not print build output")
def trigger(project_name: str, revision: str | None, message: str | None, quiet: bool) -> None:
    """Build and deploy the latest commit of a project."""
    services = build_services()
    project = services.store.find_project(project_name)
    if project is None:
        error(f"Project '{project_name}' not found")
        raise SystemExit(1)

    try:
        services.runtime.reclaim_ports()
    except ContainerRuntimeError as exc:
        warning(f"Could not inspect running containers: {exc}")

    dep = services.orchestrator.trigger_build(project.id, revision=revision, message=message)
    info(f"Deployment {dep.id[:8]} started for '{project.name}'")

    if quiet:
        with status_spinner(f"Deploying '{project.name}'"):
            final = _follow(services, dep.id, quiet=True)
    else:
        final = _follow(services, dep.id, quiet=False)

    if final.status == DeploymentStatus.RUNNING:
        success(f"'{project.name}' is running at http://{config.PUBLIC_HOST}:{final.port}")
        return
    error(f"Deployment {dep.id[:8]} {final.status.value}")
    raise SystemExit(1)


@deployment.command("list")
@click.argument("project_name")
@click.option("--limit", default=20, show_default=True, help="Number of deployments")
def list_deployments(project_name: str, limit: int) -> None:
    """List recent deployments of a project."""
    store = DeploymentStore()
    project = store.find_project(project_name)
    if project is None:
        error(f"Project '{project_name}' not found")
        raise SystemExit(1)
    deployments = store.list_deployments(project.id, limit=limit)
    if not deployments:
        info(f"No deployments for '{project_name}'")
        return
    rows = [
        (
            d.id[:8],
            styled_status(d.status.value),
            (d.commit_sha or "")[:7] or None,
            d.image_tag,
            d.port,
            d.started_at.strftime("%Y-%m-%d %H:%M:%S") if d.started_at else None,
        )
        for d in deployments
    ]
    print_table(
        f"Deployments: {project_name}",
        ["ID", "Status", "Commit", "Image", "Port", "Started"],
        rows,
    )


@deployment.command()
@click.argument("dep_id")
def show(dep_id: str) -> None:
    """Show a deployment and its build log."""
    dep = _get_deployment(DeploymentStore(), dep_id)
    console.print(f"[bold]Deployment {dep.id}[/] {styled_status(dep.status.value)}")
    if dep.commit_sha:
        console.print(f"  Commit:    {dep.commit_sha}")
    if dep.commit_message:
        console.print(f"  Message:   {dep.commit_message}")
    if dep.image_tag:
        console.print(f"  Image:     {dep.image_tag}")
    if dep.container_id:
        console.print(f"  Container: {dep.container_id[:12]}")
    if dep.port:
        console.print(f"  URL:       http://{config.PUBLIC_HOST}:{dep.port}")
    if dep.log:
        console.print()
        for line in dep.log.splitlines():
            log_line(line)


@deployment.command()
@click.argument("dep_id")
@click.option("--container", is_flag=True, help="Show the running container's output")
@click.option("--tail", default=100, show_default=True, help="Container log lines")
def logs(dep_id: str, container: bool, tail: int) -> None:
    """Print the build log, or the container output with --container."""
    if not container:
        dep = _get_deployment(DeploymentStore(), dep_id)
        if not dep.log:
            info(f"No log recorded for deployment {dep.id[:8]}")
            return
        for line in dep.log.splitlines():
            log_line(line)
        return

    services = build_services()
    dep = _get_deployment(services.store, dep_id)
    try:
        output = services.orchestrator.container_logs(dep.id, tail=tail)
    except DeployHubError as exc:
        error(str(exc))
        raise SystemExit(1)
    console.print(output, markup=False, highlight=False)


@deployment.command()
@click.argument("dep_id")
def stop(dep_id: str) -> None:
    """Stop a running deployment and free its port."""
    services = build_services()
    dep = _get_deployment(services.store, dep_id)
    try:
        with status_spinner(f"Stopping {dep.id[:8]}"):
            services.orchestrator.stop_deployment(dep.id)
    except DeployHubError as exc:
        error(str(exc))
        raise SystemExit(1)
    success(f"Deployment {dep.id[:8]} stopped")


@deployment.command()
@click.argument("dep_id")
def restart(dep_id: str) -> None:
    """Restart a running deployment's container in place."""
    services = build_services()
    dep = _get_deployment(services.store, dep_id)
    try:
        with status_spinner(f"Restarting {dep.id[:8]}"):
            services.orchestrator.restart_deployment(dep.id)
    except DeployHubError as exc:
        error(str(exc))
        raise SystemExit(1)
    success(f"Deployment {dep.id[:8]} restarted")


@deployment.command()
def containers() -> None:
    """List containers managed by deployhub."""
    services = build_services()
    try:
        managed = services.runtime.list_managed()
    except ContainerRuntimeError as exc:
        error(str(exc))
        raise SystemExit(1)
    if not managed:
        info("No managed containers.")
        return
    rows = [
        (
            c["id"][:12],
            c["name"],
            c["project"],
            c["deployment"][:8] or None,
            c["state"],
            ", ".join(str(p) for p in c["ports"]) or None,
        )
        for c in managed
    ]
    print_table("Containers", ["ID", "Name", "Project", "Deployment", "State", "Ports"], rows)
