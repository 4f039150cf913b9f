import logging

import click

from cli.core.config import ensure_config_dir
from cli.core.console import success
from cli.core.database import init_db


@click.group()
@click.version_option(version="0.1.0", prog_name="deployhub")
@click.option("-v", "--verbose", is_flag=True, help="Show internal log messages")
def cli(verbose: bool) -> None:
    """deployhub: build and run containers straight from git repositories."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )


@cli.command()
def init() -> None:
    """Initialize deployhub configuration and database."""
    config_dir = ensure_config_dir()
    init_db()
    success(f"Initialized deployhub at {config_dir}")


# Register command groups
from cli.commands.deployment import deployment  # noqa: E402
from cli.commands.env import env  # noqa: E402
from cli.commands.project import project  # noqa: E402

cli.add_command(project)
cli.add_command(env)
cli.add_command(deployment)

if __name__ == "__main__":
    cli()
