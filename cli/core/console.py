from contextlib import contextmanager
from typing import Any, Generator, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "dim",
    "building": "cyan",
    "deploying": "blue",
    "running": "green",
    "failed": "red",
    "stopped": "yellow",
}


def info(msg: str) -> None:
    console.print(f"[bold blue]ℹ[/] {msg}")


def success(msg: str) -> None:
    console.print(f"[bold green]✓[/] {msg}")


def warning(msg: str) -> None:
    console.print(f"[bold yellow]⚠[/] {msg}")


def error(msg: str) -> None:
    console.print(f"[bold red]✗[/] {msg}")


def styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/]"


def log_line(line: str) -> None:
    """Print a raw build/runtime line without interpreting rich markup in it."""
    console.print(escape(line), highlight=False)


@contextmanager
def status_spinner(msg: str) -> Generator[None, None, None]:
    with console.status(f"[bold cyan]{msg}..."):
        yield


def print_table(title: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
    table = Table(title=title, show_lines=False)
    for col in columns:
        table.add_column(col, style="cyan")
    for row in rows:
        table.add_row(*("-" if v is None else str(v) for v in row))
    console.print(table)
