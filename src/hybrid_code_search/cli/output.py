"""Rich console helpers shared by CLI commands."""

import orjson
import typer
from rich.console import Console
from rich.markup import escape

console = Console()


def print_error(message: str) -> None:
    console.print(f"[red]✗[/red] {escape(message)}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {escape(message)}")


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {message}")


def print_tip(message: str) -> None:
    console.print(f"[dim]💡 {message}[/dim]")


def print_json(data: object) -> None:
    """Print data as JSON without rich markup so it can be piped."""
    typer.echo(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())
