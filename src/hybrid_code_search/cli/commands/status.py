"""Status and diagnostics commands for Hybrid Code Search CLI."""

import asyncio
from pathlib import Path

import typer
from rich.table import Table

from ...core.factory import ComponentContext, ComponentFactory, handle_cli_errors
from ...core.models import IndexDiagnostics, IndexStatus
from ..output import console, print_json

_STATE_STYLES = {
    "ready": "green",
    "building": "cyan",
    "indexing": "cyan",
    "stale": "yellow",
    "degraded": "yellow",
    "error": "red",
}


def _workspace(path: Path | None) -> Path:
    return (path or Path.cwd()).expanduser().absolute()


def _render(title: str, values: dict) -> None:
    table = Table(title=title, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in values.items():
        if value is None:
            continue
        text = str(value)
        if key == "state":
            style = _STATE_STYLES.get(text, "dim")
            text = f"[{style}]{text}[/{style}]"
        table.add_row(key.replace("_", " "), text)
    console.print(table)


@handle_cli_errors("Status")
def status_command(
    path: Path = typer.Argument(
        None, help="Workspace (defaults to the current directory)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit status as JSON"),
) -> None:
    """📊 Show the index state and progress counters for a workspace."""
    status = asyncio.run(_run_status(_workspace(path)))
    if json_output:
        print_json(status.to_dict())
    else:
        _render("Index Status", status.to_dict())


async def _run_status(workspace: Path) -> IndexStatus:
    bundle = ComponentFactory.create_standard_components()
    async with ComponentContext(bundle) as components:
        return await components.index.get_status(workspace)


@handle_cli_errors("Diagnostics")
def diagnostics_command(
    path: Path = typer.Argument(
        None, help="Workspace (defaults to the current directory)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit diagnostics as JSON"),
) -> None:
    """🩺 Show aggregate index counts. Never prints file contents."""
    diagnostics = asyncio.run(_run_diagnostics(_workspace(path)))
    if json_output:
        print_json(diagnostics.to_dict())
    else:
        _render("Index Diagnostics", diagnostics.to_dict())


async def _run_diagnostics(workspace: Path) -> IndexDiagnostics:
    bundle = ComponentFactory.create_standard_components()
    async with ComponentContext(bundle) as components:
        return await components.index.get_diagnostics(workspace)
