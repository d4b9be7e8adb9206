"""Index commands for Hybrid Code Search CLI."""

import asyncio
from pathlib import Path

import typer
from rich.table import Table

from ...core.factory import ComponentContext, ComponentFactory, handle_cli_errors
from ...core.models import IndexOperationResult
from ..output import console, print_error, print_info, print_success, print_warning


def _workspace(path: Path | None) -> Path:
    return (path or Path.cwd()).expanduser().absolute()


def print_operation_result(result: IndexOperationResult) -> None:
    """Summarise an indexing run and list any per-file errors."""
    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("State", result.state.value)
    table.add_row("Files indexed", str(result.files_processed))
    table.add_row("Files failed", str(result.files_failed))
    table.add_row("Chunks", str(result.chunks_indexed))
    console.print(table)

    for error in result.errors[:10]:
        print_warning(f"{error.code}: {error.message}")
    if len(result.errors) > 10:
        print_warning(f"... and {len(result.errors) - 10} more")


@handle_cli_errors("Indexing")
def index_command(
    path: Path = typer.Argument(
        None, help="Workspace to index (defaults to the current directory)"
    ),
    rebuild: bool = typer.Option(
        False,
        "--rebuild",
        "-r",
        help="Delete the existing index before building",
    ),
) -> None:
    """📚 Build the keyword and vector index for a workspace.

    [bold cyan]Examples:[/bold cyan]

    [green]Index the current directory:[/green]
        $ hybrid-search index

    [green]Start over from an empty index:[/green]
        $ hybrid-search index ~/src/project --rebuild
    """
    result = asyncio.run(_run_index(_workspace(path), rebuild))
    print_operation_result(result)
    if result.cancelled:
        print_warning("Indexing cancelled; index is incomplete")
        raise typer.Exit(1)
    if not result.success:
        print_error(f"Indexing finished in state '{result.state.value}'")
        raise typer.Exit(1)
    print_success(f"Indexed {result.files_processed} files")


async def _run_index(workspace: Path, rebuild: bool) -> IndexOperationResult:
    bundle = ComponentFactory.create_standard_components()
    async with ComponentContext(bundle) as components:
        print_info(f"Indexing {workspace} ({components.index.backend_name} backend)")
        with console.status("Indexing files..."):
            if rebuild:
                return await components.index.rebuild_workspace_index(workspace)
            return await components.index.build_full_index(workspace)


@handle_cli_errors("Refresh")
def refresh_command(
    path: Path = typer.Argument(..., help="Workspace the files belong to"),
    files: list[Path] = typer.Argument(..., help="Files to re-index or drop"),
) -> None:
    """🔄 Re-index specific files; deleted files are removed from the index."""
    workspace = _workspace(path)
    result = asyncio.run(_run_refresh(workspace, files))
    print_operation_result(result)
    if result.files_failed and not result.files_processed:
        raise typer.Exit(1)
    print_success(f"Refreshed {len(files)} paths")


async def _run_refresh(workspace: Path, files: list[Path]) -> IndexOperationResult:
    bundle = ComponentFactory.create_standard_components()
    async with ComponentContext(bundle) as components:
        return await components.index.refresh_paths(workspace, list(files))


@handle_cli_errors("Delete")
def delete_command(
    path: Path = typer.Argument(
        None, help="Workspace to delete (defaults to the current directory)"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
) -> None:
    """🗑️  Delete all index data for a workspace."""
    workspace = _workspace(path)
    if not yes and not typer.confirm(f"Delete the index for {workspace}?"):
        print_info("Aborted")
        raise typer.Exit(0)
    asyncio.run(_run_delete(workspace))
    print_success(f"Deleted index for {workspace}")


async def _run_delete(workspace: Path) -> None:
    bundle = ComponentFactory.create_standard_components()
    async with ComponentContext(bundle) as components:
        await components.index.delete_index(workspace)
