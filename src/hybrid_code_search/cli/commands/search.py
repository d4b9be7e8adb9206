"""Search command for Hybrid Code Search CLI."""

import asyncio
from pathlib import Path

import typer
from rich.panel import Panel
from rich.syntax import Syntax

from ...core.factory import ComponentContext, ComponentFactory, handle_cli_errors
from ...core.file_discovery import uri_to_path
from ...core.models import IndexState, SearchResponse
from ..output import console, print_info, print_json, print_tip, print_warning


@handle_cli_errors("Search")
def search_command(
    query: str = typer.Argument(..., help="What to look for"),
    path: Path = typer.Option(
        None,
        "--path",
        "-p",
        help="Workspace to search (defaults to the current directory)",
    ),
    limit: int = typer.Option(
        10, "--limit", "-n", help="Maximum number of results", min=1, max=200
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit results as JSON"),
) -> None:
    """🔍 Hybrid keyword and semantic search over an indexed workspace.

    [bold cyan]Examples:[/bold cyan]

    [green]Natural-language query:[/green]
        $ hybrid-search search "where are retries handled"

    [green]Machine-readable output:[/green]
        $ hybrid-search search parse_config --json -n 5
    """
    workspace = (path or Path.cwd()).expanduser().absolute()
    response = asyncio.run(_run_search(query, workspace, limit))

    if json_output:
        print_json(response.to_dict())
        return

    if response.state is IndexState.UNINITIALIZED:
        print_warning(f"No index for {workspace}")
        print_tip("Run 'hybrid-search index' first")
        return
    if not response.results:
        print_info(f"No results (index state: {response.state.value})")
        return

    _print_results(response, workspace)


async def _run_search(query: str, workspace: Path, limit: int) -> SearchResponse:
    bundle = ComponentFactory.create_standard_components()
    async with ComponentContext(bundle) as components:
        return await components.search.search(query, workspace, max_results=limit)


def _print_results(response: SearchResponse, workspace: Path) -> None:
    if response.state is not IndexState.READY:
        print_warning(f"Index is {response.state.value}; results may be incomplete")

    for rank, result in enumerate(response.results, start=1):
        file_path = uri_to_path(result.uri)
        try:
            display = file_path.relative_to(workspace).as_posix()
        except ValueError:
            display = str(file_path)
        start_line = result.range.start.line if result.range else 1
        if result.range:
            display = f"{display}:{result.range.start.line}-{result.range.end.line}"

        sources = "+".join(p.value for p in result.provenance)
        body = Syntax(
            result.snippet,
            result.language_id or "text",
            line_numbers=True,
            start_line=start_line,
            word_wrap=True,
        )
        console.print(
            Panel(
                body,
                title=f"[bold]{rank}. {display}[/bold]",
                subtitle=f"[dim]{result.score:.3f} · {sources}[/dim]",
                title_align="left",
                subtitle_align="right",
            )
        )
