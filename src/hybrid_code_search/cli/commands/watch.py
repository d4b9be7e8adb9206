"""Watch command for Hybrid Code Search CLI."""

import asyncio
from pathlib import Path

import typer

from ...core.factory import ComponentContext, ComponentFactory, handle_cli_errors
from ...core.file_discovery import FileDiscovery
from ...core.watcher import FileWatcher
from ..output import print_info, print_success


@handle_cli_errors("Watch")
def watch_command(
    path: Path = typer.Argument(
        None, help="Workspace to watch (defaults to the current directory)"
    ),
    initial_index: bool = typer.Option(
        False, "--index", help="Build the index before watching"
    ),
) -> None:
    """👀 Keep the index up to date as files change. Stop with Ctrl+C."""
    workspace = (path or Path.cwd()).expanduser().absolute()
    try:
        asyncio.run(_run_watch(workspace, initial_index))
    except KeyboardInterrupt:
        print_success("Stopped watching")


async def _run_watch(workspace: Path, initial_index: bool) -> None:
    bundle = ComponentFactory.create_standard_components()
    settings = bundle.settings
    async with ComponentContext(bundle) as components:
        if initial_index:
            result = await components.index.build_full_index(workspace)
            print_info(
                f"Indexed {result.files_processed} files (state: {result.state.value})"
            )

        discovery = FileDiscovery(
            workspace,
            file_extensions=settings.file_extensions,
            ignore_patterns=settings.ignore_patterns,
        )
        async with FileWatcher(
            workspace, components.index, discovery, debounce_ms=settings.debounce_ms
        ):
            print_info(f"Watching {workspace} for changes (Ctrl+C to stop)")
            await asyncio.Event().wait()
