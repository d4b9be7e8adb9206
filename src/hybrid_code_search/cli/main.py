"""Main CLI application for Hybrid Code Search."""

import sys

import typer
from loguru import logger

from .. import __version__
from .commands.index import delete_command, index_command, refresh_command
from .commands.search import search_command
from .commands.status import diagnostics_command, status_command
from .commands.watch import watch_command

app = typer.Typer(
    name="hybrid-search",
    help="🔎 Hybrid BM25 + vector code search for local workspaces",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    """Route loguru output to stderr; debug detail only with --verbose."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"hybrid-search {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug logging"
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    setup_logging(verbose)


app.command("index")(index_command)
app.command("refresh")(refresh_command)
app.command("search")(search_command)
app.command("status")(status_command)
app.command("diagnostics")(diagnostics_command)
app.command("delete")(delete_command)
app.command("watch")(watch_command)


def cli_main() -> None:
    app()


if __name__ == "__main__":
    cli_main()
