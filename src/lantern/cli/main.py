"""lantern CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from lantern.cli.ingest import ingest_cmd
from lantern.cli.init import init_cmd
from lantern.cli.promote import promote_cmd
from lantern.cli.purge import purge_cmd
from lantern.cli.search import search_cmd
from lantern.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("lantern")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"lantern {_installed_version()}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    """Route library logs through rich; DEBUG with --verbose, WARNING otherwise."""
    root = logging.getLogger("lantern")
    root.handlers.clear()
    root.addHandler(RichHandler(show_path=False, rich_tracebacks=verbose))
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


app = typer.Typer(
    name="lantern",
    help=(
        "lantern — hybrid retrieval store.\n\n"
        "  lantern ingest   Chunk, embed and upsert text into a namespace/slot.\n"
        "  lantern search   Dense + lexical + recency ranking with MMR diversity.\n"
        "  lantern promote  Copy a namespace from staging to prod."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """lantern — hybrid retrieval store."""
    _configure_logging(verbose)


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("search")(search_cmd)
app.command("promote")(promote_cmd)
app.command("purge")(purge_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed lantern version."""
    typer.echo(f"lantern {_installed_version()}")


if __name__ == "__main__":
    app()
