"""agentmem CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from agentmem.cli.index import index_cmd
from agentmem.cli.init import init_cmd
from agentmem.cli.read import read_cmd
from agentmem.cli.search import search_cmd
from agentmem.cli.status import status_cmd


def _package_version() -> str:
    try:
        return importlib.metadata.version("agentmem")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"agentmem {_package_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="agentmem",
    help=(
        "agentmem — per-agent long-term memory search.\n\n"
        "  agentmem init    Create MEMORY.md, memory/ and a config template.\n"
        "  agentmem index   Index MEMORY.md and memory/*.md for an agent.\n"
        "  agentmem search  Hybrid (semantic + keyword) search with citations."
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
        typer.Option("--verbose", "-v", help="Log indexing and provider activity."),
    ] = False,
) -> None:
    """agentmem — per-agent long-term memory search."""
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(show_path=False)],
        )


app.command("init")(init_cmd)
app.command("index")(index_cmd)
app.command("search")(search_cmd)
app.command("status")(status_cmd)
app.command("read")(read_cmd)


if __name__ == "__main__":
    app()
