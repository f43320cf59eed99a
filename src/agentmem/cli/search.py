"""agentmem search — query an agent's memory from the terminal."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from agentmem.cli.common import (
    DEFAULT_AGENT,
    AgentOpt,
    GlobalConfigOpt,
    WorkspaceOpt,
    console,
    open_manager,
)
from agentmem.cli.errors import err_search_unavailable
from agentmem.errors import SearchUnavailable


def search_cmd(
    query: Annotated[str, typer.Argument(help="Natural-language query.")],
    workspace: WorkspaceOpt = Path("."),
    agent: AgentOpt = DEFAULT_AGENT,
    max_results: Annotated[
        int | None,
        typer.Option("--max-results", "-n", min=1, help="Results to return (default from config)."),
    ] = None,
    min_score: Annotated[
        float | None,
        typer.Option("--min-score", min=0.0, help="Drop results scoring below this."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the raw response as JSON."),
    ] = False,
    global_config: GlobalConfigOpt = None,
) -> None:
    """Search memory and print ranked, citable snippets."""
    with open_manager(workspace, agent, global_config) as manager:
        try:
            response = manager.search(query, max_results=max_results, min_score=min_score)
        except SearchUnavailable as exc:
            console.print(err_search_unavailable(str(exc)))
            raise typer.Exit(1) from exc

    if as_json:
        typer.echo(json.dumps(response.to_dict(), indent=2))
        return

    if not response.results:
        console.print("[dim]No matching memories.[/]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Score", justify="right")
    table.add_column("Citation")
    table.add_column("Snippet")
    for result in response.results:
        table.add_row(
            f"{result.score:.2f}",
            f"{result.path}#L{result.start_line}-L{result.end_line}",
            result.snippet,
        )
    console.print(table)

    via = response.model or "keyword index only"
    note = " (fallback provider)" if response.fallback else ""
    console.print(f"[dim]Mode: {response.mode}  |  Model: {via}{note}[/]")
