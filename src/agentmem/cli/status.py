"""agentmem status — provider, index availability and corpus counts."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from agentmem.cli.common import (
    DEFAULT_AGENT,
    AgentOpt,
    GlobalConfigOpt,
    WorkspaceOpt,
    console,
    open_manager,
)
from agentmem.cli.errors import err_no_provider
from agentmem.manager import MemoryStatus


def status_cmd(
    workspace: WorkspaceOpt = Path("."),
    agent: AgentOpt = DEFAULT_AGENT,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the status as JSON."),
    ] = False,
    global_config: GlobalConfigOpt = None,
) -> None:
    """Show the active provider, index health and per-source counts."""
    with open_manager(workspace, agent, global_config) as manager:
        status = manager.status()
        candidates = [p.name for p in manager.chain.candidates]

    if as_json:
        typer.echo(json.dumps(status.to_dict(), indent=2))
        return

    _show_provider_panel(status)
    _show_index_panel(status)
    if status.provider is None:
        console.print(err_no_provider(candidates))


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _mark(ok: bool) -> str:
    return "[green]✓[/]" if ok else "[yellow]✗ unavailable[/]"


def _show_provider_panel(status: MemoryStatus) -> None:
    provider = status.provider or "[yellow]none[/]"
    if status.fallback:
        provider += " [yellow](fallback)[/]"
    lines = [
        f"Agent:      [bold]{status.agent_id}[/]",
        f"Requested:  {status.requested_provider}",
        f"Provider:   {provider}",
        f"Model:      {status.model or '-'}",
    ]
    if status.last_error:
        lines.append(f"Last error: [dim]{status.last_error}[/]")
    console.print(Panel("\n".join(lines), title="[bold]Embeddings[/]", expand=False))


def _show_index_panel(status: MemoryStatus) -> None:
    lines = [
        f"Index:      {status.db_path}",
        f"Vector:     {_mark(status.vector_available)}",
        f"Keyword:    {_mark(status.lexical_available)}",
        f"Cache:      {status.cache_entries:,} embedding(s)",
        f"Dirty:      {'yes' if status.dirty else 'no'}",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Index[/]", expand=False))

    if not status.sources:
        console.print("[dim]Nothing indexed yet.  Run:  agentmem index[/]")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Source")
    table.add_column("Files", justify="right")
    table.add_column("Chunks", justify="right")
    for name, counts in sorted(status.sources.items()):
        table.add_row(name, str(counts.files), str(counts.chunks))
    console.print(table)
