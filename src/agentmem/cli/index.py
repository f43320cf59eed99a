"""agentmem index — bring an agent's index up to date with its workspace."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from agentmem.cli.common import (
    DEFAULT_AGENT,
    AgentOpt,
    GlobalConfigOpt,
    WorkspaceOpt,
    console,
    open_manager,
)
from agentmem.cli.errors import err_no_provider, warn_index_errors


def index_cmd(
    workspace: WorkspaceOpt = Path("."),
    agent: AgentOpt = DEFAULT_AGENT,
    force: Annotated[
        bool,
        typer.Option("--force", help="Rebuild: drop the index and re-chunk every file."),
    ] = False,
    global_config: GlobalConfigOpt = None,
) -> None:
    """Index MEMORY.md, memory/*.md and any configured extra paths."""
    with open_manager(workspace, agent, global_config) as manager:
        with console.status("Indexing memory…"):
            report = manager.rebuild() if force else manager.sync()
        status = manager.status()

    console.print(
        f"[green]✓[/] Indexed [bold]{report.indexed}[/] file(s), "
        f"{report.unchanged} unchanged, {report.removed} removed, "
        f"{report.embedded} vector(s) written."
    )
    console.print(f"  Chunks: [bold]{status.total_chunks:,}[/]  |  Index: [dim]{status.db_path}[/]")
    if status.provider is None:
        console.print(err_no_provider([p.name for p in manager.chain.candidates]))
    if report.errors:
        console.print(warn_index_errors(report.errors))
