"""agentmem read — print lines of a memory file."""

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
from agentmem.cli.errors import err_not_found
from agentmem.errors import NotFound


def read_cmd(
    path: Annotated[str, typer.Argument(help="Memory file, e.g. MEMORY.md or memory/notes.md.")],
    workspace: WorkspaceOpt = Path("."),
    agent: AgentOpt = DEFAULT_AGENT,
    from_line: Annotated[
        int | None,
        typer.Option("--from", min=1, help="First line to print (1-based)."),
    ] = None,
    lines: Annotated[
        int | None,
        typer.Option("--lines", "-l", min=1, help="Number of lines to print."),
    ] = None,
    global_config: GlobalConfigOpt = None,
) -> None:
    """Print a slice of a memory file (e.g. to expand a search citation)."""
    with open_manager(workspace, agent, global_config) as manager:
        try:
            text = manager.read_snippet(path, from_line=from_line, line_count=lines)
        except NotFound as exc:
            console.print(err_not_found(path))
            raise typer.Exit(1) from exc
    typer.echo(text)
