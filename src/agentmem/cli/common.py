"""Shared CLI plumbing: option types and manager construction."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from agentmem.cli.errors import err_config, err_disabled
from agentmem.config import ConfigError, load_config
from agentmem.manager import MemoryIndexManager

console = Console()

DEFAULT_AGENT = "main"

WorkspaceOpt = Annotated[
    Path,
    typer.Option("--workspace", "-w", help="Agent workspace holding MEMORY.md and memory/."),
]
AgentOpt = Annotated[
    str,
    typer.Option("--agent", "-a", help="Agent identity; selects the index file."),
]
GlobalConfigOpt = Annotated[
    Path | None,
    typer.Option("--global-config", hidden=True, help="Override ~/.agentmem/config.yaml (for testing)."),
]


def open_manager(
    workspace: Path, agent: str, global_config: Path | None = None
) -> MemoryIndexManager:
    """Load config for *workspace* and open *agent*'s index, exiting with a message on error."""
    try:
        cfg = load_config(workspace, global_config_path=global_config)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    if not cfg.enabled:
        console.print(err_disabled(agent))
        raise typer.Exit(1)
    try:
        return MemoryIndexManager(agent, cfg)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
