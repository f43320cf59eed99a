"""agentmem init — scaffold a workspace for agent memory.

Creates (existing files are left untouched):
  MEMORY.md                — curated long-term memory
  memory/                  — dated notes, one markdown file per topic or day
  agentmem.yaml            — per-workspace config template
  ~/.agentmem/config.yaml  — global config (created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from agentmem.cli.common import GlobalConfigOpt, console
from agentmem.config import ensure_global_config

_WORKSPACE_YAML = """\
# agentmem workspace configuration.
# API keys are read from the environment, never from this file.

# provider: auto          # auto | openai | gemini | local
# fallback: none          # none | openai | gemini | local
# sources: [memory]       # add "sessions" together with sessions_dir
# sessions_dir: sessions
# extra_paths: []

# local:
#   model_path: ~/models/all-MiniLM-L6-v2

# query:
#   max_results: 6
#   min_score: 0.35

# sync:
#   watch: true
#   debounce_ms: 1500
"""

_MEMORY_MD = "# Memory\n\nDurable facts, decisions and preferences go here.\n"


def init_cmd(
    workspace: Annotated[
        Path,
        typer.Argument(help="Workspace to initialize. Defaults to current directory."),
    ] = Path("."),
    global_config: GlobalConfigOpt = None,
) -> None:
    """Create MEMORY.md, memory/ and a config template in WORKSPACE."""
    workspace = workspace.resolve()
    workspace.mkdir(parents=True, exist_ok=True)
    console.print(f"\n[bold]Initializing agent memory in {workspace} …[/]\n")

    _write_once(workspace / "MEMORY.md", _MEMORY_MD)
    memory_dir = workspace / "memory"
    memory_dir.mkdir(exist_ok=True)
    console.print("  [green]✓[/] memory/")
    _write_once(workspace / "agentmem.yaml", _WORKSPACE_YAML)

    cfg_path = ensure_global_config(global_config)
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    console.print("\nNext steps:")
    console.print("  1. export OPENAI_API_KEY=...   (or GEMINI_API_KEY, or local.model_path)")
    console.print("  2. agentmem index              (build the index)")
    console.print('  3. agentmem search "<query>"   (search with citations)')


def _write_once(path: Path, content: str) -> None:
    if path.exists():
        console.print(f"  [dim]·[/] {path.name} [dim](exists, kept)[/]")
        return
    path.write_text(content, encoding="utf-8")
    console.print(f"  [green]✓[/] {path.name}")
