"""agentmem rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from agentmem.cli.errors import err_not_found
    console.print(err_not_found("memory/x.md"))
    raise typer.Exit(1)
"""

from __future__ import annotations

_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
}


def err_no_provider(tried: list[str]) -> str:
    """No embedding provider resolved; search runs lexical-only."""
    hints = [f"    export {_ENV_VARS[p]}=..." for p in tried if p in _ENV_VARS]
    if "local" in tried or not tried:
        hints.append("    or set local.model_path in agentmem.yaml")
    return (
        "[yellow]Warning:[/] No embedding provider is available — search is keyword-only.\n"
        "  To enable semantic search, set one of:\n" + "\n".join(hints)
    )


def err_config(message: str) -> str:
    """Invalid configuration file or value."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix agentmem.yaml (or ~/.agentmem/config.yaml) and retry."
    )


def err_disabled(agent_id: str) -> str:
    """Memory is switched off for this agent."""
    return (
        f"[red]Error:[/] Memory is disabled for agent '{agent_id}'.\n"
        "  Set  enabled: true  in agentmem.yaml to turn it on."
    )


def err_search_unavailable(detail: str) -> str:
    """Neither search channel answered."""
    return (
        f"[red]Error:[/] {detail}\n"
        "  Run:  agentmem status  to check the index, then  agentmem index --force  to rebuild it."
    )


def err_not_found(path: str) -> str:
    """Snippet path is outside the memory roots or missing."""
    return (
        f"[red]Error:[/] Memory file not found: '{path}'\n"
        "  Use a path from  agentmem search  results (e.g. MEMORY.md or memory/notes.md)."
    )


def warn_index_errors(count: int) -> str:
    """Some files failed to index."""
    return (
        f"[yellow]⚠[/] {count} file(s) could not be indexed and will be retried on the next sync.\n"
        "  Run with  --verbose  to see the cause."
    )
