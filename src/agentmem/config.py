"""agentmem configuration loader.

Priority (high → low):
  1. Caller overrides     (applied by the host after load_config())
  2. Environment variables  (AGENTMEM_PROVIDER, AGENTMEM_MODEL, AGENTMEM_STORE_PATH)
  3. Per-workspace agentmem.yaml
  4. Global ~/.agentmem/config.yaml
  5. Hardcoded defaults

Config files must never contain API keys; providers read them from the
environment. All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".agentmem"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_WORKSPACE_CONFIG_NAME: str = "agentmem.yaml"

# Matches api_key, apikey, api-key, api_secret, *_token, token, *_secret,
# secret, password, passwd, credential(s). Does NOT match max_tokens or tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "enabled",
        "sources",
        "extra_paths",
        "sessions_dir",
        "provider",
        "fallback",
        "model",
        "local",
        "remote",
        "chunking",
        "query",
        "sync",
        "cache",
        "batch",
        "store",
    ]
)

PROVIDERS: frozenset[str] = frozenset(["auto", "openai", "gemini", "local"])
FALLBACKS: frozenset[str] = frozenset(["none", "openai", "gemini", "local"])
SOURCE_TAGS: frozenset[str] = frozenset(["memory", "sessions"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class LocalCfg:
    """On-device embedding model (agentmem.yaml: local:).

    Attributes:
        model_path: Path to downloaded sentence-transformers weights. The local
            provider is only a candidate when this is set.
    """

    model_path: str | None = None


@dataclass
class RemoteCfg:
    """Cloud provider overrides (agentmem.yaml: remote:)."""

    base_url: str | None = None
    num_retries: int = 3


@dataclass
class ChunkingCfg:
    """Chunk size and overlap, both in approximate tokens."""

    tokens: int = 400
    overlap: int = 80


@dataclass
class QueryCfg:
    """Hybrid query tuning (agentmem.yaml: query:).

    Attributes:
        max_results: Results returned after fusion and filtering.
        min_score: Combined-score floor; lower results are dropped.
        vector_weight: Weight of the cosine-similarity channel.
        text_weight: Weight of the BM25 channel.
        candidate_multiplier: Each channel fetches max_results × this.
        renormalize_degraded: Divide by the surviving weight when the vector
            channel is unavailable for a query. Off by default.
    """

    max_results: int = 6
    min_score: float = 0.35
    vector_weight: float = 0.7
    text_weight: float = 0.3
    candidate_multiplier: int = 4
    renormalize_degraded: bool = False


@dataclass
class SyncCfg:
    """Re-index triggers (agentmem.yaml: sync:)."""

    on_search: bool = True
    watch: bool = True
    debounce_ms: int = 1_500
    interval_minutes: int = 0


@dataclass
class CacheCfg:
    """Embedding cache (agentmem.yaml: cache:)."""

    enabled: bool = True
    max_entries: int | None = None


@dataclass
class BatchCfg:
    """Embedding batching (agentmem.yaml: batch:)."""

    size: int = 32
    concurrency: int = 2
    timeout_seconds: float = 60.0


@dataclass
class StoreCfg:
    """Index location. ``{agent_id}`` is replaced by the agent identity."""

    path: str = str(_GLOBAL_CONFIG_DIR / "index" / "{agent_id}.sqlite")


@dataclass
class MemoryConfig:
    """Root configuration object, built by load_config() from merged YAML layers.

    Attributes:
        enabled: Master switch; a disabled config never opens an index.
        workspace: Directory holding MEMORY.md and memory/*.md.
        sources: Allowed source tags (``memory``, ``sessions``).
        extra_paths: Additional markdown files or directories to index.
        sessions_dir: Directory of JSONL transcripts for the ``sessions`` source.
        provider: ``auto`` | ``openai`` | ``gemini`` | ``local``.
        fallback: Provider tried when the primary fails, or ``none``.
        model: Embedding model override; empty means the provider default.
    """

    enabled: bool = True
    workspace: str = "."
    sources: list[str] = field(default_factory=lambda: ["memory"])
    extra_paths: list[str] = field(default_factory=list)
    sessions_dir: str | None = None
    provider: str = "auto"
    fallback: str = "none"
    model: str = ""
    local: LocalCfg = field(default_factory=LocalCfg)
    remote: RemoteCfg = field(default_factory=RemoteCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    query: QueryCfg = field(default_factory=QueryCfg)
    sync: SyncCfg = field(default_factory=SyncCfg)
    cache: CacheCfg = field(default_factory=CacheCfg)
    batch: BatchCfg = field(default_factory=BatchCfg)
    store: StoreCfg = field(default_factory=StoreCfg)

    def store_path(self, agent_id: str) -> Path:
        """Return the index file path for *agent_id*."""
        if not re.fullmatch(r"[A-Za-z0-9._-]+", agent_id):
            raise ConfigError(
                f"Invalid agent id '{agent_id}' — use letters, digits, '.', '_' or '-'."
            )
        return Path(self.store.path.replace("{agent_id}", agent_id)).expanduser()


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def validate(cfg: MemoryConfig) -> MemoryConfig:
    """Raise ConfigError if *cfg* holds an out-of-range or unknown value."""
    if cfg.provider not in PROVIDERS:
        raise ConfigError(
            f"provider must be one of {sorted(PROVIDERS)}, got '{cfg.provider}'"
        )
    if cfg.fallback not in FALLBACKS:
        raise ConfigError(
            f"fallback must be one of {sorted(FALLBACKS)}, got '{cfg.fallback}'"
        )
    unknown = [s for s in cfg.sources if s not in SOURCE_TAGS]
    if unknown:
        raise ConfigError(f"Unknown source tag(s): {', '.join(unknown)}")
    if cfg.chunking.tokens < 1:
        raise ConfigError("chunking.tokens must be >= 1")
    if not 0 <= cfg.chunking.overlap < cfg.chunking.tokens:
        raise ConfigError("chunking.overlap must be >= 0 and < chunking.tokens")
    q = cfg.query
    if q.max_results < 1 or q.candidate_multiplier < 1:
        raise ConfigError("query.max_results and query.candidate_multiplier must be >= 1")
    if q.vector_weight < 0 or q.text_weight < 0:
        raise ConfigError("query weights must be >= 0")
    if cfg.batch.size < 1 or cfg.batch.concurrency < 1:
        raise ConfigError("batch.size and batch.concurrency must be >= 1")
    if cfg.batch.timeout_seconds <= 0:
        raise ConfigError("batch.timeout_seconds must be > 0")
    if cfg.sync.debounce_ms < 0 or cfg.sync.interval_minutes < 0:
        raise ConfigError("sync.debounce_ms and sync.interval_minutes must be >= 0")
    return cfg


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _str_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"'{name}' must be a list of strings")
    return [str(v) for v in value]


def _cfg_from_dict(data: dict[str, Any]) -> MemoryConfig:
    """Build a *MemoryConfig* from a merged raw YAML dict."""
    cfg = MemoryConfig()

    cfg.enabled = bool(data.get("enabled", cfg.enabled))
    if "sources" in data:
        cfg.sources = _str_list(data["sources"], "sources")
    if "extra_paths" in data:
        cfg.extra_paths = _str_list(data["extra_paths"], "extra_paths")
    if data.get("sessions_dir"):
        cfg.sessions_dir = str(data["sessions_dir"])
    cfg.provider = str(data.get("provider", cfg.provider))
    cfg.fallback = str(data.get("fallback", cfg.fallback))
    cfg.model = str(data.get("model") or cfg.model)

    if "local" in data:
        lo = data["local"] or {}
        cfg.local = LocalCfg(model_path=lo.get("model_path") or cfg.local.model_path)

    if "remote" in data:
        re_ = data["remote"] or {}
        cfg.remote = RemoteCfg(
            base_url=re_.get("base_url") or cfg.remote.base_url,
            num_retries=int(re_.get("num_retries", cfg.remote.num_retries)),
        )

    if "chunking" in data:
        ch = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            tokens=int(ch.get("tokens", cfg.chunking.tokens)),
            overlap=int(ch.get("overlap", cfg.chunking.overlap)),
        )

    if "query" in data:
        q = data["query"] or {}
        cfg.query = QueryCfg(
            max_results=int(q.get("max_results", cfg.query.max_results)),
            min_score=float(q.get("min_score", cfg.query.min_score)),
            vector_weight=float(q.get("vector_weight", cfg.query.vector_weight)),
            text_weight=float(q.get("text_weight", cfg.query.text_weight)),
            candidate_multiplier=int(
                q.get("candidate_multiplier", cfg.query.candidate_multiplier)
            ),
            renormalize_degraded=bool(
                q.get("renormalize_degraded", cfg.query.renormalize_degraded)
            ),
        )

    if "sync" in data:
        s = data["sync"] or {}
        cfg.sync = SyncCfg(
            on_search=bool(s.get("on_search", cfg.sync.on_search)),
            watch=bool(s.get("watch", cfg.sync.watch)),
            debounce_ms=int(s.get("debounce_ms", cfg.sync.debounce_ms)),
            interval_minutes=int(s.get("interval_minutes", cfg.sync.interval_minutes)),
        )

    if "cache" in data:
        c = data["cache"] or {}
        max_entries = c.get("max_entries", cfg.cache.max_entries)
        cfg.cache = CacheCfg(
            enabled=bool(c.get("enabled", cfg.cache.enabled)),
            max_entries=int(max_entries) if max_entries is not None else None,
        )

    if "batch" in data:
        b = data["batch"] or {}
        cfg.batch = BatchCfg(
            size=int(b.get("size", cfg.batch.size)),
            concurrency=int(b.get("concurrency", cfg.batch.concurrency)),
            timeout_seconds=float(b.get("timeout_seconds", cfg.batch.timeout_seconds)),
        )

    if "store" in data:
        st = data["store"] or {}
        cfg.store = StoreCfg(path=str(st.get("path", cfg.store.path)))

    return cfg


def _apply_env_overrides(cfg: MemoryConfig) -> MemoryConfig:
    """Apply AGENTMEM_* environment variable overrides."""
    if provider := os.environ.get("AGENTMEM_PROVIDER"):
        cfg.provider = provider
    if model := os.environ.get("AGENTMEM_MODEL"):
        cfg.model = model
    if store := os.environ.get("AGENTMEM_STORE_PATH"):
        cfg.store.path = store
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    workspace_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> MemoryConfig:
    """Load and return a merged, validated *MemoryConfig*.

    Applies layers in order: global → per-workspace → env vars.

    Args:
        workspace_dir: Agent workspace; searched for *agentmem.yaml* and used
            as the memory root. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If a config file contains API-key-like fields or an
            invalid value.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = workspace_dir if workspace_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    for path in (global_path, search_dir / _WORKSPACE_CONFIG_NAME):
        if not path.exists():
            continue
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"Config '{path}' must be a YAML mapping.")
        _check_no_api_keys(raw, path)
        _warn_unknown_keys(raw, path)
        merged = _deep_merge(merged, raw)

    cfg = _cfg_from_dict(merged)
    cfg.workspace = str(search_dir)
    cfg = _apply_env_overrides(cfg)
    return validate(cfg)


def ensure_global_config(global_config_path: Path | None = None) -> Path:
    """Create ``~/.agentmem/config.yaml`` with defaults if it does not exist.

    The directory is created with mode 0o700 and the file with mode 0o600.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# agentmem global configuration.\n"
            "# NEVER store API keys here — use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "#   export GEMINI_API_KEY=...\n"
            "\n"
            "provider: auto\n"
            "fallback: none\n"
            "\n"
            "query:\n"
            "  max_results: 6\n"
            "  min_score: 0.35\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
