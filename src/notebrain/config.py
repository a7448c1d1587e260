"""notebrain configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (NOTEBRAIN_AGENT_DIR, NOTEBRAIN_EMBEDDINGS_PROVIDER,
                             NOTEBRAIN_OLLAMA_HOST, NOTEBRAIN_OLLAMA_MODEL)
  3. Per-project notebrain.yaml  (working directory)
  4. Global ~/.notebrain/config.yaml  (no credentials)
  5. Hardcoded defaults

Global config must never contain credentials; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
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

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".notebrain"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "notebrain.yaml"
_DEFAULT_AGENT_DIR: Path = _GLOBAL_CONFIG_DIR / "agent"

LOCAL_PROVIDER_ID = "embeddings-local"
OLLAMA_PROVIDER_ID = "embeddings-ollama"

# Short names accepted wherever a provider id is expected.
_PROVIDER_ALIASES: dict[str, str | None] = {
    "local": LOCAL_PROVIDER_ID,
    "ollama": OLLAMA_PROVIDER_ID,
    "none": None,
    "off": None,
    "": None,
}

# Fields that suggest a credential — forbidden in global config.
# Does NOT match legitimate config keys like max_chars, rrf_k, interval_seconds.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token, auth_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # my_secret, client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections — unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["notebook", "chunking", "sync", "embeddings", "search", "health"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class NotebookCfg:
    """Where the agent's files live (notebrain.yaml: notebook:)."""

    agent_dir: Path = _DEFAULT_AGENT_DIR


@dataclass
class ChunkingCfg:
    """Markdown chunk size in characters (notebrain.yaml: chunking:)."""

    max_chars: int = 1600
    overlap_chars: int = 320


@dataclass
class SyncCfg:
    """File watcher settings (notebrain.yaml: sync:)."""

    debounce_seconds: float = 1.5


@dataclass
class EmbeddingsCfg:
    """Embedding provider selection (notebrain.yaml: embeddings:).

    Attributes:
        active: Provider id to activate on open, or None for keyword-only search.
        plugins: Per-provider settings keyed by provider id, e.g.
            ``{"embeddings-ollama": {"host": ..., "model": ...}}``.
    """

    active: str | None = None
    plugins: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass
class SearchCfg:
    """Recall defaults (notebrain.yaml: search:)."""

    max_results: int = 15
    min_score: float = 0.25
    rrf_k: int = 60


@dataclass
class HealthCfg:
    """Health polling intervals (notebrain.yaml: health:).

    Attributes:
        default_interval_seconds: ``health.defaults.interval_seconds``.
        plugin_intervals: ``health.plugins.<id>.interval_seconds`` per plugin id.
    """

    default_interval_seconds: float | None = None
    plugin_intervals: dict[str, float] = field(default_factory=dict)


@dataclass
class NotebrainConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    notebook: NotebookCfg = field(default_factory=NotebookCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    sync: SyncCfg = field(default_factory=SyncCfg)
    embeddings: EmbeddingsCfg = field(default_factory=EmbeddingsCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    health: HealthCfg = field(default_factory=HealthCfg)

    @property
    def agent_dir(self) -> Path:
        return self.notebook.agent_dir

    @property
    def notebook_dir(self) -> Path:
        return self.notebook.agent_dir / "notebook"

    @property
    def db_path(self) -> Path:
        return self.notebook.agent_dir / "brain" / "memory.db"

    @property
    def models_dir(self) -> Path:
        return self.notebook.agent_dir / "cache" / "models"


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any credential-like key names.

    Global config must never store credentials; they belong in env vars.
    """

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Credentials must be set via environment variables, not config files.\n"
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


def _validate(cfg: NotebrainConfig) -> None:
    c = cfg.chunking
    if c.max_chars < 1:
        raise ConfigError(f"chunking.max_chars must be >= 1, got {c.max_chars}")
    if not 0 <= c.overlap_chars < c.max_chars:
        raise ConfigError(
            f"chunking.overlap_chars must be >= 0 and smaller than max_chars "
            f"({c.max_chars}), got {c.overlap_chars}"
        )
    if cfg.search.max_results < 1:
        raise ConfigError(f"search.max_results must be >= 1, got {cfg.search.max_results}")
    if cfg.sync.debounce_seconds < 0:
        raise ConfigError("sync.debounce_seconds must not be negative")


def normalize_provider_id(value: str | None) -> str | None:
    """Map short names ("local", "ollama", "none") to provider ids."""
    if value is None:
        return None
    key = value.strip().lower()
    if key in _PROVIDER_ALIASES:
        return _PROVIDER_ALIASES[key]
    return value.strip()


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


def _resolve_dir(value: Any, relative_to: Path) -> Path:
    p = Path(str(value)).expanduser()
    return p if p.is_absolute() else (relative_to / p).resolve()


def _cfg_from_dict(data: dict[str, Any], base_dir: Path) -> NotebrainConfig:
    """Build a *NotebrainConfig* from a merged raw YAML dict."""
    cfg = NotebrainConfig()

    if "notebook" in data:
        n = data["notebook"] or {}
        if n.get("agent_dir"):
            cfg.notebook = NotebookCfg(agent_dir=_resolve_dir(n["agent_dir"], base_dir))

    if "chunking" in data:
        c = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            max_chars=int(c.get("max_chars", cfg.chunking.max_chars)),
            overlap_chars=int(c.get("overlap_chars", cfg.chunking.overlap_chars)),
        )

    if "sync" in data:
        s = data["sync"] or {}
        cfg.sync = SyncCfg(
            debounce_seconds=float(s.get("debounce_seconds", cfg.sync.debounce_seconds)),
        )

    if "embeddings" in data:
        e = data["embeddings"] or {}
        plugins = e.get("plugins") or {}
        cfg.embeddings = EmbeddingsCfg(
            active=normalize_provider_id(e.get("active")),
            plugins={
                normalize_provider_id(str(k)) or str(k): dict(v or {})
                for k, v in plugins.items()
            },
        )

    if "search" in data:
        s = data["search"] or {}
        cfg.search = SearchCfg(
            max_results=int(s.get("max_results", cfg.search.max_results)),
            min_score=float(s.get("min_score", cfg.search.min_score)),
            rrf_k=int(s.get("rrf_k", cfg.search.rrf_k)),
        )

    if "health" in data:
        h = data["health"] or {}
        defaults = h.get("defaults") or {}
        default_interval = defaults.get("interval_seconds")
        cfg.health = HealthCfg(
            default_interval_seconds=(
                float(default_interval) if default_interval is not None else None
            ),
            plugin_intervals={
                str(pid): float(p["interval_seconds"])
                for pid, p in (h.get("plugins") or {}).items()
                if isinstance(p, dict) and p.get("interval_seconds") is not None
            },
        )

    return cfg


def _apply_env_overrides(cfg: NotebrainConfig) -> NotebrainConfig:
    """Apply NOTEBRAIN_* environment variable overrides."""
    if agent_dir := os.environ.get("NOTEBRAIN_AGENT_DIR"):
        cfg.notebook.agent_dir = Path(agent_dir).expanduser().resolve()
    if "NOTEBRAIN_EMBEDDINGS_PROVIDER" in os.environ:
        cfg.embeddings.active = normalize_provider_id(os.environ["NOTEBRAIN_EMBEDDINGS_PROVIDER"])
    ollama = cfg.embeddings.plugins.setdefault(OLLAMA_PROVIDER_ID, {})
    if host := os.environ.get("NOTEBRAIN_OLLAMA_HOST"):
        ollama["host"] = host
    if model := os.environ.get("NOTEBRAIN_OLLAMA_MODEL"):
        ollama["model"] = model
    if not ollama:
        del cfg.embeddings.plugins[OLLAMA_PROVIDER_ID]
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> NotebrainConfig:
    """Load and return a merged *NotebrainConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *notebrain.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *NotebrainConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains credential-like fields, or a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    try:
        cfg = _cfg_from_dict(merged, search_dir)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.notebrain/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# notebrain global configuration.\n"
            "# NEVER store credentials here — use environment variables.\n"
            "\n"
            "embeddings:\n"
            "  # local | ollama | none\n"
            "  active: none\n"
            "  plugins:\n"
            "    embeddings-ollama:\n"
            "      host: http://localhost:11434\n"
            "      model: nomic-embed-text\n"
            "\n"
            "search:\n"
            "  max_results: 15\n"
            "  min_score: 0.25\n"
            "\n"
            "# health:\n"
            "#   defaults:\n"
            "#     interval_seconds: 60\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
