"""hybridrag configuration loader.

Priority (high → low):
  1. CLI flags              (handled at call site — not in this module)
  2. Environment variables  (HYBRIDRAG_EMBEDDING_MODEL, HYBRIDRAG_EMBEDDING_DIMENSIONS, HYBRIDRAG_DB)
  3. Per-project hybridrag.yaml
  4. Global ~/.hybridrag/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
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

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".hybridrag"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "hybridrag.yaml"

# Fields that suggest an API key: forbidden in global config.
# Does NOT match legitimate config keys like top_k, rrf_k, max_rows, max_groups.
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

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "chunking", "retrieval", "tables", "ingest"]
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
class EmbeddingCfg:
    """Embedding provider configuration (hybridrag.yaml: embedding:).

    Attributes:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Fixed vector dimension produced by *model*.
        timeout: Per-call timeout in seconds.
        max_attempts: Total attempts per batch (LiteLLM retries max_attempts - 1 times).
        max_concurrency: Maximum number of batches in flight at once.
    """

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    timeout: float = 30.0
    max_attempts: int = 5
    max_concurrency: int = 4


@dataclass
class ChunkingCfg:
    """Chunk size and overlap, both in characters (hybridrag.yaml: chunking:)."""

    chunk_size: int = 2_000
    overlap: int = 200


@dataclass
class RetrievalCfg:
    """Hybrid query defaults (hybridrag.yaml: retrieval:).

    ``candidate_pool`` is the minimum number of candidates taken from each
    ranking before fusion; the pool is never smaller than ``top_k``.
    """

    top_k: int = 10
    rrf_k: int = 50
    full_text_weight: float = 1.0
    semantic_weight: float = 1.0
    candidate_pool: int = 50


@dataclass
class TablesCfg:
    """Tabular ingestion + structured query limits (hybridrag.yaml: tables:)."""

    sample_size: int = 100
    max_rows: int = 1_000
    max_groups: int = 10_000


@dataclass
class IngestCfg:
    """Ingestion pipeline settings (hybridrag.yaml: ingest:)."""

    workers: int = 4
    db: str = ".hybridrag.db"


@dataclass
class HybridRagConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    tables: TablesCfg = field(default_factory=TablesCfg)
    ingest: IngestCfg = field(default_factory=IngestCfg)


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
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
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


def _validate(cfg: HybridRagConfig) -> None:
    """Raise ConfigError for values the pipeline cannot run with."""
    e, c, r, t = cfg.embedding, cfg.chunking, cfg.retrieval, cfg.tables
    problems: list[str] = []
    if e.dimensions < 1:
        problems.append(f"embedding.dimensions must be >= 1 (got {e.dimensions})")
    if e.max_attempts < 1:
        problems.append(f"embedding.max_attempts must be >= 1 (got {e.max_attempts})")
    if e.max_concurrency < 1:
        problems.append(f"embedding.max_concurrency must be >= 1 (got {e.max_concurrency})")
    if e.timeout <= 0:
        problems.append(f"embedding.timeout must be > 0 (got {e.timeout})")
    if c.chunk_size < 1:
        problems.append(f"chunking.chunk_size must be >= 1 (got {c.chunk_size})")
    if not 0 <= c.overlap < c.chunk_size:
        problems.append(
            f"chunking.overlap must be in [0, chunk_size) (got {c.overlap}, chunk_size {c.chunk_size})"
        )
    if r.rrf_k < 1:
        problems.append(f"retrieval.rrf_k must be >= 1 (got {r.rrf_k})")
    if r.top_k < 1:
        problems.append(f"retrieval.top_k must be >= 1 (got {r.top_k})")
    if r.candidate_pool < 1:
        problems.append(f"retrieval.candidate_pool must be >= 1 (got {r.candidate_pool})")
    if r.full_text_weight < 0 or r.semantic_weight < 0:
        problems.append("retrieval weights must be >= 0")
    if t.sample_size < 1:
        problems.append(f"tables.sample_size must be >= 1 (got {t.sample_size})")
    if t.max_rows < 1:
        problems.append(f"tables.max_rows must be >= 1 (got {t.max_rows})")
    if t.max_groups < 1:
        problems.append(f"tables.max_groups must be >= 1 (got {t.max_groups})")
    if cfg.ingest.workers < 1:
        problems.append(f"ingest.workers must be >= 1 (got {cfg.ingest.workers})")
    if problems:
        raise ConfigError("Invalid configuration:\n  " + "\n  ".join(problems))


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


def _cfg_from_dict(data: dict[str, Any]) -> HybridRagConfig:
    """Build a *HybridRagConfig* from a merged raw YAML dict."""
    cfg = HybridRagConfig()

    if "embedding" in data:
        e = data["embedding"] or {}
        d = cfg.embedding
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", d.model)),
            dimensions=int(e.get("dimensions", d.dimensions)),
            timeout=float(e.get("timeout", d.timeout)),
            max_attempts=int(e.get("max_attempts", d.max_attempts)),
            max_concurrency=int(e.get("max_concurrency", d.max_concurrency)),
        )

    if "chunking" in data:
        c = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            chunk_size=int(c.get("chunk_size", cfg.chunking.chunk_size)),
            overlap=int(c.get("overlap", cfg.chunking.overlap)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        d = cfg.retrieval
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", d.top_k)),
            rrf_k=int(r.get("rrf_k", d.rrf_k)),
            full_text_weight=float(r.get("full_text_weight", d.full_text_weight)),
            semantic_weight=float(r.get("semantic_weight", d.semantic_weight)),
            candidate_pool=int(r.get("candidate_pool", d.candidate_pool)),
        )

    if "tables" in data:
        t = data["tables"] or {}
        cfg.tables = TablesCfg(
            sample_size=int(t.get("sample_size", cfg.tables.sample_size)),
            max_rows=int(t.get("max_rows", cfg.tables.max_rows)),
            max_groups=int(t.get("max_groups", cfg.tables.max_groups)),
        )

    if "ingest" in data:
        i = data["ingest"] or {}
        cfg.ingest = IngestCfg(
            workers=int(i.get("workers", cfg.ingest.workers)),
            db=str(i.get("db", cfg.ingest.db)),
        )

    return cfg


def _apply_env_overrides(cfg: HybridRagConfig) -> HybridRagConfig:
    """Apply HYBRIDRAG_* environment variable overrides (layer 2)."""
    if model := os.environ.get("HYBRIDRAG_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if dims := os.environ.get("HYBRIDRAG_EMBEDDING_DIMENSIONS"):
        try:
            cfg.embedding.dimensions = int(dims)
        except ValueError as exc:
            raise ConfigError(
                f"HYBRIDRAG_EMBEDDING_DIMENSIONS must be an integer, got '{dims}'"
            ) from exc
    if db := os.environ.get("HYBRIDRAG_DB"):
        cfg.ingest.db = db
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> HybridRagConfig:
    """Load and return a merged *HybridRagConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *hybridrag.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *HybridRagConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or if a
            merged value is out of range.
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
        cfg = _cfg_from_dict(merged)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.hybridrag/config.yaml`` with defaults if it does not exist.

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
            "# hybridrag global configuration — model defaults only.\n"
            "# NEVER store API keys here — use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "  dimensions: 1536\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
