"""Tests for the hybridrag config loader."""

from __future__ import annotations

import stat
import warnings
from pathlib import Path

import pytest
import yaml

from hybridrag.config import (
    ConfigError,
    HybridRagConfig,
    ensure_global_config,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("HYBRIDRAG_EMBEDDING_MODEL", "HYBRIDRAG_EMBEDDING_DIMENSIONS", "HYBRIDRAG_DB"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def missing_global(tmp_path: Path) -> Path:
    return tmp_path / "nonexistent" / "config.yaml"


# ---------------------------------------------------------------------------
# Defaults — no config files present
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path, missing_global: Path) -> None:
    """No config files → all hardcoded defaults."""
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)

    assert cfg.embedding.model == "openai/text-embedding-3-small"
    assert cfg.embedding.dimensions == 1536
    assert cfg.embedding.max_attempts == 5
    assert cfg.chunking.chunk_size == 2_000
    assert cfg.chunking.overlap == 200
    assert cfg.retrieval.top_k == 10
    assert cfg.retrieval.rrf_k == 50
    assert cfg.retrieval.full_text_weight == 1.0
    assert cfg.retrieval.semantic_weight == 1.0
    assert cfg.retrieval.candidate_pool == 50
    assert cfg.tables.max_rows == 1_000
    assert cfg.tables.sample_size == 100
    assert cfg.ingest.workers == 4
    assert cfg.ingest.db == ".hybridrag.db"


def test_dataclass_defaults_match_loader(tmp_path: Path, missing_global: Path) -> None:
    assert load_config(project_dir=tmp_path, global_config_path=missing_global) == HybridRagConfig()


# ---------------------------------------------------------------------------
# Global config
# ---------------------------------------------------------------------------


def test_load_config_global_overrides_defaults(tmp_path: Path) -> None:
    """Global config overrides hardcoded defaults."""
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"embedding": {"model": "cohere/embed-english-v3.0", "dimensions": 1024}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.embedding.model == "cohere/embed-english-v3.0"
    assert cfg.embedding.dimensions == 1024
    # Other defaults unchanged
    assert cfg.retrieval.top_k == 10


def test_load_config_global_empty_file(tmp_path: Path) -> None:
    """Empty global config file → defaults (no crash)."""
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text("", encoding="utf-8")

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.embedding.model == "openai/text-embedding-3-small"


def test_load_config_global_null_yaml(tmp_path: Path) -> None:
    """Global config with only comments/null → defaults."""
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text("# nothing here\n", encoding="utf-8")

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.embedding.model == "openai/text-embedding-3-small"


def test_load_config_empty_section(tmp_path: Path, missing_global: Path) -> None:
    (tmp_path / "hybridrag.yaml").write_text("retrieval:\n", encoding="utf-8")
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.retrieval.top_k == 10


# ---------------------------------------------------------------------------
# Per-project config
# ---------------------------------------------------------------------------


def test_load_config_project_overrides_global(tmp_path: Path) -> None:
    """Per-project hybridrag.yaml overrides global config."""
    global_cfg = tmp_path / "global.yaml"
    _write_yaml(global_cfg, {"embedding": {"model": "openai/text-embedding-3-large"}})
    _write_yaml(tmp_path / "hybridrag.yaml", {"embedding": {"model": "ollama/nomic-embed-text"}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.embedding.model == "ollama/nomic-embed-text"


def test_load_config_project_partial_override(tmp_path: Path) -> None:
    """Per-project can override a single field; global values for other fields survive."""
    global_cfg = tmp_path / "global.yaml"
    _write_yaml(global_cfg, {"retrieval": {"top_k": 20, "rrf_k": 60}})
    _write_yaml(tmp_path / "hybridrag.yaml", {"retrieval": {"top_k": 5}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.retrieval.top_k == 5
    assert cfg.retrieval.rrf_k == 60  # global value preserved


def test_load_config_all_sections(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(
        tmp_path / "hybridrag.yaml",
        {
            "chunking": {"chunk_size": 800, "overlap": 80},
            "retrieval": {"full_text_weight": 0.5, "semantic_weight": 2, "candidate_pool": 100},
            "tables": {"max_rows": 50, "sample_size": 10, "max_groups": 500},
            "ingest": {"workers": 8, "db": "kb/store.db"},
        },
    )
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert (cfg.chunking.chunk_size, cfg.chunking.overlap) == (800, 80)
    assert cfg.retrieval.full_text_weight == 0.5
    assert cfg.retrieval.semantic_weight == 2.0
    assert cfg.retrieval.candidate_pool == 100
    assert (cfg.tables.max_rows, cfg.tables.sample_size) == (50, 10)
    assert cfg.tables.max_groups == 500
    assert (cfg.ingest.workers, cfg.ingest.db) == (8, "kb/store.db")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "data,match",
    [
        ({"retrieval": {"rrf_k": 0}}, "rrf_k"),
        ({"retrieval": {"top_k": 0}}, "top_k"),
        ({"retrieval": {"semantic_weight": -1}}, "weights"),
        ({"chunking": {"chunk_size": 100, "overlap": 100}}, "overlap"),
        ({"embedding": {"dimensions": 0}}, "dimensions"),
        ({"embedding": {"max_attempts": 0}}, "max_attempts"),
        ({"tables": {"max_rows": 0}}, "max_rows"),
        ({"tables": {"max_groups": 0}}, "max_groups"),
        ({"ingest": {"workers": 0}}, "workers"),
    ],
)
def test_invalid_values_raise(tmp_path: Path, missing_global: Path, data: dict, match: str) -> None:
    _write_yaml(tmp_path / "hybridrag.yaml", data)
    with pytest.raises(ConfigError, match=match):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


def test_non_numeric_value_raises(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(tmp_path / "hybridrag.yaml", {"retrieval": {"top_k": "many"}})
    with pytest.raises(ConfigError, match="Invalid configuration value"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


# ---------------------------------------------------------------------------
# API key validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "bad_key",
    ["api_key", "apikey", "OPENAI_API_KEY", "secret", "password", "token", "api-key"],
)
def test_global_config_rejects_api_key_fields(tmp_path: Path, bad_key: str) -> None:
    """Global config containing API key-like field names raises ConfigError."""
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text(f"{bad_key}: sk-abc123\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="forbidden key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_global_config_rejects_nested_api_key(tmp_path: Path) -> None:
    """Nested API key-like field also raises ConfigError."""
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"embedding": {"api_key": "sk-secret"}})

    with pytest.raises(ConfigError, match="forbidden key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_legitimate_keys_not_flagged(tmp_path: Path) -> None:
    """top_k, rrf_k and max_rows must not trip the API-key pattern."""
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"retrieval": {"top_k": 3, "rrf_k": 10}, "tables": {"max_rows": 9}})
    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.retrieval.top_k == 3


# ---------------------------------------------------------------------------
# Unknown key warnings
# ---------------------------------------------------------------------------


def test_unknown_top_level_key_warns(tmp_path: Path) -> None:
    """Unknown top-level key in config emits UserWarning (not error)."""
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"unknown_section": {"foo": "bar"}})

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)

    assert any("unknown_section" in str(w.message) for w in caught)
    # Should still return a valid config
    assert cfg.embedding.model == "openai/text-embedding-3-small"


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------


def test_env_var_embedding_model_override(
    tmp_path: Path, missing_global: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """HYBRIDRAG_EMBEDDING_MODEL env var overrides config file value."""
    _write_yaml(tmp_path / "hybridrag.yaml", {"embedding": {"model": "openai/text-embedding-3-small"}})
    monkeypatch.setenv("HYBRIDRAG_EMBEDDING_MODEL", "openai/text-embedding-3-large")

    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.embedding.model == "openai/text-embedding-3-large"


def test_env_var_dimensions_override(
    tmp_path: Path, missing_global: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("HYBRIDRAG_EMBEDDING_DIMENSIONS", "3072")
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.embedding.dimensions == 3072


def test_env_var_dimensions_not_integer(
    tmp_path: Path, missing_global: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("HYBRIDRAG_EMBEDDING_DIMENSIONS", "big")
    with pytest.raises(ConfigError, match="must be an integer"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


def test_env_var_db_override(
    tmp_path: Path, missing_global: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_yaml(tmp_path / "hybridrag.yaml", {"ingest": {"db": "from-file.db"}})
    monkeypatch.setenv("HYBRIDRAG_DB", "/data/from-env.db")
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.ingest.db == "/data/from-env.db"


def test_env_var_absent_does_not_override(tmp_path: Path, missing_global: Path) -> None:
    """If env vars are not set, config file values are used."""
    _write_yaml(tmp_path / "hybridrag.yaml", {"embedding": {"model": "cohere/embed-english-v3.0"}})
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.embedding.model == "cohere/embed-english-v3.0"


# ---------------------------------------------------------------------------
# ensure_global_config
# ---------------------------------------------------------------------------


def test_ensure_global_config_creates_file(tmp_path: Path) -> None:
    """ensure_global_config creates the config file if it doesn't exist."""
    target = tmp_path / ".hybridrag" / "config.yaml"
    result = ensure_global_config(global_config_path=target)

    assert result == target
    assert target.exists()
    parsed = yaml.safe_load(target.read_text(encoding="utf-8"))
    assert parsed == {"embedding": {"model": "openai/text-embedding-3-small", "dimensions": 1536}}


def test_ensure_global_config_loads_cleanly(tmp_path: Path) -> None:
    """The generated file passes the API-key check it will be subjected to."""
    target = ensure_global_config(global_config_path=tmp_path / ".hybridrag" / "config.yaml")
    cfg = load_config(project_dir=tmp_path, global_config_path=target)
    assert cfg.embedding.dimensions == 1536


def test_ensure_global_config_file_mode(tmp_path: Path) -> None:
    """ensure_global_config creates file with mode 0o600 (owner-only)."""
    target = tmp_path / ".hybridrag" / "config.yaml"
    ensure_global_config(global_config_path=target)

    mode = stat.S_IMODE(target.stat().st_mode)
    assert mode == 0o600


def test_ensure_global_config_idempotent(tmp_path: Path) -> None:
    """Calling ensure_global_config twice does not overwrite existing file."""
    target = tmp_path / ".hybridrag" / "config.yaml"
    ensure_global_config(global_config_path=target)

    target.write_text("# custom\nembedding:\n  model: ollama/nomic-embed-text\n", encoding="utf-8")

    ensure_global_config(global_config_path=target)  # should not overwrite
    assert "nomic" in target.read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# yaml.safe_load enforcement (regression guard)
# ---------------------------------------------------------------------------


def test_config_does_not_execute_yaml_load(tmp_path: Path) -> None:
    """Config loader uses safe_load — malicious YAML constructs are not executed."""
    evil_yaml = "!!python/object/apply:os.system ['echo pwned']\n"
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text(evil_yaml, encoding="utf-8")

    with pytest.raises(yaml.YAMLError):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)
