"""Fixtures for the CLI tests: isolated config, fake litellm embeddings."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from hybridrag.cli.main import app

CLI_DIMS = 8

NOTES = (
    "Calibration notes.\n\n"
    "The sensor array needs calibration before every field session. "
    "Record the offsets in the logbook."
)

SALES_CSV = (
    "date,region,revenue\n"
    "2024-01-01,EU,100\n"
    "2024-01-02,US,250\n"
    "2024-01-03,EU,50\n"
)


def fake_vector(text: str) -> list[float]:
    """Non-zero, text-dependent vector of CLI_DIMS components."""
    return [1.0] + [float(len(text) % (i + 2)) for i in range(CLI_DIMS - 1)]


def fake_embedding(**kwargs):
    response = MagicMock()
    response.data = [{"embedding": fake_vector(text)} for text in kwargs["input"]]
    return response


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    """Run every command from tmp_path with no global config and a wide console."""
    for var in ("HYBRIDRAG_EMBEDDING_MODEL", "HYBRIDRAG_DB"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HYBRIDRAG_EMBEDDING_DIMENSIONS", str(CLI_DIMS))
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("COLUMNS", "200")
    monkeypatch.setattr("hybridrag.config._GLOBAL_CONFIG_PATH", tmp_path / "global" / "config.yaml")
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def embedding_mock():
    with patch("hybridrag.rag.embeddings.litellm.embedding", side_effect=fake_embedding) as mock:
        yield mock


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def source_dir(tmp_path) -> Path:
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "notes.md").write_text(NOTES, encoding="utf-8")
    (docs / "sales.csv").write_text(SALES_CSV, encoding="utf-8")
    return docs


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "kb.db"


@pytest.fixture
def ingested(runner, embedding_mock, source_dir, db_path) -> Path:
    """A database holding notes.md and sales.csv."""
    result = runner.invoke(app, ["ingest", "--source", str(source_dir), "--db", str(db_path)])
    assert result.exit_code == 0, result.output
    return db_path
