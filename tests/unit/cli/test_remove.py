"""Tests for hybridrag remove."""

from __future__ import annotations

import json

from hybridrag.cli.main import app


def _document_ids(runner, db) -> set[str]:
    result = runner.invoke(app, ["documents", "--db", str(db), "--json"])
    return {d["id"] for d in json.loads(result.stdout)}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


def test_remove_no_db_exits_1(runner, db_path):
    result = runner.invoke(app, ["remove", "notes.md", "--db", str(db_path), "--yes"])
    assert result.exit_code == 1
    assert "No database found" in result.output


def test_remove_unknown_document_exits_1(runner, ingested):
    result = runner.invoke(app, ["remove", "ghost.md", "--db", str(ingested), "--yes"])
    assert result.exit_code == 1
    assert "Document not found" in result.output


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------


def test_remove_with_yes(runner, ingested):
    result = runner.invoke(app, ["remove", "sales.csv", "--db", str(ingested), "--yes"])
    assert result.exit_code == 0, result.output
    assert "Removed: sales.csv" in result.output
    assert "Rows: 3" in result.output
    assert _document_ids(runner, ingested) == {"notes.md"}


def test_remove_drops_chunks_from_search(runner, ingested):
    runner.invoke(app, ["remove", "notes.md", "--db", str(ingested), "--yes"])
    result = runner.invoke(
        app, ["query", "calibration", "--db", str(ingested), "--semantic-weight", "0"]
    )
    assert "No matching chunks." in result.output


def test_remove_confirmed_interactively(runner, ingested):
    result = runner.invoke(app, ["remove", "notes.md", "--db", str(ingested)], input="y\n")
    assert result.exit_code == 0, result.output
    assert "Removed: notes.md" in result.output
    assert _document_ids(runner, ingested) == {"sales.csv"}


def test_remove_declined_keeps_document(runner, ingested):
    result = runner.invoke(app, ["remove", "notes.md", "--db", str(ingested)], input="n\n")
    assert result.exit_code == 0
    assert "Cancelled." in result.output
    assert _document_ids(runner, ingested) == {"notes.md", "sales.csv"}


def test_removed_source_is_reingested(runner, ingested, source_dir):
    runner.invoke(app, ["remove", "notes.md", "--db", str(ingested), "--yes"])
    result = runner.invoke(app, ["ingest", "--source", str(source_dir), "--db", str(ingested)])
    assert result.exit_code == 0, result.output
    assert "1 ingested, 1 unchanged" in result.output
