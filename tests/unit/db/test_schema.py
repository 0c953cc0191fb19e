"""Tests for database schema initialization."""

from __future__ import annotations

import sqlite3

import pytest

from hybridrag.db.schema import CURRENT_VERSION, initialize


def _table_columns(conn, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {row["name"] for row in rows}


def _add_document(conn, doc_id="doc-1", schema=None):
    conn.execute(
        "INSERT INTO documents (id, title, schema) VALUES (?, ?, ?)", (doc_id, doc_id, schema)
    )


def test_documents_columns(tmp_db):
    assert _table_columns(tmp_db, "documents") == {"id", "title", "url", "schema", "created_at"}


def test_chunks_columns(tmp_db):
    assert _table_columns(tmp_db, "chunks") == {"id", "document_id", "chunk_index", "content", "extra"}


def test_structured_rows_columns(tmp_db):
    assert _table_columns(tmp_db, "structured_rows") == {"id", "dataset_id", "row_data"}


def test_watermarks_columns(tmp_db):
    assert _table_columns(tmp_db, "watermarks") == {
        "document_id", "content_hash", "last_modified", "ingested_at"
    }


def test_schema_version_recorded(tmp_db):
    version = tmp_db.execute("SELECT version FROM schema_version").fetchone()[0]
    assert version == CURRENT_VERSION


def test_initialize_idempotent(tmp_db):
    initialize(tmp_db)
    rows = tmp_db.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert rows == 1


def test_chunk_ids_never_reused(tmp_db):
    _add_document(tmp_db)
    tmp_db.execute("INSERT INTO chunks (document_id, chunk_index, content) VALUES ('doc-1', 0, 'a')")
    first = tmp_db.execute("SELECT MAX(id) FROM chunks").fetchone()[0]
    tmp_db.execute("DELETE FROM chunks")
    tmp_db.execute("INSERT INTO chunks (document_id, chunk_index, content) VALUES ('doc-1', 0, 'b')")
    second = tmp_db.execute("SELECT MAX(id) FROM chunks").fetchone()[0]
    assert second > first


def test_chunk_index_unique_per_document(tmp_db):
    _add_document(tmp_db)
    tmp_db.execute("INSERT INTO chunks (document_id, chunk_index, content) VALUES ('doc-1', 0, 'a')")
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(
            "INSERT INTO chunks (document_id, chunk_index, content) VALUES ('doc-1', 0, 'b')"
        )


def test_chunk_requires_existing_document(tmp_db):
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(
            "INSERT INTO chunks (document_id, chunk_index, content) VALUES ('ghost', 0, 'x')"
        )


def test_document_delete_cascades(tmp_db):
    _add_document(tmp_db, schema='[{"name": "a", "type": "text"}]')
    tmp_db.execute("INSERT INTO chunks (document_id, chunk_index, content) VALUES ('doc-1', 0, 'x')")
    tmp_db.execute("INSERT INTO structured_rows (dataset_id, row_data) VALUES ('doc-1', '{}')")
    tmp_db.execute("INSERT INTO watermarks (document_id, content_hash) VALUES ('doc-1', 'h')")

    tmp_db.execute("DELETE FROM documents WHERE id = 'doc-1'")

    for table, col in (("chunks", "document_id"), ("structured_rows", "dataset_id"), ("watermarks", "document_id")):
        count = tmp_db.execute(f"SELECT COUNT(*) FROM {table} WHERE {col} = 'doc-1'").fetchone()[0]
        assert count == 0, table


def test_chunks_fts_porter_stemming(tmp_db):
    tmp_db.execute("INSERT INTO chunks_fts(rowid, content) VALUES (7, 'baking recipes for apples')")
    row = tmp_db.execute("SELECT rowid FROM chunks_fts WHERE chunks_fts MATCH 'recipe'").fetchone()
    assert row[0] == 7
