"""Tests for the Repository pattern."""

from __future__ import annotations

import pytest

from hybridrag.db.models import Chunk, ColumnSpec, ColumnType, Document, Watermark
from hybridrag.db.repository import Repository
from hybridrag.db.vectors import ensure_vec_table


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def vec_table(tmp_db):
    return ensure_vec_table(tmp_db, "test_model", dimensions=4)


def _doc(id="doc-1", title="Doc", schema=None):
    return Document(id=id, title=title, url=f"file:///{id}", schema=schema)


def _chunk(document_id="doc-1", index=0, content="hello world", extra=None):
    return Chunk(document_id=document_id, chunk_index=index, content=content, extra=extra or {})


# ------------------------------------------------------------------
# Documents
# ------------------------------------------------------------------

def test_upsert_and_get_document(repo):
    repo.upsert_document(_doc())
    result = repo.get_document("doc-1")
    assert result is not None
    assert result.title == "Doc"
    assert result.url == "file:///doc-1"
    assert result.schema is None
    assert result.created_at is not None


def test_get_document_not_found(repo):
    assert repo.get_document("nonexistent") is None


def test_upsert_document_updates_in_place(repo):
    repo.upsert_document(_doc(title="Old"))
    created = repo.get_document("doc-1").created_at
    repo.upsert_document(_doc(title="New"))
    result = repo.get_document("doc-1")
    assert result.title == "New"
    assert result.created_at == created


def test_document_schema_round_trip(repo):
    schema = [ColumnSpec("date", ColumnType.DATE), ColumnSpec("revenue", ColumnType.NUMBER)]
    repo.upsert_document(_doc(schema=schema))
    result = repo.get_document("doc-1")
    assert result.schema == schema
    assert result.is_structured


def test_list_documents(repo):
    repo.upsert_document(_doc("b"))
    repo.upsert_document(_doc("a"))
    assert {d.id for d in repo.list_documents()} == {"a", "b"}


def test_delete_document_returns_rowcount(repo):
    repo.upsert_document(_doc())
    assert repo.delete_document("doc-1") == 1
    assert repo.delete_document("doc-1") == 0


# ------------------------------------------------------------------
# Chunks + FTS
# ------------------------------------------------------------------

def test_add_chunk_sets_id(repo):
    repo.upsert_document(_doc())
    chunk = _chunk()
    chunk_id = repo.add_chunk(chunk)
    assert isinstance(chunk_id, int)
    assert chunk.id == chunk_id


def test_get_chunk_round_trip(repo):
    repo.upsert_document(_doc())
    chunk_id = repo.add_chunk(_chunk(extra={"start": "0"}))
    result = repo.get_chunk(chunk_id)
    assert result.content == "hello world"
    assert result.extra == {"start": "0"}
    assert result.metadata.to_dict() == {
        "document_id": "doc-1",
        "chunk_index": 0,
        "extra": {"start": "0"},
    }


def test_get_chunks_skips_missing_ids(repo):
    repo.upsert_document(_doc())
    chunk_id = repo.add_chunk(_chunk())
    result = repo.get_chunks([chunk_id, 9999])
    assert list(result) == [chunk_id]


def test_get_chunks_empty(repo):
    assert repo.get_chunks([]) == {}


def test_list_chunks_by_document_ordered(repo):
    repo.upsert_document(_doc())
    for i in (2, 0, 1):
        repo.add_chunk(_chunk(index=i, content=f"part {i}"))
    chunks = repo.list_chunks_by_document("doc-1")
    assert [c.chunk_index for c in chunks] == [0, 1, 2]
    assert repo.count_chunks_by_document("doc-1") == 3


def test_delete_chunks_removes_fts_entries(repo):
    repo.upsert_document(_doc())
    repo.add_chunk(_chunk(content="unique marmalade"))
    assert repo.search_fts("marmalade")
    repo.delete_chunks_by_document("doc-1")
    assert repo.search_fts("marmalade") == []
    assert repo.count_chunks() == 0


def test_search_fts_ranks_and_or_combines(repo):
    repo.upsert_document(_doc())
    a = repo.add_chunk(_chunk(index=0, content="apple pie recipe"))
    b = repo.add_chunk(_chunk(index=1, content="banana bread recipe"))
    repo.add_chunk(_chunk(index=2, content="nothing relevant"))
    ids = [cid for cid, _ in repo.search_fts("apple recipe")]
    assert ids == [a, b]


def test_search_fts_handles_punctuation(repo):
    repo.upsert_document(_doc())
    a = repo.add_chunk(_chunk(content="what's \"quoted\" here"))
    assert [cid for cid, _ in repo.search_fts('"quoted" AND (what')] == [a]


def test_search_fts_no_terms(repo):
    assert repo.search_fts("  ?! ") == []


# ------------------------------------------------------------------
# Embeddings
# ------------------------------------------------------------------

def test_add_and_get_embedding(repo, vec_table):
    repo.upsert_document(_doc())
    chunk_id = repo.add_chunk(_chunk())
    repo.add_embedding(vec_table, chunk_id, [1.0, 0.0, 0.5, 0.25])
    assert repo.get_embedding(vec_table, chunk_id) == [1.0, 0.0, 0.5, 0.25]


def test_search_vec_cosine_order(repo, vec_table):
    repo.upsert_document(_doc())
    near = repo.add_chunk(_chunk(index=0))
    far = repo.add_chunk(_chunk(index=1))
    repo.add_embedding(vec_table, near, [1.0, 0.1, 0.0, 0.0])
    repo.add_embedding(vec_table, far, [0.0, 1.0, 0.0, 0.0])
    results = repo.search_vec(vec_table, [2.0, 0.0, 0.0, 0.0], limit=10)
    assert [cid for cid, _ in results] == [near, far]
    assert results[0][1] > results[1][1]
    assert results[0][1] == pytest.approx(0.995, abs=0.01)


def test_search_vec_ties_broken_by_id(repo, vec_table):
    repo.upsert_document(_doc())
    ids = [repo.add_chunk(_chunk(index=i)) for i in range(3)]
    for chunk_id in reversed(ids):
        repo.add_embedding(vec_table, chunk_id, [1.0, 1.0, 0.0, 0.0])
    results = repo.search_vec(vec_table, [1.0, 1.0, 0.0, 0.0], limit=10)
    assert [cid for cid, _ in results] == ids


def test_delete_embeddings_by_document(repo, vec_table):
    repo.upsert_document(_doc())
    chunk_id = repo.add_chunk(_chunk())
    repo.add_embedding(vec_table, chunk_id, [1.0, 0.0, 0.0, 0.0])
    assert repo.delete_embeddings_by_document("doc-1") == 1
    assert repo.get_embedding(vec_table, chunk_id) is None


def test_list_vec_tables_excludes_shadow_tables(repo, vec_table):
    assert repo.list_vec_tables() == [vec_table]


# ------------------------------------------------------------------
# Structured rows
# ------------------------------------------------------------------

def test_add_and_iter_rows(repo):
    repo.upsert_document(_doc(schema=[ColumnSpec("n", ColumnType.NUMBER)]))
    assert repo.add_rows("doc-1", [{"n": 1}, {"n": 2}]) == 2
    rows = list(repo.iter_rows("doc-1"))
    assert [r.row_data for r in rows] == [{"n": 1}, {"n": 2}]
    assert repo.count_rows("doc-1") == 2


def test_delete_rows(repo):
    repo.upsert_document(_doc(schema=[]))
    repo.add_rows("doc-1", [{}])
    assert repo.delete_rows("doc-1") == 1
    assert repo.count_rows("doc-1") == 0


# ------------------------------------------------------------------
# Watermarks
# ------------------------------------------------------------------

def test_upsert_and_get_watermark(repo):
    repo.upsert_document(_doc())
    repo.upsert_watermark(Watermark("doc-1", "hash-1", "2024-01-01T00:00:00+00:00"))
    repo.upsert_watermark(Watermark("doc-1", "hash-2", "2024-02-01T00:00:00+00:00"))
    wm = repo.get_watermark("doc-1")
    assert wm.content_hash == "hash-2"
    assert wm.last_modified == "2024-02-01T00:00:00+00:00"
    assert wm.ingested_at is not None
    assert set(repo.list_watermarks()) == {"doc-1"}


# ------------------------------------------------------------------
# Transactions
# ------------------------------------------------------------------

def test_transaction_rolls_back_on_error(repo):
    with pytest.raises(RuntimeError):
        with repo.transaction():
            repo.upsert_document(_doc())
            raise RuntimeError("boom")
    assert repo.get_document("doc-1") is None
    assert not repo.conn.in_transaction


def test_transaction_commits(repo):
    with repo.transaction():
        repo.upsert_document(_doc())
    assert not repo.conn.in_transaction
    assert repo.get_document("doc-1") is not None


def test_snapshot_nested_in_transaction(repo):
    with repo.transaction():
        with repo.snapshot():
            repo.upsert_document(_doc())
        assert repo.conn.in_transaction
    assert repo.get_document("doc-1") is not None
