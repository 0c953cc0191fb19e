"""Repository pattern for all hybridrag database operations.

Single interface for: documents, chunks, FTS5 search, vec embeddings,
structured rows, and watermarks. Vec tables are model-managed
(ensure_vec_table); the repository handles read + write.

Methods never commit on their own. Writes are grouped by the caller inside
:meth:`Repository.transaction`; multi-statement reads that must agree with
each other run inside :meth:`Repository.snapshot`.
"""

from __future__ import annotations

import json
import re
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from hybridrag.db.models import Chunk, Document, StructuredRow, Watermark

_FTS_TERM_RE = re.compile(r"\w+", re.UNICODE)


class Repository:
    """Data access layer for all hybridrag database entities.

    Wraps an open sqlite3.Connection (autocommit mode, see
    :class:`hybridrag.db.connection.Database`). The connection is owned by the
    caller and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see hybridrag.db.schema.initialize).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Repository]:
        """Run the enclosed writes as one IMMEDIATE transaction.

        Commits on normal exit; rolls back and re-raises on any exception.
        """
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield self
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        self._conn.execute("COMMIT")

    @contextmanager
    def snapshot(self) -> Iterator[Repository]:
        """Run the enclosed reads against one consistent WAL snapshot."""
        if self._conn.in_transaction:
            yield self
            return
        self._conn.execute("BEGIN")
        try:
            yield self
        finally:
            self._conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def upsert_document(self, document: Document) -> None:
        """Insert *document* or update its title, url and schema in place.

        ``created_at`` is preserved across updates.
        """
        self._conn.execute(
            """
            INSERT INTO documents (id, title, url, schema)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                url = excluded.url,
                schema = excluded.schema
            """,
            (document.id, document.title, document.url, document.schema_json()),
        )

    def get_document(self, document_id: str) -> Document | None:
        """Return a document by ID, or None if not found."""
        row = self._conn.execute(
            "SELECT id, title, url, schema, created_at FROM documents WHERE id = ?",
            (document_id,),
        ).fetchone()
        return _row_to_document(row) if row else None

    def list_documents(self) -> list[Document]:
        """Return all documents ordered by creation time, then id."""
        rows = self._conn.execute(
            "SELECT id, title, url, schema, created_at FROM documents ORDER BY created_at, id"
        ).fetchall()
        return [_row_to_document(r) for r in rows]

    def delete_document(self, document_id: str) -> int:
        """Delete a document record. Returns the number of rows removed (0 or 1).

        Foreign keys cascade to chunks, structured rows and the watermark, but
        not to FTS5 or vec entries: call delete_embeddings_by_document() and
        delete_chunks_by_document() first.
        """
        cur = self._conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        return cur.rowcount

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def add_chunk(self, chunk: Chunk) -> int:
        """Insert chunk + sync FTS5 index. Returns the new chunk id."""
        cur = self._conn.execute(
            """
            INSERT INTO chunks (document_id, chunk_index, content, extra)
            VALUES (?, ?, ?, ?)
            """,
            (
                chunk.document_id,
                chunk.chunk_index,
                chunk.content,
                json.dumps(chunk.extra, sort_keys=True),
            ),
        )
        chunk_id = cur.lastrowid
        # Keep FTS5 in sync with explicit rowid mapping
        self._conn.execute(
            "INSERT INTO chunks_fts(rowid, content) VALUES (?, ?)", (chunk_id, chunk.content)
        )
        chunk.id = chunk_id
        return chunk_id

    def get_chunk(self, chunk_id: int) -> Chunk | None:
        """Return a chunk by id, or None if not found."""
        row = self._conn.execute(
            "SELECT id, document_id, chunk_index, content, extra FROM chunks WHERE id = ?",
            (chunk_id,),
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunks(self, chunk_ids: Iterable[int]) -> dict[int, Chunk]:
        """Return ``{id: Chunk}`` for every id in *chunk_ids* that exists."""
        ids = list(chunk_ids)
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        rows = self._conn.execute(
            f"SELECT id, document_id, chunk_index, content, extra FROM chunks WHERE id IN ({placeholders})",  # noqa: S608
            ids,
        ).fetchall()
        return {r["id"]: _row_to_chunk(r) for r in rows}

    def list_chunks_by_document(self, document_id: str) -> list[Chunk]:
        """Return all chunks of *document_id* in chunk_index order."""
        rows = self._conn.execute(
            """
            SELECT id, document_id, chunk_index, content, extra
            FROM chunks WHERE document_id = ? ORDER BY chunk_index
            """,
            (document_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks_by_document(self, document_id: str) -> int:
        """Return the number of chunks belonging to *document_id*."""
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,)
        ).fetchone()[0]

    def count_chunks(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]

    def count_unembedded(self, table: str) -> int:
        """Return the number of chunks with no vector in vec table *table*."""
        return self._conn.execute(
            f"SELECT COUNT(*) FROM chunks WHERE id NOT IN (SELECT rowid FROM [{table}])"  # noqa: S608
        ).fetchone()[0]

    def delete_chunks_by_document(self, document_id: str) -> int:
        """Delete chunks + FTS entries for a document (cascade not available on FTS)."""
        chunk_ids = self._chunk_ids(document_id)
        if chunk_ids:
            placeholders = ",".join("?" * len(chunk_ids))
            self._conn.execute(
                f"DELETE FROM chunks_fts WHERE rowid IN ({placeholders})", chunk_ids  # noqa: S608
            )
        cur = self._conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
        return cur.rowcount

    # ------------------------------------------------------------------
    # Vec embeddings
    # ------------------------------------------------------------------

    def add_embedding(self, table: str, chunk_id: int, embedding: list[float]) -> None:
        """Insert an embedding into a vec table with explicit rowid = chunk id."""
        self._conn.execute(
            f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
            (chunk_id, json.dumps(embedding)),
        )

    def get_embedding(self, table: str, chunk_id: int) -> list[float] | None:
        """Return the stored vector for *chunk_id* as a list of floats."""
        row = self._conn.execute(
            f"SELECT vec_to_json(embedding) AS v FROM {table} WHERE rowid = ?",  # noqa: S608
            (chunk_id,),
        ).fetchone()
        return json.loads(row["v"]) if row else None

    def search_vec(
        self, table: str, embedding: list[float], limit: int = 10
    ) -> list[tuple[int, float]]:
        """Exhaustive cosine ranking. Returns (chunk_id, similarity) best-first.

        Similarity is ``1 - vec_distance_cosine``. Equal distances are ordered
        by chunk id so the ranking is deterministic.
        """
        rows = self._conn.execute(
            f"""
            SELECT rowid, vec_distance_cosine(embedding, ?) AS distance
            FROM {table}
            ORDER BY distance, rowid
            LIMIT ?
            """,  # noqa: S608
            (json.dumps(embedding), limit),
        ).fetchall()
        return [(r["rowid"], 1.0 - r["distance"]) for r in rows]

    def delete_embeddings_by_document(self, document_id: str) -> int:
        """Delete all vec embeddings for *document_id* from every vec table.

        Returns the total number of embedding rows deleted across all vec tables.
        """
        chunk_ids = self._chunk_ids(document_id)
        if not chunk_ids:
            return 0

        total_deleted = 0
        placeholders = ",".join("?" * len(chunk_ids))
        for table in self.list_vec_tables():
            cur = self._conn.execute(
                f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                chunk_ids,
            )
            total_deleted += cur.rowcount
        return total_deleted

    def list_vec_tables(self) -> list[str]:
        """Return the vec0 virtual tables (their shadow tables are excluded)."""
        return [
            r[0]
            for r in self._conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name LIKE 'vec_chunks_%' "
                "AND sql LIKE 'CREATE VIRTUAL TABLE%' ORDER BY name"
            ).fetchall()
        ]

    # ------------------------------------------------------------------
    # FTS5 / BM25 search
    # ------------------------------------------------------------------

    def search_fts(self, query: str, limit: int = 10) -> list[tuple[int, float]]:
        """BM25 full-text search. Returns (chunk_id, score) sorted best-first.

        Query terms are quoted and OR-combined, so any matching term scores.
        bm25() returns negative values; lower (more negative) = better match.
        Equal scores are ordered by chunk id.
        """
        terms = _FTS_TERM_RE.findall(query.lower())
        if not terms:
            return []
        fts_query = " OR ".join(f'"{t}"' for t in dict.fromkeys(terms))
        rows = self._conn.execute(
            """
            SELECT rowid, bm25(chunks_fts) AS score
            FROM chunks_fts WHERE chunks_fts MATCH ?
            ORDER BY score, rowid
            LIMIT ?
            """,
            (fts_query, limit),
        ).fetchall()
        return [(r["rowid"], r["score"]) for r in rows]

    # ------------------------------------------------------------------
    # Structured rows
    # ------------------------------------------------------------------

    def add_rows(self, dataset_id: str, rows: Iterable[dict[str, Any]]) -> int:
        """Insert rows for *dataset_id*. Returns the number inserted."""
        cur = self._conn.executemany(
            "INSERT INTO structured_rows (dataset_id, row_data) VALUES (?, ?)",
            ((dataset_id, json.dumps(r)) for r in rows),
        )
        return cur.rowcount

    def iter_rows(self, dataset_id: str) -> Iterator[StructuredRow]:
        """Stream a dataset's rows in insertion order without materialising them."""
        cur = self._conn.execute(
            "SELECT id, dataset_id, row_data FROM structured_rows WHERE dataset_id = ? ORDER BY id",
            (dataset_id,),
        )
        for r in cur:
            yield StructuredRow(id=r["id"], dataset_id=r["dataset_id"], row_data=json.loads(r["row_data"]))

    def count_rows(self, dataset_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM structured_rows WHERE dataset_id = ?", (dataset_id,)
        ).fetchone()[0]

    def delete_rows(self, dataset_id: str) -> int:
        cur = self._conn.execute(
            "DELETE FROM structured_rows WHERE dataset_id = ?", (dataset_id,)
        )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Watermarks
    # ------------------------------------------------------------------

    def upsert_watermark(self, watermark: Watermark) -> None:
        """Record the last successfully ingested state of a document."""
        self._conn.execute(
            """
            INSERT INTO watermarks (document_id, content_hash, last_modified)
            VALUES (?, ?, ?)
            ON CONFLICT(document_id) DO UPDATE SET
                content_hash = excluded.content_hash,
                last_modified = excluded.last_modified,
                ingested_at = datetime('now')
            """,
            (watermark.document_id, watermark.content_hash, watermark.last_modified),
        )

    def get_watermark(self, document_id: str) -> Watermark | None:
        row = self._conn.execute(
            "SELECT document_id, content_hash, last_modified, ingested_at FROM watermarks WHERE document_id = ?",
            (document_id,),
        ).fetchone()
        return _row_to_watermark(row) if row else None

    def list_watermarks(self) -> dict[str, Watermark]:
        rows = self._conn.execute(
            "SELECT document_id, content_hash, last_modified, ingested_at FROM watermarks"
        ).fetchall()
        return {r["document_id"]: _row_to_watermark(r) for r in rows}

    # ------------------------------------------------------------------

    def _chunk_ids(self, document_id: str) -> list[int]:
        return [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM chunks WHERE document_id = ?", (document_id,)
            ).fetchall()
        ]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        title=row["title"],
        url=row["url"],
        schema=Document.parse_schema(row["schema"]),
        created_at=row["created_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        extra=json.loads(row["extra"]),
    )


def _row_to_watermark(row: sqlite3.Row) -> Watermark:
    return Watermark(
        document_id=row["document_id"],
        content_hash=row["content_hash"],
        last_modified=row["last_modified"],
        ingested_at=row["ingested_at"],
    )
