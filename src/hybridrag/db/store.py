"""Document store: atomic per-document replace on top of the Repository.

Every write is one SQLite transaction opened on a fresh connection, so worker
threads never share a connection. Readers get a WAL snapshot through
:meth:`DocumentStore.reader` and never observe a half-replaced document.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from hybridrag.db.connection import Database
from hybridrag.db.models import Chunk, Document, Watermark
from hybridrag.db.repository import Repository
from hybridrag.db.schema import initialize
from hybridrag.db.vectors import ensure_vec_table, model_to_slug
from hybridrag.errors import DocumentNotFoundError, StorageTransactionError

logger = logging.getLogger(__name__)


@dataclass
class StoreStats:
    documents: int
    datasets: int
    chunks: int
    rows: int
    vec_tables: list[str]
    # Chunks with no vector for the active model (embedded under an older one).
    unembedded_chunks: int = 0


class DocumentStore:
    """Persists Documents, Chunks + embeddings, StructuredRows and Watermarks.

    Args:
        db: Database handle (file path holder; connections are opened per call).
        embedding_model: Model whose vec table receives new embeddings.
        dimensions: Fixed embedding dimension of that model.
    """

    def __init__(self, db: Database, embedding_model: str, dimensions: int) -> None:
        self._db = db
        self.embedding_model = embedding_model
        self.dimensions = dimensions
        with db.session() as conn:
            initialize(conn)
            self.vec_table = ensure_vec_table(conn, model_to_slug(embedding_model), dimensions)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @contextmanager
    def reader(self) -> Iterator[Repository]:
        """Yield a Repository bound to one read snapshot."""
        with self._db.session() as conn:
            repo = Repository(conn)
            with repo.snapshot():
                yield repo

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(
        self,
        document: Document,
        chunks: list[Chunk],
        rows: list[dict[str, Any]] | None,
        watermark: Watermark,
        *,
        baseline: Watermark | None = None,
    ) -> bool:
        """Atomically replace *document*'s metadata, chunks, rows and watermark.

        Returns False (and writes nothing) when this version was superseded
        while in flight: another version committed after *baseline* was read
        and that version is newer than *watermark*. A stored watermark equal
        to *baseline* never blocks the write, so restoring an older file
        still replaces the document.

        Args:
            baseline: The watermark observed before this version was
                prepared, or None if the document was not stored yet.

        Raises:
            ValueError: On rows for an unstructured document, a chunk without
                an embedding, or an embedding of the wrong dimension.
            StorageTransactionError: If the transaction fails; the previous
                version of the document stays intact.
        """
        if rows and document.schema is None:
            raise ValueError(f"Document '{document.id}' has rows but no schema")
        for chunk in chunks:
            if chunk.document_id != document.id:
                raise ValueError(f"Chunk belongs to '{chunk.document_id}', not '{document.id}'")
            if chunk.embedding is None:
                raise ValueError(f"Chunk {chunk.chunk_index} of '{document.id}' has no embedding")
            if len(chunk.embedding) != self.dimensions:
                raise ValueError(
                    f"Chunk {chunk.chunk_index} of '{document.id}' has a "
                    f"{len(chunk.embedding)}-dimensional embedding, expected {self.dimensions}"
                )

        try:
            with self._db.session() as conn:
                repo = Repository(conn)
                with repo.transaction():
                    current = repo.get_watermark(document.id)
                    if current != baseline and _is_older(watermark, current):
                        logger.info(
                            "Skipping superseded version of %s (%s < %s)",
                            document.id, watermark.last_modified, current.last_modified,
                        )
                        return False
                    repo.delete_embeddings_by_document(document.id)
                    repo.delete_chunks_by_document(document.id)
                    repo.delete_rows(document.id)
                    repo.upsert_document(document)
                    for chunk in chunks:
                        chunk_id = repo.add_chunk(chunk)
                        repo.add_embedding(self.vec_table, chunk_id, chunk.embedding)
                    if rows:
                        repo.add_rows(document.id, rows)
                    repo.upsert_watermark(watermark)
        except sqlite3.Error as exc:
            for chunk in chunks:
                chunk.id = None
            raise StorageTransactionError(
                f"Replacing document '{document.id}' failed and was rolled back: {exc}"
            ) from exc
        return True

    def delete(self, document_id: str) -> bool:
        """Delete a document and everything it owns. Returns False if absent."""
        try:
            with self._db.session() as conn:
                repo = Repository(conn)
                with repo.transaction():
                    repo.delete_embeddings_by_document(document_id)
                    repo.delete_chunks_by_document(document_id)
                    deleted = repo.delete_document(document_id)
        except sqlite3.Error as exc:
            raise StorageTransactionError(
                f"Deleting document '{document_id}' failed and was rolled back: {exc}"
            ) from exc
        return deleted > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_documents(self) -> list[Document]:
        with self.reader() as repo:
            return repo.list_documents()

    def get_document(self, document_id: str) -> Document | None:
        with self.reader() as repo:
            return repo.get_document(document_id)

    def get_watermark(self, document_id: str) -> Watermark | None:
        with self.reader() as repo:
            return repo.get_watermark(document_id)

    def list_watermarks(self) -> dict[str, Watermark]:
        with self.reader() as repo:
            return repo.list_watermarks()

    def get_chunks(self, document_id: str) -> list[Chunk]:
        """Return a document's chunks (with embeddings) in chunk_index order."""
        with self.reader() as repo:
            chunks = repo.list_chunks_by_document(document_id)
            for chunk in chunks:
                chunk.embedding = repo.get_embedding(self.vec_table, chunk.id)
            return chunks

    def get_full_content(self, document_id: str) -> str:
        """Return the document text rebuilt from its chunks in chunk_index order.

        Chunks carrying a ``start`` offset are laid over each other so that
        overlapping regions appear once; others are joined with newlines.

        Raises:
            DocumentNotFoundError: If *document_id* is unknown.
        """
        with self.reader() as repo:
            if repo.get_document(document_id) is None:
                raise DocumentNotFoundError(document_id)
            chunks = repo.list_chunks_by_document(document_id)
        return join_chunks(chunks)

    def stats(self) -> StoreStats:
        with self.reader() as repo:
            conn = repo.conn
            documents = repo.list_documents()
            return StoreStats(
                documents=len(documents),
                datasets=sum(1 for d in documents if d.is_structured),
                chunks=repo.count_chunks(),
                rows=conn.execute("SELECT COUNT(*) FROM structured_rows").fetchone()[0],
                vec_tables=repo.list_vec_tables(),
                unembedded_chunks=repo.count_unembedded(self.vec_table),
            )


def join_chunks(chunks: list[Chunk]) -> str:
    """Concatenate *chunks* (already in chunk_index order) into one text."""
    text = ""
    for i, chunk in enumerate(chunks):
        start = chunk.extra.get("start")
        if start is not None and int(start) <= len(text):
            text = text[: int(start)] + chunk.content
        elif i == 0:
            text = chunk.content
        else:
            text = f"{text}\n{chunk.content}"
    return text


def _is_older(incoming: Watermark, current: Watermark | None) -> bool:
    if current is None or not current.last_modified or not incoming.last_modified:
        return False
    return incoming.last_modified < current.last_modified
