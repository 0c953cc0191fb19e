"""Ingestion coordinator: change detection, extraction, embedding, atomic commit.

Per-source pipeline:
  1. Fingerprint the descriptor (content + every setting that shapes the
     stored result) and compare with the stored watermark → skip if equal.
  2. Text sources: extract → chunk.
     Tabular sources: infer schema → parse rows → render rows → chunk.
  3. Embed all chunks in one batched provider call (no locks held).
  4. Take the per-document lock and commit document, chunks, rows and
     watermark in one transaction.

Documents are processed in parallel on a thread pool. A failure fails only
its own document, except PermanentProviderError, which halts the run.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections import Counter
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum

from hybridrag.db.models import Chunk, Document, Watermark
from hybridrag.db.store import DocumentStore
from hybridrag.errors import (
    DuplicateSourceError,
    HybridRagError,
    IngestionCancelled,
    PermanentProviderError,
)
from hybridrag.ingest.chunker import TextChunker
from hybridrag.ingest.extract import PlainTextExtractor, TextExtractor
from hybridrag.ingest.tabular import build_dataset
from hybridrag.ingest.watcher import SourceDescriptor, SourceWatcher
from hybridrag.rag.embeddings import EmbeddingProvider

logger = logging.getLogger(__name__)


class IngestStatus(str, Enum):
    INGESTED = "ingested"
    UNCHANGED = "unchanged"
    SUPERSEDED = "superseded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class IngestResult:
    document_id: str
    status: IngestStatus
    chunks: int = 0
    rows: int = 0
    error: str | None = None


@dataclass
class IngestReport:
    results: list[IngestResult] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)  # unchanged, never processed

    def by_status(self, status: IngestStatus) -> list[IngestResult]:
        return [r for r in self.results if r.status is status]

    @property
    def failed(self) -> list[IngestResult]:
        return self.by_status(IngestStatus.FAILED)

    @property
    def ingested(self) -> list[IngestResult]:
        return self.by_status(IngestStatus.INGESTED)


class IngestionAborted(PermanentProviderError):
    """A permanent provider failure stopped the run.

    Attributes:
        report: Results of the documents that finished before the abort.
    """

    def __init__(self, message: str, report: IngestReport) -> None:
        super().__init__(message)
        self.report = report


class _DocumentLocks:
    """One lock per document id: a single writer per document."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, document_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(document_id, threading.Lock())
        with lock:
            yield


class IngestionCoordinator:
    """Detect changed sources and ingest them into a DocumentStore.

    Args:
        store: Target document store.
        provider: Embedding provider (its dimension must match the store's).
        watcher: Source of descriptors for detect() / run().
        chunker: Text chunker; its settings are part of the fingerprint.
        extractor: Text extractor for textual sources.
        sample_size: Rows sampled per column for schema inference.
        workers: Documents processed in parallel by run().
    """

    def __init__(
        self,
        store: DocumentStore,
        provider: EmbeddingProvider,
        watcher: SourceWatcher | None = None,
        *,
        chunker: TextChunker | None = None,
        extractor: TextExtractor | None = None,
        sample_size: int = 100,
        workers: int = 4,
    ) -> None:
        if provider.dimensions != store.dimensions:
            raise ValueError(
                f"Provider dimension {provider.dimensions} does not match "
                f"store dimension {store.dimensions}"
            )
        self._store = store
        self._provider = provider
        self._watcher = watcher
        self.chunker = chunker or TextChunker()
        self.extractor = extractor or PlainTextExtractor()
        self.sample_size = sample_size
        self.workers = workers
        self._locks = _DocumentLocks()
        self._cancelled: set[str] = set()
        self._cancel_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Change detection
    # ------------------------------------------------------------------

    def fingerprint(self, descriptor: SourceDescriptor) -> str:
        """SHA-256 over the source content and the settings that shape its chunks."""
        h = hashlib.sha256()
        header = {
            "model": self._provider.model,
            "dimensions": self._provider.dimensions,
            "chunk_size": self.chunker.chunk_size,
            "overlap": self.chunker.overlap,
            "sample_size": self.sample_size,
            "kind": descriptor.kind,
            "title": descriptor.title,
            "url": descriptor.url,
        }
        h.update(json.dumps(header, sort_keys=True).encode())
        h.update(b"\0")
        if descriptor.rows is not None:
            h.update(
                json.dumps(descriptor.rows, sort_keys=True, default=str, ensure_ascii=False).encode()
            )
        elif isinstance(descriptor.content, str):
            h.update(descriptor.content.encode("utf-8"))
        elif isinstance(descriptor.content, bytes):
            h.update(descriptor.content)
        return h.hexdigest()

    def detect(self, descriptors: Iterable[SourceDescriptor] | None = None) -> list[SourceDescriptor]:
        """Return the descriptors whose fingerprint differs from the stored watermark.

        Args:
            descriptors: Descriptors to check; polled from the watcher if None.
        """
        if descriptors is None:
            descriptors = self.poll()
        watermarks = self._store.list_watermarks()
        changed: list[SourceDescriptor] = []
        for descriptor in descriptors:
            current = watermarks.get(descriptor.id)
            if current is None or current.content_hash != self.fingerprint(descriptor):
                changed.append(descriptor)
        return changed

    # ------------------------------------------------------------------
    # Single document
    # ------------------------------------------------------------------

    def process(self, descriptor: SourceDescriptor, *, force: bool = False) -> IngestResult:
        """Ingest one source. Never raises except for PermanentProviderError.

        Args:
            descriptor: The source to ingest.
            force: Re-ingest even if the fingerprint matches the watermark.
        """
        doc_id = descriptor.id
        fingerprint = self.fingerprint(descriptor)
        try:
            baseline = self._store.get_watermark(doc_id)
            if not force and baseline is not None and baseline.content_hash == fingerprint:
                logger.debug("Unchanged: %s", doc_id)
                return IngestResult(doc_id, IngestStatus.UNCHANGED)

            document, chunks, rows = self._prepare(descriptor)
            self._check_cancelled(doc_id)

            if chunks:
                vectors = self._provider.embed([c.content for c in chunks])
                for chunk, vector in zip(chunks, vectors):
                    chunk.embedding = vector
            self._check_cancelled(doc_id)

            watermark = Watermark(
                document_id=doc_id,
                content_hash=fingerprint,
                last_modified=descriptor.last_modified_iso,
            )
            with self._locks.hold(doc_id):
                self._check_cancelled(doc_id)
                committed = self._store.upsert(
                    document, chunks, rows, watermark, baseline=baseline
                )
        except PermanentProviderError:
            raise
        except IngestionCancelled:
            logger.info("Cancelled: %s", doc_id)
            return IngestResult(doc_id, IngestStatus.CANCELLED)
        except (HybridRagError, ValueError) as exc:
            logger.error("Failed to ingest %s: %s", doc_id, exc)
            return IngestResult(doc_id, IngestStatus.FAILED, error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected error ingesting %s", doc_id)
            return IngestResult(
                doc_id, IngestStatus.FAILED, error=f"{type(exc).__name__}: {exc}"
            )
        finally:
            with self._cancel_guard:
                self._cancelled.discard(doc_id)

        if not committed:
            return IngestResult(doc_id, IngestStatus.SUPERSEDED)
        logger.info("Ingested %s: %d chunks, %d rows", doc_id, len(chunks), len(rows or []))
        return IngestResult(doc_id, IngestStatus.INGESTED, chunks=len(chunks), rows=len(rows or []))

    def cancel(self, document_id: str) -> None:
        """Abandon the in-flight ingestion of *document_id* before it commits."""
        with self._cancel_guard:
            self._cancelled.add(document_id)

    def remove(self, document_id: str) -> bool:
        """Delete a document and everything it owns. Returns False if absent."""
        with self._locks.hold(document_id):
            return self._store.delete(document_id)

    # ------------------------------------------------------------------
    # Whole run
    # ------------------------------------------------------------------

    def run(
        self,
        *,
        force: bool = False,
        prune: bool = False,
        on_result: Callable[[IngestResult], None] | None = None,
    ) -> IngestReport:
        """Poll the watcher and ingest every changed source in parallel.

        Args:
            force: Re-ingest every polled source regardless of watermarks.
            prune: Delete stored documents the watcher no longer reports.
            on_result: Called with each result as documents finish.

        Raises:
            IngestionAborted: A permanent provider failure stopped the run.
            DuplicateSourceError: Two polled sources share a document id.
        """
        descriptors = self.poll()
        pending = descriptors if force else self.detect(descriptors)
        pending_ids = {d.id for d in pending}
        report = IngestReport(skipped=[d.id for d in descriptors if d.id not in pending_ids])
        halt = threading.Event()

        def _task(descriptor: SourceDescriptor) -> IngestResult:
            if halt.is_set():
                return IngestResult(descriptor.id, IngestStatus.CANCELLED, error="run halted")
            return self.process(descriptor, force=force)

        fatal: PermanentProviderError | None = None
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="ingest") as pool:
            futures: dict[Future[IngestResult], SourceDescriptor] = {
                pool.submit(_task, d): d for d in pending
            }
            for future in as_completed(futures):
                if future.cancelled():
                    continue
                try:
                    result = future.result()
                except PermanentProviderError as exc:
                    if fatal is None:
                        fatal = exc
                        halt.set()
                        logger.critical("Halting ingestion: %s", exc)
                        for other in futures:
                            other.cancel()
                    continue
                report.results.append(result)
                if on_result is not None:
                    on_result(result)

        if fatal is not None:
            raise IngestionAborted(str(fatal), report) from fatal

        if prune:
            report.removed = self._prune({d.id for d in descriptors})
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def poll(self) -> list[SourceDescriptor]:
        """Return the watcher's descriptors.

        Raises:
            DuplicateSourceError: Two descriptors share a document id.
        """
        if self._watcher is None:
            raise RuntimeError("No source watcher configured")
        descriptors = list(self._watcher.poll())
        counts = Counter(d.id for d in descriptors)
        duplicates = sorted(doc_id for doc_id, n in counts.items() if n > 1)
        if duplicates:
            raise DuplicateSourceError(duplicates)
        return descriptors

    def _prepare(
        self, descriptor: SourceDescriptor
    ) -> tuple[Document, list[Chunk], list[dict] | None]:
        """Build the document, its chunks (unembedded) and rows for *descriptor*."""
        document = Document(id=descriptor.id, title=descriptor.title, url=descriptor.url)
        rows: list[dict] | None = None

        if descriptor.rows is not None:
            dataset = build_dataset(descriptor.rows, sample_size=self.sample_size)
            document.schema = dataset.schema
            rows = dataset.rows
            text = dataset.to_text()
        else:
            text = self.extractor.extract(descriptor)

        chunks = self.chunker.chunk(descriptor.id, text)
        for chunk in chunks:
            chunk.extra["kind"] = descriptor.kind
        return document, chunks, rows

    def _check_cancelled(self, document_id: str) -> None:
        with self._cancel_guard:
            if document_id in self._cancelled:
                raise IngestionCancelled(document_id)

    def _prune(self, live_ids: set[str]) -> list[str]:
        removed: list[str] = []
        for document in self._store.list_documents():
            if document.id not in live_ids and self.remove(document.id):
                logger.info("Removed %s (no longer reported by the watcher)", document.id)
                removed.append(document.id)
        return removed
