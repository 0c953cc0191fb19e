"""Query surface: the operations an agent or the CLI calls.

Every method returns plain JSON-serialisable data, so results can be handed
to a tool-calling agent or printed with ``--json`` unchanged. Each call is a
pure read on its own connection; abandoning one has no side effects.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from hybridrag.config import HybridRagConfig
from hybridrag.db.connection import Database
from hybridrag.db.store import DocumentStore
from hybridrag.errors import QueryValidationError
from hybridrag.rag.embeddings import EmbeddingProvider, LiteLLMEmbeddingProvider
from hybridrag.rag.retriever import HybridRetriever, RetrieverConfig
from hybridrag.rag.structured import StructuredQueryExecutor

logger = logging.getLogger(__name__)

_SEARCH_KEYS = frozenset(["query_text", "top_k", "full_text_weight", "semantic_weight", "rrf_k"])


class RetrievalService:
    """Hybrid search, document listing, file contents and table queries.

    Args:
        store: Document store to read from.
        provider: Embedding provider for query text.
        retriever_config: Default search parameters.
        max_rows: Row cap for table queries.
        max_groups: Distinct-group cap for aggregate table queries.
    """

    def __init__(
        self,
        store: DocumentStore,
        provider: EmbeddingProvider,
        retriever_config: RetrieverConfig | None = None,
        max_rows: int = 1000,
        max_groups: int = 10_000,
    ) -> None:
        self.store = store
        self.retriever = HybridRetriever(store, provider, retriever_config)
        self.tables = StructuredQueryExecutor(store, max_rows=max_rows, max_groups=max_groups)

    @classmethod
    def from_config(
        cls,
        config: HybridRagConfig,
        db_path: Path | str | None = None,
        provider: EmbeddingProvider | None = None,
    ) -> RetrievalService:
        """Wire store, provider and defaults from a loaded configuration."""
        emb = config.embedding
        store = DocumentStore(Database(db_path or config.ingest.db), emb.model, emb.dimensions)
        return cls(
            store,
            provider or LiteLLMEmbeddingProvider.from_config(emb),
            RetrieverConfig.from_config(config.retrieval),
            max_rows=config.tables.max_rows,
            max_groups=config.tables.max_groups,
        )

    def search(self, request: Mapping[str, Any]) -> list[dict[str, Any]]:
        """Run a hybrid search.

        Args:
            request: ``{query_text, top_k?, full_text_weight?, semantic_weight?, rrf_k?}``.

        Returns:
            ``[{id, content, metadata, score}]`` best-first.

        Raises:
            QueryValidationError: On unknown keys or invalid parameters.
        """
        unknown = sorted(set(request) - _SEARCH_KEYS)
        if unknown:
            raise QueryValidationError(f"Unknown search parameter '{unknown[0]}'")
        if "query_text" not in request:
            raise QueryValidationError("Search request needs 'query_text'")
        results = self.retriever.query(
            request["query_text"],
            top_k=request.get("top_k"),
            full_text_weight=request.get("full_text_weight"),
            semantic_weight=request.get("semantic_weight"),
            rrf_k=request.get("rrf_k"),
        )
        return [r.to_dict() for r in results]

    def list_documents(self) -> list[dict[str, Any]]:
        """Return ``[{id, title, url, schema?}]``; ``schema`` only for datasets."""
        out: list[dict[str, Any]] = []
        for doc in self.store.list_documents():
            entry: dict[str, Any] = {"id": doc.id, "title": doc.title, "url": doc.url}
            if doc.schema is not None:
                entry["schema"] = [c.to_dict() for c in doc.schema]
            out.append(entry)
        return out

    def get_file_contents(self, document_id: str) -> str:
        """Return a document's full text.

        Raises:
            DocumentNotFoundError: If *document_id* is unknown.
        """
        return self.store.get_full_content(document_id)

    def query_table(self, dataset_id: str, predicate: Mapping[str, Any]) -> list[dict[str, Any]]:
        """Run a read-only table query and return its rows."""
        result = self.tables.query(dataset_id, predicate)
        if result.truncated:
            logger.warning(
                "Table query on %s truncated at %d rows", dataset_id, self.tables.max_rows
            )
        return result.rows

    def list_schemas(self) -> dict[str, list[dict[str, str]]]:
        """Return ``{dataset_id: [{name, type}, ...]}``."""
        return {
            dataset_id: [c.to_dict() for c in schema]
            for dataset_id, schema in self.tables.list_schemas().items()
        }
