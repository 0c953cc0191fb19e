"""Hybrid retriever: BM25 (FTS5) + cosine (sqlite-vec), fused via weighted RRF.

Reciprocal Rank Fusion:
  score(c) = semantic_weight / (rrf_k + rank_semantic)
           + full_text_weight / (rrf_k + rank_full_text)

Each ranked list is truncated to the candidate pool M = max(top_k, candidate_pool).
A chunk missing from a list contributes nothing for that list. A list whose
weight is 0 is never computed, so a single-list query reproduces that list's
order exactly.

Ties on the fused score are broken by the smaller rank sum (a missing rank
counts as M + 1), then by the smaller chunk id.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from hybridrag.db.models import ChunkMetadata
from hybridrag.db.store import DocumentStore
from hybridrag.errors import QueryValidationError
from hybridrag.rag.embeddings import EmbeddingProvider

logger = logging.getLogger(__name__)


@dataclass
class RetrieverConfig:
    """Default query parameters for the hybrid retriever.

    Attributes:
        top_k: Number of results returned after fusion.
        rrf_k: RRF damping constant; larger values flatten rank differences.
        full_text_weight: Weight of the BM25 ranking.
        semantic_weight: Weight of the cosine-similarity ranking.
        candidate_pool: Minimum length of each ranked list before fusion.
    """

    top_k: int = 10
    rrf_k: int = 50
    full_text_weight: float = 1.0
    semantic_weight: float = 1.0
    candidate_pool: int = 50

    @classmethod
    def from_config(cls, cfg) -> RetrieverConfig:
        """Build from a ``RetrievalCfg`` section."""
        return cls(
            top_k=cfg.top_k,
            rrf_k=cfg.rrf_k,
            full_text_weight=cfg.full_text_weight,
            semantic_weight=cfg.semantic_weight,
            candidate_pool=cfg.candidate_pool,
        )


@dataclass
class SearchResult:
    """One fused search hit.

    Attributes:
        id: Chunk id.
        content: Chunk text.
        metadata: document_id, chunk_index and the chunk's extra map.
        score: Fused RRF score (higher = more relevant).
    """

    id: int
    content: str
    metadata: ChunkMetadata
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "metadata": self.metadata.to_dict(),
            "score": self.score,
        }


class HybridRetriever:
    """Answer free-text queries against a DocumentStore.

    Args:
        store: Store to read from; each query runs in its own read snapshot.
        provider: Embeds the query text (must be the model used at ingestion).
        config: Defaults for parameters not given to :meth:`query`.
    """

    def __init__(
        self,
        store: DocumentStore,
        provider: EmbeddingProvider,
        config: RetrieverConfig | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self.config = config or RetrieverConfig()

    def query(
        self,
        text: str,
        top_k: int | None = None,
        full_text_weight: float | None = None,
        semantic_weight: float | None = None,
        rrf_k: int | None = None,
    ) -> list[SearchResult]:
        """Return the ``top_k`` chunks best matching *text*, best-first.

        Raises:
            QueryValidationError: On empty text, ``top_k < 1``, ``rrf_k <= 0``,
                a negative weight, or both weights zero.
            ProviderError: If embedding the query fails.
        """
        cfg = self.config
        top_k = cfg.top_k if top_k is None else top_k
        rrf_k = cfg.rrf_k if rrf_k is None else rrf_k
        full_text_weight = cfg.full_text_weight if full_text_weight is None else full_text_weight
        semantic_weight = cfg.semantic_weight if semantic_weight is None else semantic_weight
        validate_query(text, top_k, full_text_weight, semantic_weight, rrf_k)

        pool = max(top_k, cfg.candidate_pool)

        # Embed before opening the snapshot: no network call inside a transaction.
        query_embedding = None
        if semantic_weight > 0:
            query_embedding = self._provider.embed([text])[0]

        with self._store.reader() as repo:
            rankings: list[tuple[list[int], float]] = []
            if query_embedding is not None:
                semantic = repo.search_vec(self._store.vec_table, query_embedding, limit=pool)
                rankings.append(([cid for cid, _ in semantic], semantic_weight))
            if full_text_weight > 0:
                lexical = repo.search_fts(text, limit=pool)
                rankings.append(([cid for cid, _ in lexical], full_text_weight))

            fused = rrf_fuse(rankings, rrf_k=rrf_k, pool_size=pool)[:top_k]
            chunks = repo.get_chunks(cid for cid, _ in fused)

        logger.debug(
            "Query %r: %d candidates from %d lists, returning %d",
            text, len(fused), len(rankings), min(top_k, len(fused)),
        )
        return [
            SearchResult(
                id=cid,
                content=chunks[cid].content,
                metadata=chunks[cid].metadata,
                score=score,
            )
            for cid, score in fused
        ]


# ------------------------------------------------------------------
# RRF fusion
# ------------------------------------------------------------------


def rrf_fuse(
    rankings: Sequence[tuple[Sequence[int], float]],
    rrf_k: int,
    pool_size: int,
) -> list[tuple[int, float]]:
    """Fuse ranked id lists into ``(id, score)`` pairs, best-first.

    Args:
        rankings: ``(ids best-first, weight)`` per list. Lists with weight 0
            are ignored.
        rrf_k: RRF constant (> 0).
        pool_size: Length each list was truncated to; a missing rank counts
            as ``pool_size + 1`` in the rank-sum tie-break.
    """
    active = [(ids, weight) for ids, weight in rankings if weight > 0]
    scores: dict[int, float] = {}
    ranks: dict[int, list[int]] = {}
    for position, (ids, weight) in enumerate(active):
        for rank, chunk_id in enumerate(ids, start=1):
            scores[chunk_id] = scores.get(chunk_id, 0.0) + weight / (rrf_k + rank)
            ranks.setdefault(chunk_id, [pool_size + 1] * len(active))[position] = rank

    return sorted(
        scores.items(),
        key=lambda item: (-item[1], sum(ranks[item[0]]), item[0]),
    )


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------


def validate_query(
    text: str,
    top_k: int,
    full_text_weight: float,
    semantic_weight: float,
    rrf_k: int,
) -> None:
    """Raise QueryValidationError if the parameters cannot produce a ranking."""
    if not isinstance(text, str) or not text.strip():
        raise QueryValidationError("Query text must not be empty")
    if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k < 1:
        raise QueryValidationError(f"top_k must be a positive integer, got {top_k!r}")
    if rrf_k <= 0:
        raise QueryValidationError(f"rrf_k must be > 0, got {rrf_k!r}")
    if full_text_weight < 0 or semantic_weight < 0:
        raise QueryValidationError("Weights must not be negative")
    if full_text_weight == 0 and semantic_weight == 0:
        raise QueryValidationError("At least one of full_text_weight and semantic_weight must be > 0")
