"""Exception taxonomy for ingestion, storage and query failures.

Scope of each error:
  ExtractionError          → skip the document, keep its prior version
  TransientProviderError   → retried by LiteLLM, then fails the document
  RejectedInputError       → fails only the document that sent the input
  PermanentProviderError   → aborts the whole ingestion run
  DuplicateSourceError     → rejects the poll before anything is ingested
  StorageTransactionError  → transaction rolled back, prior version intact
  QueryValidationError     → request rejected, no partial result
"""

from __future__ import annotations


class HybridRagError(Exception):
    """Base class for all hybridrag errors."""


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class ExtractionError(HybridRagError):
    """Source content could not be turned into text or rows."""


class MalformedRowError(ExtractionError):
    """A tabular row does not parse against the dataset's inferred schema."""

    def __init__(self, row_number: int, column: str, value: object, expected: str) -> None:
        self.row_number = row_number
        self.column = column
        self.value = value
        self.expected = expected
        super().__init__(
            f"Row {row_number}: column '{column}' value {value!r} is not a valid {expected}"
        )


class IngestionCancelled(HybridRagError):
    """Ingestion of a single document was abandoned before commit."""


class DuplicateSourceError(HybridRagError):
    """Two polled sources map to the same document id."""

    def __init__(self, document_ids: list[str]) -> None:
        self.document_ids = document_ids
        super().__init__(
            "Several sources share the document id(s): " + ", ".join(document_ids)
        )


# ---------------------------------------------------------------------------
# Embedding provider
# ---------------------------------------------------------------------------


class ProviderError(HybridRagError):
    """Embedding provider call failed.

    Attributes:
        transient: True if the failure may succeed on retry (rate limit,
            timeout, connection reset); False if retrying cannot help.
    """

    transient: bool = True


class TransientProviderError(ProviderError):
    transient = True


class PermanentProviderError(ProviderError):
    transient = False


class RejectedInputError(ProviderError):
    """The provider refused this particular input (too long, malformed).

    Not retried, and scoped to the document that produced the input.
    """

    transient = False


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StorageTransactionError(HybridRagError):
    """A per-document replace or delete was interrupted and rolled back."""


class DocumentNotFoundError(HybridRagError, KeyError):
    """No document with the requested id exists."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(document_id)

    def __str__(self) -> str:
        return f"Document '{self.document_id}' not found"


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class QueryValidationError(HybridRagError, ValueError):
    """A search or table query was rejected before execution."""
