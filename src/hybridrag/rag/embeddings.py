"""Embedding provider: LiteLLM wrapper with retry, timeouts and concurrency.

All embedding calls in the ingest and query paths route through an
``EmbeddingProvider``. The LiteLLM implementation:

- sends one batched request per document (split only above ``max_batch_size``),
- uses LiteLLM's built-in retry (``num_retries``, exponential backoff), at most
  ``max_attempts`` calls in total,
- fails immediately on permanent failures (credentials, unknown model),
- bounds the number of requests in flight with a semaphore,
- never returns a partial result: wrong counts or dimensions raise.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Sequence
from typing import Protocol

import litellm

from hybridrag.errors import (
    PermanentProviderError,
    ProviderError,
    RejectedInputError,
    TransientProviderError,
)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

logger = logging.getLogger(__name__)

_PERMANENT_ERRORS: tuple[type[Exception], ...] = (
    litellm.AuthenticationError,
    litellm.PermissionDeniedError,
    litellm.NotFoundError,
)

# Refusals of the input itself; only the document that sent it fails.
_REJECTED_ERRORS: tuple[type[Exception], ...] = (
    litellm.BadRequestError,
    litellm.UnprocessableEntityError,
)

_TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    litellm.RateLimitError,
    litellm.Timeout,
    litellm.APIConnectionError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
    litellm.APIError,
    TimeoutError,
    ConnectionError,
)


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return  # No key required (e.g. ollama) or provider unknown

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


class EmbeddingProvider(Protocol):
    model: str
    dimensions: int

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Return one vector per text, in input order."""
        ...


class LiteLLMEmbeddingProvider:
    """Embedding provider backed by ``litellm.embedding()``.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Expected vector length; any other length is rejected.
        timeout: Per-request timeout in seconds.
        max_attempts: Total attempts per request; LiteLLM retries
            ``max_attempts - 1`` times with exponential backoff.
        max_concurrency: Requests allowed in flight at once across threads.
        max_batch_size: Inputs per request.
    """

    def __init__(
        self,
        model: str = "openai/text-embedding-3-small",
        dimensions: int = 1536,
        *,
        timeout: float = 30.0,
        max_attempts: int = 5,
        max_concurrency: int = 4,
        max_batch_size: int = 512,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.max_batch_size = max_batch_size
        self._slots = threading.BoundedSemaphore(max_concurrency)

    @classmethod
    def from_config(cls, cfg) -> LiteLLMEmbeddingProvider:
        """Build a provider from an ``EmbeddingCfg``."""
        return cls(
            cfg.model,
            cfg.dimensions,
            timeout=cfg.timeout,
            max_attempts=cfg.max_attempts,
            max_concurrency=cfg.max_concurrency,
        )

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*; all vectors or an exception, never a partial set.

        Raises:
            TransientProviderError: Transient failure persisted for max_attempts.
            PermanentProviderError: Credentials/model errors, or a response
                with the wrong count or dimension.
            RejectedInputError: The provider refused the input itself.
            ProviderError: Any other provider failure.
        """
        texts = list(texts)
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.max_batch_size):
            vectors.extend(self._embed_batch(texts[start : start + self.max_batch_size]))
        return vectors

    # ------------------------------------------------------------------

    def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        try:
            with self._slots:
                response = litellm.embedding(
                    model=self.model,
                    input=batch,
                    timeout=self.timeout,
                    num_retries=self.max_attempts - 1,
                )
        except _PERMANENT_ERRORS as exc:
            raise PermanentProviderError(
                f"Embedding model '{self.model}' rejected the request: {exc}"
            ) from exc
        except _REJECTED_ERRORS as exc:
            raise RejectedInputError(
                f"Embedding model '{self.model}' rejected this input: {exc}"
            ) from exc
        except _TRANSIENT_ERRORS as exc:
            logger.warning("Embedding failed after %d attempts: %s", self.max_attempts, exc)
            raise TransientProviderError(
                f"Embedding failed after {self.max_attempts} attempts: {exc}"
            ) from exc
        except Exception as exc:
            status = getattr(exc, "status_code", None)
            if isinstance(status, int) and 400 <= status < 500:
                raise RejectedInputError(
                    f"Embedding model '{self.model}' rejected this input ({status}): {exc}"
                ) from exc
            raise ProviderError(f"Embedding call to '{self.model}' failed: {exc}") from exc
        return self._unpack(response, len(batch))

    def _unpack(self, response, expected: int) -> list[list[float]]:
        data = list(response.data)
        if len(data) != expected:
            raise PermanentProviderError(
                f"Embedding model '{self.model}' returned {len(data)} vectors for {expected} inputs"
            )
        vectors = [list(item["embedding"]) for item in data]
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise PermanentProviderError(
                    f"Embedding model '{self.model}' returned {len(vector)}-dimensional "
                    f"vectors; {self.dimensions} are configured"
                )
        return vectors
