"""Embedding generation with dimension validation."""

import math
from dataclasses import dataclass

from openai import OpenAI

from portfolio_chat.config import config
from portfolio_chat.errors import EmbeddingValidationError, RetrievalFailure
from portfolio_chat.utils.retry import call_with_retries


@dataclass
class EmbeddingResult:
    """A validated query embedding and what it cost to produce."""
    vector: list[float]
    tokens_used: int
    model: str


def validate_embedding(vector, dimensions: int) -> list[float]:
    """Return the vector as floats, or raise if its length or values are invalid."""
    if not isinstance(vector, (list, tuple)):
        raise EmbeddingValidationError(f"Embedding must be a sequence, got {type(vector).__name__}")
    if len(vector) != dimensions:
        raise EmbeddingValidationError(
            f"Invalid embedding dimensions: expected {dimensions}, got {len(vector)}"
        )
    values = []
    for value in vector:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise EmbeddingValidationError(f"Embedding contains a non-finite value: {value!r}")
        values.append(float(value))
    return values


class Embedder:
    """Generates text embeddings through the OpenAI embeddings API."""

    def __init__(
        self,
        openai_client: OpenAI | None = None,
        dimensions: int | None = None,
        retries: int | None = None,
        backoff: float | None = None,
    ):
        self.client = openai_client or OpenAI(
            api_key=config.openai_api_key,
            timeout=config.request_timeout,
            max_retries=0,
        )
        self.model = config.embedding_model
        self.dimensions = dimensions or config.embedding_dimensions
        self.retries = config.max_retries if retries is None else retries
        self.backoff = config.retry_backoff if backoff is None else backoff

    def _prepare(self, text: str) -> str:
        if not text or not text.strip():
            raise RetrievalFailure("Text is required for embedding generation")
        limit = config.max_embedding_chars
        return text if len(text) <= limit else text[:limit]

    def _request(self, texts: list[str]):
        response = self.client.embeddings.create(
            model=self.model,
            input=texts,
            dimensions=self.dimensions,
        )
        if len(response.data) != len(texts):
            raise EmbeddingValidationError(
                f"Embedding response size mismatch: sent {len(texts)}, got {len(response.data)}"
            )
        vectors = [validate_embedding(item.embedding, self.dimensions) for item in response.data]
        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", None) or getattr(usage, "prompt_tokens", 0) or 0
        return vectors, tokens

    def embed(self, text: str) -> EmbeddingResult:
        """
        Embed a single text.

        Raises:
            RetrievalFailure: when the call keeps failing or returns an invalid vector
        """
        vectors, tokens = self._call([self._prepare(text)])
        return EmbeddingResult(vector=vectors[0], tokens_used=tokens, model=self.model)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one request, preserving order."""
        if not texts:
            return []
        vectors, _ = self._call([self._prepare(t) for t in texts])
        return vectors

    def _call(self, texts: list[str]) -> tuple[list[list[float]], int]:
        try:
            return call_with_retries(
                lambda: self._request(texts),
                label="embeddings",
                retries=self.retries,
                backoff=self.backoff,
            )
        except RetrievalFailure:
            raise
        except Exception as e:
            raise RetrievalFailure(
                f"Failed to generate embedding after {self.retries + 1} attempts: {e}"
            ) from e
