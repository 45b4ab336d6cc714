"""Embedding providers: abstract interface, deterministic baseline and OpenAI."""

from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

from loguru import logger

from grounded_resolver.config import EmbeddingConfig, Settings
from grounded_resolver.errors import EmbeddingProviderError
from grounded_resolver.text.normalizer import EmbeddingTextNormalizer

_TOKEN_PATTERN = re.compile(r"\w+", flags=re.UNICODE)

OPENAI_EMBEDDING_MODELS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}
OPENAI_MAX_INPUT_TOKENS = 8191


class Embedder(ABC):
    """Embedder interface used by the indexer and the search service.

    Documents and queries go through the same `EmbeddingTextNormalizer` before
    reaching the provider, so both sides of a similarity comparison see
    identically prepared text.
    """

    model_name: str = "unknown"
    dimension: int = 0
    max_input_tokens: int = OPENAI_MAX_INPUT_TOKENS

    def __init__(self, normalizer: EmbeddingTextNormalizer | None = None) -> None:
        self.normalizer = normalizer or EmbeddingTextNormalizer()

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many documents."""
        if not texts:
            return []
        return self._embed_texts([self.normalizer.normalize(text) for text in texts])

    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""
        return self._embed_texts([self.normalizer.normalize(text)])[0]

    @abstractmethod
    def _embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed already-normalized texts, preserving order."""


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used for local runs and deterministic tests. Each word is hashed to one
    signed bucket and the vector is L2-normalized, so cosine similarity tracks
    word overlap.
    """

    def __init__(
        self,
        dimension: int = 256,
        normalizer: EmbeddingTextNormalizer | None = None,
    ) -> None:
        super().__init__(normalizer)
        self.dimension = dimension
        self.model_name = f"hashing-{dimension}"

    def _embed_texts(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = _TOKEN_PATTERN.findall(text.lower())
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class OpenAIEmbedder(Embedder):
    """OpenAI embeddings through langchain-openai.

    Inputs are sent in sub-batches of `batch_size` with a short pause between
    batches to stay under provider rate limits.
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        *,
        api_key: str | None = None,
        client: Any | None = None,
        normalizer: EmbeddingTextNormalizer | None = None,
    ) -> None:
        super().__init__(normalizer)
        self.config = config or EmbeddingConfig()
        if self.config.model not in OPENAI_EMBEDDING_MODELS:
            raise EmbeddingProviderError(
                f"Unsupported embedding model: {self.config.model}", provider="openai"
            )
        self.model_name = self.config.model
        self.dimension = OPENAI_EMBEDDING_MODELS[self.config.model]
        self.max_input_tokens = OPENAI_MAX_INPUT_TOKENS
        self._client = client or self._create_client(api_key)

    def _create_client(self, api_key: str | None) -> Any:
        from langchain_openai import OpenAIEmbeddings

        kwargs: dict[str, Any] = {"model": self.config.model}
        if api_key:
            kwargs["api_key"] = api_key
        return OpenAIEmbeddings(**kwargs)

    def _embed_texts(self, texts: list[str]) -> list[list[float]]:
        max_chars = self.max_input_tokens * 4
        prepared = [text[:max_chars] for text in texts]
        vectors: list[list[float]] = []
        batch_size = self.config.batch_size

        for start in range(0, len(prepared), batch_size):
            if start > 0 and self.config.batch_delay_seconds:
                time.sleep(self.config.batch_delay_seconds)
            batch = prepared[start : start + batch_size]
            try:
                vectors.extend(self._client.embed_documents(batch))
            except Exception as exc:
                raise EmbeddingProviderError(
                    f"OpenAI embedding request failed: {exc}", provider="openai"
                ) from exc
            logger.debug(
                f"[OpenAIEmbedder] embedded batch {start // batch_size + 1} "
                f"({len(batch)} texts, model={self.model_name})"
            )

        for vector in vectors:
            if len(vector) != self.dimension:
                raise EmbeddingProviderError(
                    f"Expected {self.dimension} dimensions, got {len(vector)}",
                    provider="openai",
                )
        return vectors


def create_embedder(settings: Settings) -> Embedder:
    """OpenAI when an API key is configured, hashing embedder otherwise."""

    config = settings.embedding_config()
    if settings.openai_api_key:
        logger.info(f"[Embedder] using OpenAI model {config.model}")
        return OpenAIEmbedder(config, api_key=settings.openai_api_key)
    logger.info("[Embedder] OPENAI_API_KEY not set, using deterministic hashing embedder")
    return HashingEmbedder(dimension=config.hashing_dimension)


def as_langchain_embeddings(embedder: Embedder) -> Any:
    """Expose an embedder through the langchain-core `Embeddings` interface."""

    from langchain_core.embeddings import Embeddings

    class _EmbeddingAdapter(Embeddings):
        def embed_documents(self, texts: list[str]) -> list[list[float]]:
            return embedder.embed_documents(texts)

        def embed_query(self, text: str) -> list[float]:
            return embedder.embed_query(text)

    return _EmbeddingAdapter()
