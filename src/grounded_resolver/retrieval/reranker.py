"""Reranking providers applied after hybrid merge."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from grounded_resolver.config import RerankerConfig, Settings
from grounded_resolver.errors import RerankingError


@dataclass(slots=True)
class RerankDocument:
    id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RankedDocument:
    id: str
    content: str
    relevance_score: float
    original_rank: int


class Reranker(ABC):
    """Reranker interface used after score fusion."""

    model_name: str = "unknown"
    provider_name: str = "unknown"

    @abstractmethod
    def rerank(self, query: str, documents: list[RerankDocument]) -> list[RankedDocument]:
        """Return documents ordered by relevance, highest first."""


class KeywordOverlapReranker(Reranker):
    """Lightweight reranker using query-document lexical overlap."""

    model_name = "keyword-overlap"
    provider_name = "local"

    def rerank(self, query: str, documents: list[RerankDocument]) -> list[RankedDocument]:
        query_terms = set(query.lower().split())
        ranked: list[RankedDocument] = []
        for position, doc in enumerate(documents):
            doc_terms = set(doc.content.lower().split())
            overlap = len(query_terms & doc_terms) / max(1, len(query_terms))
            ranked.append(
                RankedDocument(
                    id=doc.id,
                    content=doc.content,
                    relevance_score=overlap,
                    original_rank=position,
                )
            )
        return sorted(ranked, key=lambda item: item.relevance_score, reverse=True)


class CohereReranker(Reranker):
    """Cohere rerank REST API over httpx."""

    provider_name = "cohere"

    def __init__(
        self,
        api_key: str,
        config: RerankerConfig | None = None,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Cohere API key is required")
        self.config = config or RerankerConfig()
        self.model_name = self.config.model
        self._client = client or httpx.Client(
            timeout=self.config.timeout_seconds,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    def rerank(self, query: str, documents: list[RerankDocument]) -> list[RankedDocument]:
        if not documents:
            return []

        batch = documents[: self.config.max_documents]
        payload = {
            "model": self.model_name,
            "query": query,
            "documents": [doc.content for doc in batch],
            "top_n": len(batch),
            "return_documents": False,
        }
        try:
            response = self._client.post(self.config.endpoint, json=payload)
            response.raise_for_status()
            data = response.json()
            ranked = [
                RankedDocument(
                    id=batch[item["index"]].id,
                    content=batch[item["index"]].content,
                    relevance_score=float(item["relevance_score"]),
                    original_rank=int(item["index"]),
                )
                for item in data["results"]
            ]
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
            raise RerankingError(f"Failed to rerank documents: {exc}", provider="cohere") from exc

        ranked.sort(key=lambda item: item.relevance_score, reverse=True)
        return ranked

    def close(self) -> None:
        self._client.close()


def create_reranker(settings: Settings) -> Reranker | None:
    """Cohere when enabled and keyed, otherwise no reranking."""

    config = settings.reranker_config()
    if not config.enabled or not settings.cohere_api_key:
        logger.info("[Reranker] disabled")
        return None
    logger.info(f"[Reranker] using Cohere model {config.model}")
    return CohereReranker(settings.cohere_api_key, config)
