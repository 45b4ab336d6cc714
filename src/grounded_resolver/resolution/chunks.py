"""Candidate chunk retrieval with an entity-aware post-filter."""

from __future__ import annotations

from typing import Protocol

from loguru import logger

from grounded_resolver.config import ResolutionConfig
from grounded_resolver.retrieval.hybrid import HybridSearchOptions
from grounded_resolver.text.normalizer import normalize_text
from grounded_resolver.types import Candidate, RetrievedChunk, SearchResult

POST_FILTER_TIER_WORDS = frozenset(
    {"basic", "pro", "premium", "standard", "starter", "enterprise", "plus", "max", "mini"}
)


class ChunkSearch(Protocol):
    def default_options(self, **overrides: object) -> HybridSearchOptions: ...

    def hybrid_search(
        self, query: str, site_id: str, options: HybridSearchOptions | None = None
    ) -> list[SearchResult]: ...


def get_post_filter_type(candidate: Candidate) -> str:
    return "brand_model" if candidate.brand and candidate.model else "title_overlap"


def apply_post_filter(results: list[SearchResult], candidate: Candidate) -> list[SearchResult]:
    """Drop chunks that belong to a different entity than the candidate.

    With brand and model, both must occur in the chunk. Otherwise at least two,
    or at least half, of the meaningful title tokens must occur in the chunk
    content or its material title.
    """

    if candidate.brand and candidate.model:
        brand_norm = normalize_text(candidate.brand)
        model_norm = normalize_text(candidate.model)
        return [
            result
            for result in results
            if brand_norm in (content := normalize_text(result.content)) and model_norm in content
        ]

    title_tokens = [
        token
        for token in normalize_text(candidate.title).split()
        if len(token) > 2 and token not in POST_FILTER_TIER_WORDS
    ]
    if not title_tokens:
        return list(results)

    kept: list[SearchResult] = []
    for result in results:
        content_norm = normalize_text(result.content)
        title_norm = normalize_text(result.material_title)
        matches = sum(1 for token in title_tokens if token in content_norm or token in title_norm)
        if matches >= 2 or matches >= len(title_tokens) * 0.5:
            kept.append(result)
    return kept


class ChunkRetriever:
    """Fetches the chunks that describe one candidate.

    The search query is built from the candidate (brand and model, or title),
    never from the user's query.
    """

    def __init__(self, search: ChunkSearch, config: ResolutionConfig | None = None) -> None:
        self._search = search
        self.config = config or ResolutionConfig()

    def get_chunks_for_candidate(
        self, candidate: Candidate, site_id: str, limit: int | None = None
    ) -> list[RetrievedChunk]:
        limit = limit or self.config.chunks_per_candidate
        if candidate.brand and candidate.model:
            query = f"{candidate.brand} {candidate.model}"
        else:
            query = candidate.title

        try:
            results = self._search.hybrid_search(
                query,
                site_id,
                self._search.default_options(
                    limit=limit * 2,
                    similarity_threshold=self.config.chunk_similarity_threshold,
                ),
            )
            filtered = apply_post_filter(results, candidate)
        except Exception as exc:
            logger.error(f"[ChunkRetriever] retrieval failed for candidate {candidate.id}: {exc}")
            return []

        return [
            RetrievedChunk(
                id=result.chunk_id,
                content=result.content,
                material_title=result.material_title,
                material_id=result.material_id,
            )
            for result in filtered[:limit]
        ]
