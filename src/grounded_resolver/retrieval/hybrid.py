"""Hybrid vector + keyword search with corpus-aware term extraction."""

from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from loguru import logger

from grounded_resolver.config import HybridSearchConfig
from grounded_resolver.errors import SearchError
from grounded_resolver.ingest.embedder import Embedder
from grounded_resolver.resilience.circuit_breaker import CircuitBreaker
from grounded_resolver.resolution.scoring import CandidateScorer, ScoredResult
from grounded_resolver.retrieval.reranker import RerankDocument, Reranker
from grounded_resolver.retrieval.store import KEYWORD_SIMILARITY, SearchBackend
from grounded_resolver.retrieval.terms import TermExtractor
from grounded_resolver.retrieval.validator import CorpusValidator
from grounded_resolver.text.normalizer import needs_trigram_fallback
from grounded_resolver.types import BoostsApplied, SafeContext, SearchResult, ValidationResult

_TOKEN_ESCAPE = re.compile(r"""(['"\\])""")
_DIGIT = re.compile(r"\d")


@dataclass(slots=True)
class HybridSearchOptions:
    vector_weight: float = 0.7
    limit: int = 10
    similarity_threshold: float = 0.3
    use_reranker: bool = True
    include_metadata: bool = True


@dataclass(slots=True)
class SearchTelemetry:
    """Diagnostics of one term-extraction search."""

    extraction_method: str | None = None
    extracted_terms_raw: list[str] = field(default_factory=list)
    validated_terms_kept: list[str] = field(default_factory=list)
    validated_terms_dropped: list[dict[str, Any]] = field(default_factory=list)
    fts_query_built: str | None = None
    keyword_path_ran: bool = False
    trigram_fallback_used: bool = False
    vector_suggest_threshold: float = 0.25
    keyword_veto_threshold: float = 0.03
    bigrams_included: list[str] = field(default_factory=list)
    doc_counts: dict[str, int] = field(default_factory=dict)
    cache_stats: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class HybridSearchService:
    """Combines vector similarity and full-text search over one tenant's chunks.

    Vector and keyword searches run concurrently on a small thread pool. Each
    backend call is wrapped in a circuit breaker: a failing vector route leaves a
    keyword-only result and vice versa. Only a failed query embedding makes the
    whole search fail.
    """

    def __init__(
        self,
        backend: SearchBackend,
        embedder: Embedder,
        *,
        config: HybridSearchConfig | None = None,
        reranker: Reranker | None = None,
        term_extractor: TermExtractor | None = None,
        corpus_validator: CorpusValidator | None = None,
        scorer: CandidateScorer | None = None,
        embedding_breaker: CircuitBreaker | None = None,
        search_breaker: CircuitBreaker | None = None,
        reranker_breaker: CircuitBreaker | None = None,
    ) -> None:
        self.config = config or HybridSearchConfig()
        self._backend = backend
        self._embedder = embedder
        self._reranker = reranker
        self._term_extractor = term_extractor or TermExtractor()
        self._corpus_validator = corpus_validator or CorpusValidator(backend)
        self._scorer = scorer or CandidateScorer()
        self.embedding_breaker = embedding_breaker or CircuitBreaker("embeddings")
        self.search_breaker = search_breaker or CircuitBreaker("search")
        self.reranker_breaker = reranker_breaker or CircuitBreaker("reranker")
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="hybrid-search"
        )

    def default_options(self, **overrides: Any) -> HybridSearchOptions:
        options = HybridSearchOptions(
            vector_weight=self.config.vector_weight,
            limit=self.config.limit,
            similarity_threshold=self.config.similarity_threshold,
            use_reranker=self.config.use_reranker,
        )
        return replace(options, **overrides) if overrides else options

    def breakers(self) -> list[CircuitBreaker]:
        return [self.embedding_breaker, self.search_breaker, self.reranker_breaker]

    def hybrid_search(
        self, query: str, site_id: str, options: HybridSearchOptions | None = None
    ) -> list[SearchResult]:
        opts = options or self.default_options()
        embedding = self._embed_query(query)
        fetch = opts.limit * 2

        vector_future = self._executor.submit(self._vector_search, embedding, site_id, fetch)
        keyword_future = self._executor.submit(self._keyword_search, query, site_id, fetch)
        merged = self._merge(vector_future.result(), keyword_future.result(), opts.vector_weight)
        return self._finalize(query, merged, opts)

    def search_with_smart_context(
        self,
        query: str,
        site_id: str,
        context: SafeContext | None = None,
        options: HybridSearchOptions | None = None,
    ) -> list[ScoredResult]:
        """Hybrid search scored with normalized weights and context boosts.

        The query itself is never rewritten; context terms only boost. Results
        are tagged `trgm` when the query is in a script that needs trigram
        matching, `fts` otherwise. With `corpus_aware_search` the keyword side
        runs only over extracted terms that exist in the tenant's corpus.
        """

        opts = options or self.default_options()
        terms = context.terms if context else []
        category_hint = context.category_hint if context else None
        try:
            wide = replace(opts, limit=opts.limit * 2)
            if self.config.corpus_aware_search:
                raw, search_telemetry = self.hybrid_search_with_term_extraction(
                    query, site_id, wide
                )
                logger.debug(
                    f"[HybridSearch] corpus-aware search method={search_telemetry.extraction_method} "
                    f"fts_query={search_telemetry.fts_query_built!r}"
                )
            else:
                raw = self.hybrid_search(query, site_id, wide)
            needs_trigram = needs_trigram_fallback(query)
            if not raw and needs_trigram:
                logger.info(f"[HybridSearch] no hybrid hits, trigram fallback for site {site_id}")
                raw = self._trigram_search(query, site_id, opts.limit)
            if not raw:
                return []
            return self._scorer.score(
                raw,
                query=query,
                terms=terms,
                category_hint=category_hint,
                score_source="trgm" if needs_trigram else "fts",
            )
        except Exception as exc:
            logger.error(f"[HybridSearch] smart context search failed, plain hybrid fallback: {exc}")
            return [
                ScoredResult(
                    result=result,
                    base_score=0.5 if result.keyword_similarity > 0.0 else 0.0,
                    final_score=result.similarity,
                    score_source="fts",
                    boosts_applied=BoostsApplied(),
                )
                for result in self.hybrid_search(query, site_id, opts)
            ]

    def hybrid_search_with_term_extraction(
        self, query: str, site_id: str, options: HybridSearchOptions | None = None
    ) -> tuple[list[SearchResult], SearchTelemetry]:
        opts = options or self.default_options()
        telemetry = SearchTelemetry(
            vector_suggest_threshold=self.config.vector_suggest_threshold,
            keyword_veto_threshold=self.config.keyword_veto_threshold,
        )
        fetch = opts.limit * 2

        try:
            keyword_results: list[SearchResult] = []
            extracted = self._term_extractor.extract_terms(query)
            if extracted is None:
                telemetry.extraction_method = "skip_non_latin"
                telemetry.trigram_fallback_used = True
                keyword_results = self._trigram_search(query, site_id, fetch)
            else:
                telemetry.extraction_method = "unicode_extraction"
                telemetry.extracted_terms_raw = list(extracted.combined)
                validation = self._corpus_validator.validate_terms(extracted.combined, site_id)
                telemetry.validated_terms_kept = list(validation.kept)
                telemetry.validated_terms_dropped = [
                    {
                        "term": item.term,
                        "reason": item.reason or "unknown",
                        "frequency": item.doc_count,
                    }
                    for item in validation.dropped
                ]
                telemetry.cache_stats = {
                    "hits": validation.telemetry["cache_hits"],
                    "queries": validation.telemetry["db_queries"],
                }

                if validation.kept:
                    ranked = self.rank_validated_terms(validation)[: self.config.max_fts_terms]
                    fts_query = build_fts_query(ranked)
                    telemetry.fts_query_built = fts_query
                    telemetry.keyword_path_ran = True
                    telemetry.validated_terms_kept = ranked
                    telemetry.bigrams_included = [term for term in ranked if " " in term]
                    counts = {item.term: item.doc_count for item in validation.validated_terms}
                    telemetry.doc_counts = {term: counts.get(term, 0) for term in ranked}
                    keyword_results = self._keyword_search(fts_query, site_id, fetch)

            embedding = self._embed_query(query)
            vector_results = self._vector_search(embedding, site_id, fetch)
            merged = self._merge(vector_results, keyword_results, opts.vector_weight)
            return self._finalize(query, merged, opts), telemetry
        except Exception as exc:
            logger.error(f"[HybridSearch] term extraction search failed, plain hybrid fallback: {exc}")
            telemetry.extraction_method = "fallback_error"
            return self.hybrid_search(query, site_id, opts), telemetry

    def search_with_context(
        self,
        query: str,
        conversation_history: list[str],
        site_id: str,
        options: HybridSearchOptions | None = None,
    ) -> list[SearchResult]:
        """Search with the last three turns prepended to the query."""

        opts = options or self.default_options()
        contextual_query = " ".join([*conversation_history[-3:], query])
        results = self.hybrid_search(contextual_query, site_id, replace(opts, limit=opts.limit * 2))
        return results[: opts.limit]

    def find_similar_chunks(self, chunk_id: str, limit: int = 5) -> list[SearchResult]:
        try:
            stored = self._backend.get_embedding(chunk_id)
            if stored is None:
                raise SearchError(f"Chunk not found or has no embedding: {chunk_id}")
            site_id, embedding = stored
            if not embedding:
                raise SearchError(f"Chunk not found or has no embedding: {chunk_id}")
            results = self._vector_search(embedding, site_id, limit + 1)
        except Exception as exc:
            logger.error(f"[HybridSearch] find similar chunks failed: {exc}")
            return []
        return [result for result in results if result.chunk_id != chunk_id][:limit]

    @staticmethod
    def rank_validated_terms(validation: ValidationResult) -> list[str]:
        """Order kept terms: bigrams, then digit-bearing, then longer, then rarer."""

        counts = {item.term: item.doc_count for item in validation.validated_terms}
        return sorted(
            validation.kept,
            key=lambda term: (
                " " not in term,
                _DIGIT.search(term) is None,
                -len(term),
                counts.get(term, 0),
            ),
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def _embed_query(self, query: str) -> list[float]:
        try:
            return self.embedding_breaker.call(lambda: self._embedder.embed_query(query))
        except Exception as exc:
            raise SearchError(f"Search failed: {exc}") from exc

    def _vector_search(
        self, embedding: list[float], site_id: str, limit: int
    ) -> list[SearchResult]:
        outcome = self.search_breaker.execute(
            lambda: self._backend.vector_search(embedding, site_id, limit),
            fallback=list,
        )
        if outcome.fallback_used:
            logger.warning(f"[HybridSearch] vector search unavailable for site {site_id}")
        return outcome.data or []

    def _keyword_search(self, query: str, site_id: str, limit: int) -> list[SearchResult]:
        outcome = self.search_breaker.execute(
            lambda: self._backend.keyword_search(query, site_id, limit),
            fallback=list,
        )
        if outcome.fallback_used:
            logger.warning(f"[HybridSearch] keyword search unavailable for site {site_id}")
        return outcome.data or []

    def _trigram_search(self, query: str, site_id: str, limit: int) -> list[SearchResult]:
        outcome = self.search_breaker.execute(
            lambda: self._backend.trigram_search(query, site_id, limit),
            fallback=list,
        )
        return [
            replace(result, keyword_similarity=result.keyword_similarity or result.similarity)
            for result in outcome.data or []
        ]

    @staticmethod
    def _merge(
        vector_results: list[SearchResult],
        keyword_results: list[SearchResult],
        vector_weight: float,
    ) -> list[SearchResult]:
        keyword_weight = 1.0 - vector_weight
        merged: dict[str, SearchResult] = {}
        for result in vector_results:
            merged[result.chunk_id] = replace(
                result,
                metadata=dict(result.metadata),
                similarity=result.similarity * vector_weight,
                keyword_similarity=0.0,
            )
        for result in keyword_results:
            lexical = result.keyword_similarity or KEYWORD_SIMILARITY
            existing = merged.get(result.chunk_id)
            if existing is not None:
                existing.similarity += KEYWORD_SIMILARITY * keyword_weight
                existing.keyword_similarity = max(existing.keyword_similarity, lexical)
            else:
                merged[result.chunk_id] = replace(
                    result,
                    metadata=dict(result.metadata),
                    similarity=KEYWORD_SIMILARITY * keyword_weight,
                    keyword_similarity=lexical,
                )
        return sorted(merged.values(), key=lambda item: item.similarity, reverse=True)

    def _finalize(
        self, query: str, merged: list[SearchResult], opts: HybridSearchOptions
    ) -> list[SearchResult]:
        results = merged
        if opts.use_reranker and self._reranker is not None and merged:
            results = self._rerank(query, merged)
        filtered = [result for result in results if result.similarity > opts.similarity_threshold]
        filtered = filtered[: opts.limit]
        if not opts.include_metadata:
            filtered = [replace(result, metadata={}) for result in filtered]
        return filtered

    def _rerank(self, query: str, results: list[SearchResult]) -> list[SearchResult]:
        reranker = self._reranker
        assert reranker is not None
        documents = [
            RerankDocument(id=result.chunk_id, content=result.content, metadata=result.metadata)
            for result in results
        ]
        outcome = self.reranker_breaker.execute(lambda: reranker.rerank(query, documents))
        if not outcome.success or outcome.data is None:
            logger.warning(f"[HybridSearch] reranking failed, keeping merge order: {outcome.error}")
            return results

        by_id = {result.chunk_id: result for result in results}
        reranked: list[SearchResult] = []
        for doc in outcome.data:
            original = by_id.get(doc.id)
            if original is None:
                continue
            reranked.append(
                replace(
                    original,
                    rerank_score=doc.relevance_score,
                    similarity=(original.similarity + doc.relevance_score) / 2,
                )
            )
        return reranked


def build_fts_query(terms: list[str]) -> str:
    """Quote phrases, escape single tokens, join as alternatives."""

    parts: list[str] = []
    for term in terms:
        if " " in term:
            escaped = term.replace('"', '""')
            parts.append(f'"{escaped}"')
        else:
            parts.append(_TOKEN_ESCAPE.sub(r"\\\1", term))
    return " OR ".join(parts)
