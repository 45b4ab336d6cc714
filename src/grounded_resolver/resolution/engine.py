"""Resolution engine: search, score, decide, and assemble the grounded prompt."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from grounded_resolver.config import (
    AmbiguityConfig,
    BoostConfig,
    ContextConfig,
    ResolutionConfig,
)
from grounded_resolver.obs.telemetry import TelemetryRecord, TelemetrySink, TelemetryTimer
from grounded_resolver.resolution.ambiguity import detect_ambiguity
from grounded_resolver.resolution.chunks import ChunkRetriever, get_post_filter_type
from grounded_resolver.resolution.context import extract_context, filter_terms_for_telemetry
from grounded_resolver.resolution.margin import MarginPolicy, MarginReranker
from grounded_resolver.retrieval.hybrid import HybridSearchService
from grounded_resolver.text.normalizer import normalize_text
from grounded_resolver.types import (
    AmbiguityResult,
    Candidate,
    Decision,
    ResolutionMode,
    ResolutionResult,
    SafeContext,
)

CONTEXT_SEPARATOR = "\n\n---\n\n"

REFUSAL_INSTRUCTION = (
    "You must respond with a polite message that you don't have specific information "
    "about that topic. Keep it brief and natural."
)

MULTI_CONTEXT_INSTRUCTION = (
    "IMPORTANT: Multiple products match this query.\n"
    "Do NOT merge specs across products.\n"
    "If the user asked about a single item (e.g., weight), answer for ONE product only.\n"
    "If uncertain, ask a brief clarifying question first."
)


@dataclass(slots=True)
class ResolutionContext:
    messages: list[str] = field(default_factory=list)
    page_context: dict[str, Any] | None = None


@dataclass(slots=True)
class _Outcome:
    result: ResolutionResult
    postfilter_type: str | None = None
    postfilter_survivors: int | None = None
    multi_context_tokens: int | None = None
    multi_context_products: list[str] = field(default_factory=list)


def make_decision(
    candidates: list[Candidate],
    ambiguity: AmbiguityResult,
    config: ResolutionConfig | None = None,
) -> Decision:
    """Pick one candidate, two candidates side by side, or none.

    Requires a text signal: a top candidate with `base_score == 0` is refused
    however its boosts turned out. Two candidates are presented only when the
    query is ambiguous, their final scores are within `ambiguity_delta` and
    they belong to different categories.
    """

    config = config or ResolutionConfig()
    if not candidates:
        return Decision.refusal()

    top = candidates[0]
    if top.base_score == 0:
        return Decision.refusal()

    second = candidates[1] if len(candidates) > 1 else None
    delta = top.final_score - (second.final_score if second else 0.0)
    if (
        second is not None
        and ambiguity.score >= config.ambiguity_min_score
        and delta <= config.ambiguity_delta
        and top.category != second.category
    ):
        return Decision.multi(top, second)
    return Decision.single(top)


def build_single_prompt(base_instructions: str, contents: list[str]) -> str:
    return f"{base_instructions}\n\nRelevant Training Materials:\n{CONTEXT_SEPARATOR.join(contents)}"


def build_multi_prompt(base_instructions: str, blocks: list[str]) -> str:
    return (
        f"{base_instructions}\n\n{MULTI_CONTEXT_INSTRUCTION}\n\n"
        f"Available contexts:\n{CONTEXT_SEPARATOR.join(blocks)}"
    )


def build_refusal_prompt(base_instructions: str) -> str:
    return f"{base_instructions}\n\n{REFUSAL_INSTRUCTION}"


def refusal(base_instructions: str) -> ResolutionResult:
    return ResolutionResult(
        mode=ResolutionMode.REFUSAL, system_prompt=build_refusal_prompt(base_instructions)
    )


class ResolutionEngine:
    """Drives one query through Searching -> Scoring -> Deciding.

    The terminal state is Single (one candidate's chunks), Multi (two candidates'
    chunks in labelled blocks plus a no-merge instruction) or Refusal. Failures
    anywhere resolve to Refusal; the caller never sees an exception. Each call
    submits one telemetry record without waiting for it to be written.
    """

    def __init__(
        self,
        search: HybridSearchService,
        *,
        config: ResolutionConfig | None = None,
        context_config: ContextConfig | None = None,
        ambiguity_config: AmbiguityConfig | None = None,
        boost_config: BoostConfig | None = None,
        chunk_retriever: ChunkRetriever | None = None,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        self.config = config or ResolutionConfig()
        self.context_config = context_config or ContextConfig()
        self.ambiguity_config = ambiguity_config or AmbiguityConfig()
        self.boost_config = boost_config or BoostConfig()
        self._search = search
        self._chunks = chunk_retriever or ChunkRetriever(search, self.config)
        self._telemetry = telemetry
        self._ranker: MarginReranker[Candidate] = MarginReranker(
            score_fn=lambda candidate: candidate.base_score,
            boost_fn=self._context_boost,
            policy=MarginPolicy(margin_threshold=self.config.candidate_margin),
        )

    def resolve(
        self,
        query: str,
        site_id: str,
        context: ResolutionContext | None = None,
        base_instructions: str = "",
    ) -> ResolutionResult:
        context = context or ResolutionContext()
        timer = TelemetryTimer()

        if not self.config.enable_smart_context:
            return self._resolve_legacy(query, site_id, context, base_instructions, timer)

        safe = SafeContext(terms=[], category_hint=None, query_redacted=False)
        ambiguity = AmbiguityResult(ambiguous=False, score=0.0, reasons=[], tokens=[])
        candidates: list[Candidate] = []
        search_latency = 0.0
        try:
            safe = extract_context(context.messages, context.page_context, self.context_config)
            ambiguity = detect_ambiguity(query, self.ambiguity_config)

            timer.start_search()
            scored = self._search.search_with_smart_context(query, site_id, safe)
            search_latency = timer.end_search()

            candidates = self.rank_candidates([item.to_candidate() for item in scored])
            decision = make_decision(candidates, ambiguity, self.config)
            outcome = self._execute(decision, site_id, base_instructions)
        except Exception as exc:
            logger.error(f"[ResolutionEngine] resolution failed for site {site_id}: {exc}")
            outcome = _Outcome(result=refusal(base_instructions))

        logger.info(
            f"[ResolutionEngine] site={site_id} decision={outcome.result.mode.value} "
            f"candidates={len(candidates)} ambiguity={ambiguity.score:.2f}"
        )
        record = self._record(
            query=query,
            site_id=site_id,
            context=context,
            safe=safe,
            ambiguity=ambiguity,
            candidates=candidates,
            outcome=outcome,
            timer=timer,
            search_latency=search_latency,
        )
        outcome.result.telemetry = record.to_row()
        self._submit(record)
        return outcome.result

    def rank_candidates(self, candidates: list[Candidate]) -> list[Candidate]:
        return [entry.item for entry in self._ranker.rerank(candidates)]

    def _context_boost(self, candidate: Candidate) -> float:
        boosts = candidate.boosts_applied
        raw = len(boosts.term_matches) * self.boost_config.context_term + boosts.category_boost
        return min(raw, self.boost_config.max_total)

    def _execute(self, decision: Decision, site_id: str, base_instructions: str) -> _Outcome:
        if decision.mode == ResolutionMode.SINGLE:
            return self._single(decision.candidates[0], site_id, base_instructions)
        if decision.mode == ResolutionMode.MULTI:
            return self._multi(decision.candidates, site_id, base_instructions)
        return _Outcome(result=refusal(base_instructions))

    def _single(self, candidate: Candidate, site_id: str, base_instructions: str) -> _Outcome:
        chunks = self._chunks.get_chunks_for_candidate(candidate, site_id)
        postfilter_type = get_post_filter_type(candidate)
        if not chunks:
            return _Outcome(
                result=refusal(base_instructions),
                postfilter_type=postfilter_type,
                postfilter_survivors=0,
            )

        result = ResolutionResult(
            mode=ResolutionMode.SINGLE,
            system_prompt=build_single_prompt(base_instructions, [c.content for c in chunks]),
            chunks=[{"content": c.content, "source": c.material_title} for c in chunks],
        )
        return _Outcome(
            result=result, postfilter_type=postfilter_type, postfilter_survivors=len(chunks)
        )

    def _multi(
        self, candidates: list[Candidate], site_id: str, base_instructions: str
    ) -> _Outcome:
        budget = self.config.max_multi_context_tokens
        total = 0
        survivors = 0
        sections: list[tuple[Candidate, list[str]]] = []

        for candidate in candidates[:2]:
            chunks = self._chunks.get_chunks_for_candidate(candidate, site_id)
            survivors += len(chunks)
            if not chunks:
                continue
            selected = [
                chunk.content[: self.config.multi_chunk_chars]
                for chunk in chunks[: self.config.multi_chunks_per_candidate]
            ]
            total += len("".join(selected))
            if total > budget:
                break
            sections.append((candidate, selected))

        postfilter_type = get_post_filter_type(candidates[0])
        if not sections:
            return _Outcome(
                result=refusal(base_instructions),
                postfilter_type=postfilter_type,
                postfilter_survivors=survivors,
                multi_context_tokens=total,
            )

        blocks = [
            f"[Product: {candidate.title} - Category: {candidate.category or 'uncategorized'}]\n"
            + "\n".join(selected)
            for candidate, selected in sections
        ]
        result = ResolutionResult(
            mode=ResolutionMode.MULTI,
            system_prompt=build_multi_prompt(base_instructions, blocks),
            chunks=[
                {"content": content, "source": candidate.title}
                for candidate, selected in sections
                for content in selected
            ],
        )
        return _Outcome(
            result=result,
            postfilter_type=postfilter_type,
            postfilter_survivors=survivors,
            multi_context_tokens=total,
            multi_context_products=[candidate.title for candidate, _ in sections],
        )

    def _resolve_legacy(
        self,
        query: str,
        site_id: str,
        context: ResolutionContext,
        base_instructions: str,
        timer: TelemetryTimer,
    ) -> ResolutionResult:
        limit = self.config.fallback_limit
        search_latency = 0.0
        try:
            timer.start_search()
            results = self._search.hybrid_search(
                query, site_id, self._search.default_options(limit=limit)
            )[:limit]
            search_latency = timer.end_search()
            if not results:
                result = refusal(base_instructions)
            else:
                blocks = [f"[Source: {r.material_title}]\n{r.content}" for r in results]
                result = ResolutionResult(
                    mode=ResolutionMode.SINGLE,
                    system_prompt=build_single_prompt(base_instructions, blocks),
                    chunks=[{"content": r.content, "source": r.material_title} for r in results],
                )
        except Exception as exc:
            logger.error(f"[ResolutionEngine] legacy search failed for site {site_id}: {exc}")
            result = refusal(base_instructions)

        record = TelemetryRecord(
            site_id=site_id,
            query=query,
            query_norm=normalize_text(query),
            decision=result.mode.value,
            page_context_used=bool(context.page_context),
            latency_ms=timer.total_latency_ms(),
            search_latency_ms=search_latency,
        )
        result.telemetry = record.to_row()
        self._submit(record)
        return result

    def _record(
        self,
        *,
        query: str,
        site_id: str,
        context: ResolutionContext,
        safe: SafeContext,
        ambiguity: AmbiguityResult,
        candidates: list[Candidate],
        outcome: _Outcome,
        timer: TelemetryTimer,
        search_latency: float,
    ) -> TelemetryRecord:
        matched_terms: list[str] = []
        category_boost = 0.0
        max_boost = 0.0
        for candidate in candidates:
            for term in candidate.boosts_applied.term_matches:
                if term not in matched_terms:
                    matched_terms.append(term)
            category_boost = max(category_boost, candidate.boosts_applied.category_boost)
            max_boost = max(max_boost, self._context_boost(candidate))

        mode = outcome.result.mode
        return TelemetryRecord(
            site_id=site_id,
            query=query,
            query_norm=normalize_text(query),
            decision=mode.value,
            query_redacted=safe.query_redacted,
            extracted_terms=list(safe.terms),
            relevant_terms=filter_terms_for_telemetry(safe.terms, candidates),
            category_hint=safe.category_hint,
            category_source="page" if safe.category_hint else "none",
            ambiguous=ambiguity.ambiguous,
            ambiguous_score=ambiguity.score,
            ambiguity_tokens=list(ambiguity.tokens),
            candidates=[
                {
                    "id": c.id,
                    "title": c.title,
                    "category": c.category or "uncategorized",
                    "base_score": c.base_score,
                    "final_score": c.final_score,
                    "score_source": c.score_source,
                }
                for c in candidates
            ],
            multi_context_used=mode == ResolutionMode.MULTI,
            multi_context_products=outcome.multi_context_products,
            multi_context_tokens=outcome.multi_context_tokens,
            postfilter_type=outcome.postfilter_type,
            postfilter_survivors=outcome.postfilter_survivors,
            page_context_used=bool(context.page_context),
            latency_ms=timer.total_latency_ms(),
            search_latency_ms=search_latency,
            boosts_applied={"terms": matched_terms, "category_boost": category_boost},
            max_total_boost_applied=max_boost,
            multilingual_fallback=any(c.score_source == "trgm" for c in candidates),
            score_source=candidates[0].score_source if candidates else "fts",
        )

    def _submit(self, record: TelemetryRecord) -> None:
        if self._telemetry is not None:
            self._telemetry.log_non_blocking(record)
