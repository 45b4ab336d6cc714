"""Normalized candidate scoring with bounded context boosts."""

from __future__ import annotations

from dataclasses import dataclass, field

from grounded_resolver.config import BoostConfig, ScoreWeights
from grounded_resolver.text.normalizer import normalize_text
from grounded_resolver.types import BoostsApplied, Candidate, SearchResult


@dataclass(slots=True)
class ScoredResult:
    """A search hit with its normalized base score and boosted final score."""

    result: SearchResult
    base_score: float
    final_score: float
    score_source: str = "fts"
    boosts_applied: BoostsApplied = field(default_factory=BoostsApplied)

    def to_candidate(self) -> Candidate:
        metadata = self.result.metadata or {}
        return Candidate(
            id=self.result.chunk_id,
            title=self.result.material_title,
            content=self.result.content,
            category=metadata.get("category"),
            brand=metadata.get("brand"),
            model=metadata.get("model"),
            base_score=self.base_score,
            final_score=self.final_score,
            score_source=self.score_source,
            boosts_applied=self.boosts_applied,
            material_id=self.result.material_id,
        )


class CandidateScorer:
    """Turns raw search similarities into comparable candidate scores.

    base  = alias * w_alias + fts_norm * w_fts + vector * w_vector   (in [0, 1])
    final = clamp(base * (1 + min(term_boost + category_boost, max_total)), 0, max_final)

    `fts_norm` is the keyword (full-text or trigram) similarity relative to the
    best keyword hit of the batch; a hit found by vector search alone has none.
    `alias` is 1.0 when one of the material's `aliases` appears in the query.
    The vector share only counts next to an alias or keyword match, so a hit
    backed by vector similarity alone scores zero, and boosts only multiply.
    """

    def __init__(
        self,
        weights: ScoreWeights | None = None,
        boosts: BoostConfig | None = None,
    ) -> None:
        self.weights = weights or ScoreWeights()
        self.boosts = boosts or BoostConfig()

    def score(
        self,
        results: list[SearchResult],
        *,
        query: str = "",
        terms: list[str] | None = None,
        category_hint: str | None = None,
        score_source: str = "fts",
    ) -> list[ScoredResult]:
        if not results:
            return []

        terms = terms or []
        query_norm = normalize_text(query)
        max_keyword = max(result.keyword_similarity or 0.0 for result in results) or 1.0

        scored: list[ScoredResult] = []
        for result in results:
            similarity = result.similarity or 0.0
            alias_norm = self._alias_score(result, query_norm)
            fts_norm = _clamp((result.keyword_similarity or 0.0) / max_keyword, 0.0, 1.0)
            has_text_signal = alias_norm > 0.0 or fts_norm > 0.0
            vector_norm = _clamp(similarity, 0.0, 1.0) if has_text_signal else 0.0
            base = (
                alias_norm * self.weights.alias
                + fts_norm * self.weights.fts
                + vector_norm * self.weights.vector
            )
            base = _clamp(base, 0.0, 1.0)

            content = result.content.lower()
            title = result.material_title.lower()
            term_matches = [
                term for term in terms if term.lower() in content or term.lower() in title
            ]
            term_boost = len(term_matches) * self.boosts.context_term
            category_boost = self._category_boost(result, category_hint)
            total_boost = min(term_boost + category_boost, self.boosts.max_total)

            final = _clamp(base * (1 + total_boost), 0.0, self.boosts.max_final_score)
            scored.append(
                ScoredResult(
                    result=result,
                    base_score=base,
                    final_score=final,
                    score_source=score_source,
                    boosts_applied=BoostsApplied(
                        term_matches=term_matches, category_boost=category_boost
                    ),
                )
            )

        scored.sort(key=lambda item: item.final_score, reverse=True)
        return scored

    def _category_boost(self, result: SearchResult, category_hint: str | None) -> float:
        if not self.boosts.enable_category_boost or not category_hint:
            return 0.0
        category = (result.metadata or {}).get("category")
        if category and str(category).lower() == category_hint.lower():
            return self.boosts.category
        return 0.0

    @staticmethod
    def _alias_score(result: SearchResult, query_norm: str) -> float:
        if not query_norm:
            return 0.0
        aliases = (result.metadata or {}).get("aliases") or []
        if isinstance(aliases, str):
            aliases = [aliases]
        for alias in aliases:
            alias_norm = normalize_text(str(alias))
            if alias_norm and alias_norm in query_norm:
                return 1.0
        return 0.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
