"""Margin-bounded re-ranking and a score-gap confidence gate.

The re-ranker lets a context boost reorder only items whose original score is
within `margin_threshold` (relative) of the leader. Everything further behind
keeps its position after the re-ranked group, so a boost can break near-ties
but never lift a weak match over a clearly better one.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterable, TypeVar

from grounded_resolver.config import MarginConfig

T = TypeVar("T")

_NON_WORD = re.compile(r"[^\w\s-]")
_DIGIT = re.compile(r"\d")


class ContextTokenizer:
    """Tokenizer that keeps short alphanumeric codes (4k, g3) and known aliases."""

    def __init__(self, aliases: Iterable[str] | None = None) -> None:
        self.aliases = {alias.upper() for alias in aliases or [] if alias}

    def tokenize(self, text: str) -> list[str]:
        cleaned = _NON_WORD.sub(" ", text.lower()).replace("-", " ")
        return [token for token in cleaned.split() if self._keep(token)]

    def _keep(self, token: str) -> bool:
        if len(token) >= 3:
            return True
        if len(token) >= 2 and _DIGIT.search(token):
            return True
        return token.upper() in self.aliases


def token_overlap_boost(
    tokenizer: ContextTokenizer, context_text: str, boost_factor: float
) -> Callable[[str], float]:
    """Boost for a title by the share of its tokens found in the context text."""

    context_tokens = set(tokenizer.tokenize(context_text))

    def boost(title: str) -> float:
        title_tokens = tokenizer.tokenize(title)
        matching = [token for token in title_tokens if token in context_tokens]
        if not matching:
            return 0.0
        ratio = len(matching) / max(len(title_tokens), 1)
        return min(boost_factor, ratio * boost_factor)

    return boost


@dataclass(slots=True)
class MarginPolicy:
    margin_threshold: float = 0.10
    enabled: bool = True


@dataclass(slots=True)
class RankedItem(Generic[T]):
    item: T
    original_score: float
    boost: float
    score: float


class MarginReranker(Generic[T]):
    """Applies `score * (1 + boost)` and re-sorts only the near-top group."""

    def __init__(
        self,
        score_fn: Callable[[T], float],
        boost_fn: Callable[[T], float],
        policy: MarginPolicy | None = None,
    ) -> None:
        self._score_fn = score_fn
        self._boost_fn = boost_fn
        self.policy = policy or MarginPolicy()

    def rerank(self, items: list[T]) -> list[RankedItem[T]]:
        ranked: list[RankedItem[T]] = []
        for item in items:
            original = self._score_fn(item)
            boost = self._boost_fn(item) if self.policy.enabled else 0.0
            ranked.append(
                RankedItem(
                    item=item, original_score=original, boost=boost, score=original * (1 + boost)
                )
            )
        if not ranked or not self.policy.enabled:
            return ranked

        top = max(entry.original_score for entry in ranked)
        floor = top - top * self.policy.margin_threshold
        movable = [entry for entry in ranked if entry.original_score >= floor]
        fixed = [entry for entry in ranked if entry.original_score < floor]
        movable.sort(key=lambda entry: entry.score, reverse=True)
        return movable + fixed


@dataclass(slots=True)
class GateItem:
    title: str
    score: float
    match_type: str = "unknown"


@dataclass(slots=True)
class ConfidenceResult:
    confidence: float
    should_clarify: bool
    reason: str
    details: dict[str, float] = field(default_factory=dict)


class ConfidenceGate:
    """Decides whether the top result is clear enough or a clarifying question is due."""

    def __init__(self, config: MarginConfig | None = None) -> None:
        self.config = config or MarginConfig()

    def evaluate(self, items: list[GateItem], query: str) -> ConfidenceResult:
        if len(items) <= 1:
            return ConfidenceResult(confidence=1.0, should_clarify=False, reason="single_result")

        top, second = items[0], items[1]
        gap = (top.score - second.score) / top.score if top.score > 0 else 0.0
        confidence = min(1.0, gap / 0.1)

        query_tokens = query.strip().split()
        single_token = len(query_tokens) == 1
        if single_token:
            confidence *= 0.7
        elif len(query_tokens) <= 2:
            confidence *= 0.85

        if top.match_type == "exact" and gap > 0.2:
            confidence = max(confidence, 0.9)
        elif top.match_type == "alias" and second.match_type == "alias":
            confidence *= 0.8

        top_title = top.title.lower()
        second_title = second.title.lower()
        different_products = (
            second_title.split(" ")[0] not in top_title
            and top_title.split(" ")[0] not in second_title
        )
        if different_products and gap < 0.15:
            confidence *= 0.6

        should_clarify = confidence < self.config.confidence_threshold
        reason = "high_confidence"
        if should_clarify:
            if gap < 0.05:
                reason = "close_scores"
            elif single_token:
                reason = "single_token"
            elif different_products:
                reason = "different_categories"
            else:
                reason = "low_confidence"

        return ConfidenceResult(
            confidence=confidence,
            should_clarify=should_clarify,
            reason=reason,
            details={"score_gap": gap},
        )
