"""Product ranking with page-context boost and clarification decisions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from loguru import logger

from grounded_resolver.config import MarginConfig
from grounded_resolver.resolution.margin import (
    ConfidenceGate,
    ContextTokenizer,
    GateItem,
    MarginPolicy,
    MarginReranker,
    token_overlap_boost,
)


@dataclass(slots=True)
class Product:
    id: str
    title: str
    match_score: float = 0.0
    match_type: str = "unknown"
    url: str | None = None
    description: str | None = None
    original_score: float | None = None
    context_boost: float = 0.0


@dataclass(slots=True)
class ClarificationOption:
    category: str
    display_name: str
    products: list[Product] = field(default_factory=list)


@dataclass(slots=True)
class ProductMatch:
    products: list[Product]
    confidence: float
    should_clarify: bool
    reason: str
    clarification_options: list[ClarificationOption] = field(default_factory=list)


class ProductMatcher:
    """Re-ranks already-scored products using what is on the current page.

    Boosts are bounded by `boost_factor` and can only reorder products within
    `margin_threshold` of the leader; the confidence gate then decides whether
    the caller should ask which product the user meant.
    """

    max_clarification_products = 6

    def __init__(self, config: MarginConfig | None = None) -> None:
        self.config = config or MarginConfig()
        self._gate = ConfidenceGate(self.config)

    def match(
        self,
        products: list[Product],
        query: str,
        page_context: Mapping[str, Any] | None = None,
        aliases: Iterable[str] | None = None,
    ) -> ProductMatch:
        ranked = self.apply_page_context(products, page_context, aliases)
        gate = self._gate.evaluate(
            [GateItem(title=p.title, score=p.match_score, match_type=p.match_type) for p in ranked],
            query,
        )
        options: list[ClarificationOption] = []
        if gate.should_clarify and ranked:
            options.append(
                ClarificationOption(
                    category="products",
                    display_name="Products",
                    products=ranked[: self.max_clarification_products],
                )
            )
        logger.debug(
            f"[ProductMatcher] {len(ranked)} products, confidence={gate.confidence:.2f} "
            f"clarify={gate.should_clarify} reason={gate.reason}"
        )
        return ProductMatch(
            products=ranked,
            confidence=gate.confidence,
            should_clarify=gate.should_clarify,
            reason=gate.reason,
            clarification_options=options,
        )

    def apply_page_context(
        self,
        products: list[Product],
        page_context: Mapping[str, Any] | None,
        aliases: Iterable[str] | None = None,
    ) -> list[Product]:
        page_context = page_context or {}
        title = page_context.get("title") or ""
        description = page_context.get("description") or ""
        if not self.config.enabled or not (title or description):
            return [
                _with_scores(product, original=product.match_score, boost=0.0, score=product.match_score)
                for product in products
            ]

        tokenizer = ContextTokenizer(aliases)
        title_boost = token_overlap_boost(tokenizer, f"{title} {description}", self.config.boost_factor)
        reranker: MarginReranker[Product] = MarginReranker(
            score_fn=lambda product: product.match_score or 0.0,
            boost_fn=lambda product: title_boost(product.title),
            policy=MarginPolicy(margin_threshold=self.config.margin_threshold),
        )
        return [
            _with_scores(entry.item, original=entry.original_score, boost=entry.boost, score=entry.score)
            for entry in reranker.rerank(products)
        ]


def _with_scores(product: Product, *, original: float, boost: float, score: float) -> Product:
    return Product(
        id=product.id,
        title=product.title,
        match_score=score,
        match_type=product.match_type,
        url=product.url,
        description=product.description,
        original_score=original,
        context_boost=boost,
    )
