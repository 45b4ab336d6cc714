import pytest

from grounded_resolver.config import MarginConfig
from grounded_resolver.resolution.products import Product, ProductMatcher


def _products() -> list[Product]:
    return [
        Product(id="g3", title="Iviskin G3", match_score=1.0, match_type="fuzzy"),
        Product(id="g4", title="Iviskin G4", match_score=0.95, match_type="fuzzy"),
        Product(id="g4t", title="Iviskin G4 Travel", match_score=0.5, match_type="fuzzy"),
    ]


def test_without_page_context_scores_are_unchanged() -> None:
    ranked = ProductMatcher().apply_page_context(_products(), None)

    assert [product.id for product in ranked] == ["g3", "g4", "g4t"]
    assert all(product.context_boost == 0.0 for product in ranked)
    assert [product.original_score for product in ranked] == [1.0, 0.95, 0.5]


def test_page_context_breaks_near_ties_only() -> None:
    ranked = ProductMatcher().apply_page_context(
        _products(), {"title": "Iviskin G4 launch offer", "description": None}
    )

    assert [product.id for product in ranked] == ["g4", "g3", "g4t"]
    assert ranked[0].context_boost == pytest.approx(0.15)
    assert ranked[0].original_score == 0.95
    assert ranked[0].match_score == pytest.approx(0.95 * 1.15)
    assert ranked[2].match_score == pytest.approx(0.5 * 1.1)


def test_disabled_matcher_ignores_page_context() -> None:
    ranked = ProductMatcher(MarginConfig(enabled=False)).apply_page_context(
        _products(), {"title": "Iviskin G4 launch offer"}
    )

    assert [product.id for product in ranked] == ["g3", "g4", "g4t"]


def test_match_offers_clarification_for_close_products() -> None:
    products = [
        Product(id=str(index), title=f"Model {index}", match_score=0.8) for index in range(8)
    ]

    outcome = ProductMatcher().match(products, "model")

    assert outcome.should_clarify is True
    assert outcome.reason == "close_scores"
    assert len(outcome.clarification_options) == 1
    option = outcome.clarification_options[0]
    assert (option.category, option.display_name) == ("products", "Products")
    assert len(option.products) == 6


def test_match_is_confident_for_clear_winner() -> None:
    outcome = ProductMatcher().match(_products()[:1], "iviskin g3")

    assert outcome.should_clarify is False
    assert outcome.confidence == 1.0
    assert outcome.clarification_options == []
