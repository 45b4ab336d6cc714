from grounded_resolver.config import AmbiguityConfig
from grounded_resolver.resolution.ambiguity import detect_ambiguity


def test_short_code_alone_is_ambiguous() -> None:
    result = detect_ambiguity("G3")

    assert result.ambiguous is True
    assert result.score == 0.5
    assert result.tokens == ["g3"]
    assert result.reasons == ["short_code", "mixed_alphanumeric"]


def test_brand_next_to_code_is_not_ambiguous() -> None:
    result = detect_ambiguity("Acme G3")

    assert result.ambiguous is False
    assert result.score == 0.0
    assert result.reasons == ["brand_present"]
    assert result.tokens == []


def test_brand_guard_applies_to_longer_queries() -> None:
    assert detect_ambiguity("iviskin g3 weight").ambiguous is False


def test_separator_variants_are_detected_after_normalization() -> None:
    assert detect_ambiguity("G-3").tokens == ["g3"]


def test_tier_words_are_ambiguous_and_score_is_capped() -> None:
    result = detect_ambiguity("pro max")

    assert result.ambiguous is True
    assert result.score == 1.0
    assert result.reasons == ["tier_word"]


def test_tier_words_never_count_as_brands() -> None:
    result = detect_ambiguity("premium g3")

    assert result.ambiguous is True
    assert result.tokens == ["premium", "g3"]


def test_plain_question_is_not_ambiguous() -> None:
    result = detect_ambiguity("how much does it weigh")

    assert result.ambiguous is False
    assert result.score == 0.0
    assert result.reasons == []


def test_token_weight_is_configurable() -> None:
    assert detect_ambiguity("g3", AmbiguityConfig(token_weight=0.3)).score == 0.3
