from grounded_resolver.config import ResolutionConfig
from grounded_resolver.resolution.engine import make_decision
from grounded_resolver.types import AmbiguityResult, Candidate, ResolutionMode

AMBIGUOUS = AmbiguityResult(ambiguous=True, score=0.5, reasons=["short_code"], tokens=["g3"])
SPECIFIC = AmbiguityResult(ambiguous=False, score=0.0, reasons=["brand_present"], tokens=[])


def _candidate(
    candidate_id: str, final: float, category: str | None, base: float | None = None
) -> Candidate:
    return Candidate(
        id=candidate_id,
        title=candidate_id,
        category=category,
        base_score=final if base is None else base,
        final_score=final,
    )


def test_no_candidates_is_a_refusal() -> None:
    decision = make_decision([], AMBIGUOUS)

    assert decision.mode == ResolutionMode.REFUSAL
    assert decision.candidates == []


def test_top_candidate_without_text_signal_is_refused() -> None:
    decision = make_decision([_candidate("a", 0.9, "beauty", base=0.0)], SPECIFIC)

    assert decision.mode == ResolutionMode.REFUSAL


def test_ambiguous_close_candidates_from_different_categories_go_multi() -> None:
    top = _candidate("a", 0.40, "beauty")
    second = _candidate("b", 0.35, "cleaning")

    decision = make_decision([top, second], AMBIGUOUS)

    assert decision.mode == ResolutionMode.MULTI
    assert decision.candidates == [top, second]


def test_same_category_stays_single() -> None:
    decision = make_decision(
        [_candidate("a", 0.40, "beauty"), _candidate("b", 0.35, "beauty")], AMBIGUOUS
    )

    assert decision.mode == ResolutionMode.SINGLE
    assert decision.candidates[0].id == "a"


def test_specific_query_stays_single() -> None:
    decision = make_decision(
        [_candidate("a", 0.40, "beauty"), _candidate("b", 0.39, "cleaning")], SPECIFIC
    )

    assert decision.mode == ResolutionMode.SINGLE


def test_clear_winner_stays_single() -> None:
    decision = make_decision(
        [_candidate("a", 0.9, "beauty"), _candidate("b", 0.3, "cleaning")], AMBIGUOUS
    )

    assert decision.mode == ResolutionMode.SINGLE


def test_thresholds_come_from_config() -> None:
    candidates = [_candidate("a", 0.9, "beauty"), _candidate("b", 0.3, "cleaning")]

    decision = make_decision(candidates, AMBIGUOUS, ResolutionConfig(ambiguity_delta=0.7))

    assert decision.mode == ResolutionMode.MULTI


def test_decision_is_deterministic() -> None:
    candidates = [_candidate("a", 0.40, "beauty"), _candidate("b", 0.35, "cleaning")]

    decisions = {make_decision(list(candidates), AMBIGUOUS).mode for _ in range(20)}

    assert decisions == {ResolutionMode.MULTI}
