from typing import Any

import pytest
from pydantic import ValidationError

from grounded_resolver.config import BoostConfig, ScoreWeights
from grounded_resolver.resolution.scoring import CandidateScorer
from grounded_resolver.types import SearchResult


def _result(
    chunk_id: str,
    similarity: float,
    content: str = "",
    metadata: dict[str, Any] | None = None,
    title: str = "",
    keyword: float = 0.0,
) -> SearchResult:
    return SearchResult(
        chunk_id=chunk_id,
        content=content,
        similarity=similarity,
        metadata=metadata or {},
        material_id=f"m-{chunk_id}",
        material_title=title or chunk_id,
        keyword_similarity=keyword,
    )


@pytest.mark.parametrize(
    ("alias", "fts", "vector"),
    [(0.5, 0.3, 0.1), (0.6, 0.3, 0.2), (0.0, 0.0, 0.0), (1.0, 0.5, 0.0)],
)
def test_weights_must_sum_to_one(alias: float, fts: float, vector: float) -> None:
    with pytest.raises(ValidationError):
        ScoreWeights(alias=alias, fts=fts, vector=vector)


def test_weights_accept_a_valid_triple() -> None:
    weights = ScoreWeights(alias=0.5, fts=0.4, vector=0.1)

    assert weights.alias + weights.fts + weights.vector == pytest.approx(1.0)


def test_keyword_score_normalizes_against_best_keyword_hit() -> None:
    scored = CandidateScorer().score(
        [_result("a", 0.6, keyword=0.5), _result("b", 0.3, keyword=0.25)]
    )

    assert [item.result.chunk_id for item in scored] == ["a", "b"]
    assert scored[0].base_score == pytest.approx(0.3 * 1.0 + 0.1 * 0.6)
    assert scored[1].base_score == pytest.approx(0.3 * 0.5 + 0.1 * 0.3)
    assert scored[0].final_score == scored[0].base_score


def test_vector_only_hits_have_no_base_score() -> None:
    scored = CandidateScorer().score(
        [_result("lexical", 0.2, keyword=0.5), _result("semantic", 0.95)],
        terms=["semantic"],
    )

    by_id = {item.result.chunk_id: item for item in scored}
    assert by_id["semantic"].base_score == 0.0
    assert by_id["semantic"].final_score == 0.0
    assert by_id["lexical"].base_score == pytest.approx(0.3 + 0.1 * 0.2)
    assert [item.result.chunk_id for item in scored] == ["lexical", "semantic"]


def test_alias_in_query_adds_alias_weight() -> None:
    scored = CandidateScorer().score(
        [_result("a", 1.0, metadata={"aliases": ["G-3"]}, keyword=0.5)], query="iviskin g3"
    )

    assert scored[0].base_score == pytest.approx(1.0)


def test_context_terms_boost_is_bounded() -> None:
    terms = ["hair", "remover", "iviskin", "g3", "head"]
    scored = CandidateScorer().score(
        [
            _result(
                "a",
                1.0,
                content="iviskin g3 hair remover head",
                metadata={"aliases": "g3"},
                keyword=0.5,
            )
        ],
        query="g3",
        terms=terms,
    )

    assert scored[0].boosts_applied.term_matches == terms
    assert scored[0].final_score == pytest.approx(1.25)


def test_scores_stay_within_bounds() -> None:
    results = [
        _result(str(index), similarity, content="hair remover", metadata={"aliases": ["hair"]})
        for index, similarity in enumerate([1.7, 0.9, 0.2, 0.0, -0.3])
    ]

    scored = CandidateScorer().score(results, query="hair", terms=["hair", "remover"])

    for item in scored:
        assert 0.0 <= item.base_score <= 1.0
        assert 0.0 <= item.final_score <= 1.25


def test_zero_base_score_is_not_lifted_by_boosts() -> None:
    scored = CandidateScorer().score(
        [_result("a", 0.0, content="hair remover")], terms=["hair", "remover"]
    )

    assert scored[0].base_score == 0.0
    assert scored[0].final_score == 0.0
    assert scored[0].boosts_applied.term_matches == ["hair", "remover"]


def test_category_boost_only_when_enabled() -> None:
    results = [_result("a", 0.5, metadata={"category": "Beauty"}, keyword=0.5)]

    disabled = CandidateScorer().score(results, category_hint="beauty")
    enabled = CandidateScorer(boosts=BoostConfig(enable_category_boost=True)).score(
        results, category_hint="beauty"
    )

    assert disabled[0].boosts_applied.category_boost == 0.0
    assert enabled[0].boosts_applied.category_boost == 0.15
    assert enabled[0].final_score == pytest.approx(disabled[0].final_score * 1.15)


def test_to_candidate_carries_metadata_and_source() -> None:
    scored = CandidateScorer().score(
        [
            _result(
                "a",
                0.5,
                metadata={"category": "beauty", "brand": "Iviskin", "model": "G3"},
                title="Iviskin G3",
            )
        ],
        score_source="trgm",
    )

    candidate = scored[0].to_candidate()

    assert candidate.title == "Iviskin G3"
    assert (candidate.category, candidate.brand, candidate.model) == ("beauty", "Iviskin", "G3")
    assert candidate.score_source == "trgm"
    assert candidate.material_id == "m-a"


def test_empty_results_score_to_nothing() -> None:
    assert CandidateScorer().score([]) == []


def test_alias_match_alone_counts_as_text_signal() -> None:
    scored = CandidateScorer().score(
        [_result("a", 0.4, metadata={"aliases": ["g3"]})], query="g3 weight"
    )

    assert scored[0].base_score == pytest.approx(0.6 + 0.1 * 0.4)


def test_only_material_aliases_count_for_the_alias_score() -> None:
    scored = CandidateScorer().score(
        [_result("a", 0.4, title="Iviskin G3", keyword=0.5)], query="iviskin g3"
    )

    assert scored[0].base_score == pytest.approx(0.3 + 0.1 * 0.4)
