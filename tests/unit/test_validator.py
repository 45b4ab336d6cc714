from typing import Any

from grounded_resolver.retrieval.store import InMemorySearchBackend
from grounded_resolver.retrieval.validator import CorpusValidator
from grounded_resolver.types import Chunk, EmbeddedChunk, Material


def _backend() -> InMemorySearchBackend:
    backend = InMemorySearchBackend()
    for material_id, site_id, content in (
        ("vac", "site-a", "The cordless vacuum weighs 3 kg."),
        ("hair", "site-b", "The hair remover has a G3 head."),
    ):
        backend.upsert_material(Material(material_id, site_id, material_id))
        backend.replace_chunks(
            material_id,
            [
                EmbeddedChunk(
                    chunk=Chunk(content, 0, 0, len(content), 8),
                    vector=[1.0],
                    model="test",
                    dimension=1,
                )
            ],
        )
    return backend


class _BrokenBackend:
    def __init__(self) -> None:
        self.calls = 0

    def term_stats(self, terms: list[str], site_id: str) -> list[dict[str, Any]]:
        self.calls += 1
        raise RuntimeError("database unavailable")


def test_validate_terms_keeps_terms_present_in_the_tenant_corpus() -> None:
    validator = CorpusValidator(_backend())

    result = validator.validate_terms(["vacuum", "zebra"], "site-a")

    assert result.kept == ["vacuum"]
    assert [(item.term, item.reason) for item in result.dropped] == [("zebra", "not_found")]
    assert result.telemetry == {"cache_hits": 0, "db_queries": 1, "total_terms": 2}


def test_second_validation_is_served_from_cache() -> None:
    validator = CorpusValidator(_backend())
    validator.validate_terms(["vacuum", "zebra"], "site-a")

    result = validator.validate_terms(["vacuum", "zebra"], "site-a")

    assert result.kept == ["vacuum"]
    assert result.telemetry == {"cache_hits": 2, "db_queries": 0, "total_terms": 2}
    assert validator.cache_stats()["size"] == 2


def test_cache_is_scoped_per_site() -> None:
    validator = CorpusValidator(_backend())

    assert validator.validate_terms(["vacuum"], "site-a").kept == ["vacuum"]
    assert validator.validate_terms(["vacuum"], "site-b").kept == []
    assert validator.validate_terms(["g3"], "site-b").kept == ["g3"]


def test_backend_failure_marks_terms_as_validation_errors_and_caches_them() -> None:
    backend = _BrokenBackend()
    validator = CorpusValidator(backend)  # type: ignore[arg-type]

    first = validator.validate_terms(["vacuum", "g3"], "site-a")
    second = validator.validate_terms(["vacuum", "g3"], "site-a")

    assert first.kept == []
    assert {item.reason for item in first.dropped} == {"validation_error"}
    assert second.telemetry["db_queries"] == 0
    assert backend.calls == 1


def test_empty_terms_need_no_lookup() -> None:
    result = CorpusValidator(_backend()).validate_terms([], "site-a")

    assert result.kept == []
    assert result.telemetry == {"cache_hits": 0, "db_queries": 0, "total_terms": 0}


def test_clear_cache_forces_a_new_lookup() -> None:
    validator = CorpusValidator(_backend())
    validator.validate_terms(["vacuum"], "site-a")

    validator.clear_cache()

    assert validator.validate_terms(["vacuum"], "site-a").telemetry["db_queries"] == 1
