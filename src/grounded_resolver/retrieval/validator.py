"""Validates extracted terms against the tenant's corpus."""

from __future__ import annotations

from typing import Any

from loguru import logger

from grounded_resolver.config import CorpusValidationConfig
from grounded_resolver.resilience.cache import TTLCache
from grounded_resolver.retrieval.store import SearchBackend
from grounded_resolver.types import ValidatedTerm, ValidationResult


class CorpusValidator:
    """Checks which query terms actually occur in a tenant's content.

    Outcomes are cached per `(site, term)` for `cache_ttl_seconds`; reads refresh
    the entry. Uncached terms are resolved with one batched `term_stats` call.
    Negative outcomes, including backend failures, are cached too, so a broken
    backend is not hammered term by term.
    """

    def __init__(
        self,
        backend: SearchBackend,
        config: CorpusValidationConfig | None = None,
        *,
        cache: TTLCache | None = None,
    ) -> None:
        self.config = config or CorpusValidationConfig()
        self._backend = backend
        self._cache = cache or TTLCache(
            max_size=self.config.cache_size, ttl_seconds=self.config.cache_ttl_seconds
        )

    def validate_terms(self, terms: list[str], site_id: str) -> ValidationResult:
        if not terms:
            return ValidationResult(
                kept=[],
                dropped=[],
                validated_terms=[],
                telemetry={"cache_hits": 0, "db_queries": 0, "total_terms": 0},
            )

        cache_hits = 0
        validated: list[ValidatedTerm] = []
        uncached: list[str] = []
        for term in terms:
            cached = self._cache.get(_cache_key(site_id, term))
            if cached is not None:
                validated.append(cached)
                cache_hits += 1
            else:
                uncached.append(term)

        db_queries = 0
        if uncached:
            db_queries = 1
            validated.extend(self._lookup(uncached, site_id))

        return ValidationResult(
            kept=[item.term for item in validated if item.kept],
            dropped=[item for item in validated if not item.kept],
            validated_terms=validated,
            telemetry={
                "cache_hits": cache_hits,
                "db_queries": db_queries,
                "total_terms": len(terms),
            },
        )

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_stats(self) -> dict[str, Any]:
        return self._cache.stats()

    def _lookup(self, terms: list[str], site_id: str) -> list[ValidatedTerm]:
        try:
            rows = self._backend.term_stats(terms, site_id)
        except Exception as exc:
            logger.error(f"[CorpusValidator] term validation failed for site {site_id}: {exc}")
            failed = [
                ValidatedTerm(term=term, doc_count=0, kept=False, reason="validation_error")
                for term in terms
            ]
            for item in failed:
                self._cache.put(_cache_key(site_id, item.term), item)
            return failed

        resolved: list[ValidatedTerm] = []
        seen: set[str] = set()
        for row in rows or []:
            item = ValidatedTerm(
                term=row["term"],
                doc_count=int(row.get("doc_count") or 0),
                kept=bool(row.get("kept")),
                reason=row.get("reason"),
            )
            seen.add(item.term)
            resolved.append(item)
            self._cache.put(_cache_key(site_id, item.term), item)

        for term in terms:
            if term not in seen:
                missing = ValidatedTerm(term=term, doc_count=0, kept=False, reason="not_found")
                resolved.append(missing)
                self._cache.put(_cache_key(site_id, term), missing)
        return resolved


def _cache_key(site_id: str, term: str) -> str:
    return f"{site_id}:{term}"
