"""Search backend contract and the in-memory implementation."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from math import sqrt
from typing import Any, Protocol

from grounded_resolver.text.normalizer import normalize_text
from grounded_resolver.types import EmbeddedChunk, Material, SearchResult

KEYWORD_SIMILARITY = 0.5
TRIGRAM_SIMILARITY = 0.5

_TERM_TOKEN = re.compile(r"\w+", flags=re.UNICODE)
_WEBSEARCH_PART = re.compile(r'"((?:[^"]|"")*)"|(\S+)')


class SearchBackend(Protocol):
    """Storage and primitive search operations, always scoped by tenant."""

    def upsert_material(self, material: Material) -> None:
        """Insert or update the owning document."""

    def replace_chunks(self, material_id: str, chunks: list[EmbeddedChunk]) -> list[str]:
        """Delete the material's chunks, then insert the given ones."""

    def delete_chunks(self, material_id: str) -> int:
        """Remove every chunk of a material."""

    def vector_search(
        self, query_embedding: list[float], site_id: str, limit: int
    ) -> list[SearchResult]:
        """Cosine-similarity search over active materials."""

    def keyword_search(self, query: str, site_id: str, limit: int) -> list[SearchResult]:
        """Full-text search (simple configuration, websearch or OR syntax)."""

    def trigram_search(self, query: str, site_id: str, limit: int) -> list[SearchResult]:
        """Substring search used for scripts without word boundaries."""

    def term_stats(self, terms: list[str], site_id: str) -> list[dict[str, Any]]:
        """Per-term document counts: term, doc_count, kept, reason."""

    def get_embedding(self, chunk_id: str) -> tuple[str, list[float]] | None:
        """Site id and stored vector of one chunk."""


@dataclass(slots=True)
class _StoredChunk:
    chunk_id: str
    material_id: str
    content: str
    tokens: list[str]
    embedding: list[float]
    model: str
    dimension: int
    metadata: dict[str, Any]


class InMemorySearchBackend:
    """Deterministic backend used for tests and local prototyping.

    `term_stats` is existence-only unless `max_doc_fraction` is set, in which
    case terms present in a larger share of the tenant's materials are dropped
    as too common.
    """

    def __init__(self, *, max_doc_fraction: float | None = None) -> None:
        self.max_doc_fraction = max_doc_fraction
        self._materials: dict[str, Material] = {}
        self._chunks: dict[str, _StoredChunk] = {}
        self._lock = threading.RLock()

    def upsert_material(self, material: Material) -> None:
        with self._lock:
            self._materials[material.material_id] = material

    def get_material(self, material_id: str) -> Material | None:
        with self._lock:
            return self._materials.get(material_id)

    def replace_chunks(self, material_id: str, chunks: list[EmbeddedChunk]) -> list[str]:
        with self._lock:
            material = self._materials.get(material_id)
            if material is None:
                raise KeyError(f"Material not found: {material_id}")
            self._delete_locked(material_id)
            ids: list[str] = []
            for embedded in chunks:
                chunk = embedded.chunk
                chunk_id = f"{material_id}-chunk-{chunk.index:04d}"
                self._chunks[chunk_id] = _StoredChunk(
                    chunk_id=chunk_id,
                    material_id=material_id,
                    content=chunk.content,
                    tokens=_tokens(chunk.content),
                    embedding=list(embedded.vector),
                    model=embedded.model,
                    dimension=embedded.dimension,
                    metadata={
                        **material.metadata,
                        "chunk_index": chunk.index,
                        "start_char": chunk.start_char,
                        "end_char": chunk.end_char,
                        "token_count": chunk.token_count,
                        "embedding_model": embedded.model,
                        "embedding_dimension": embedded.dimension,
                    },
                )
                ids.append(chunk_id)
            return ids

    def delete_chunks(self, material_id: str) -> int:
        with self._lock:
            return self._delete_locked(material_id)

    def delete_material(self, material_id: str) -> int:
        with self._lock:
            removed = self._delete_locked(material_id)
            self._materials.pop(material_id, None)
            return removed

    def count_chunks(self, material_id: str | None = None) -> int:
        with self._lock:
            if material_id is None:
                return len(self._chunks)
            return sum(1 for rec in self._chunks.values() if rec.material_id == material_id)

    def vector_search(
        self, query_embedding: list[float], site_id: str, limit: int
    ) -> list[SearchResult]:
        with self._lock:
            candidates = self._active_chunks(site_id)
        ranked = sorted(
            (
                self._to_result(rec, _cosine_similarity(query_embedding, rec.embedding))
                for rec in candidates
                if rec.embedding
            ),
            key=lambda item: item.similarity,
            reverse=True,
        )
        return ranked[:limit]

    def keyword_search(self, query: str, site_id: str, limit: int) -> list[SearchResult]:
        clauses, require_all = _parse_text_query(query)
        if not clauses:
            return []
        with self._lock:
            candidates = self._active_chunks(site_id)

        scored: list[tuple[int, _StoredChunk]] = []
        for rec in candidates:
            matched = sum(1 for clause in clauses if _contains_phrase(rec.tokens, clause))
            if matched == 0 or (require_all and matched < len(clauses)):
                continue
            scored.append((matched, rec))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [
            self._to_result(rec, KEYWORD_SIMILARITY, keyword_similarity=KEYWORD_SIMILARITY)
            for _, rec in scored[:limit]
        ]

    def trigram_search(self, query: str, site_id: str, limit: int) -> list[SearchResult]:
        needle = query.strip()
        if not needle:
            return []
        with self._lock:
            candidates = self._active_chunks(site_id)
        hits = [rec for rec in candidates if needle in rec.content]
        return [
            self._to_result(rec, TRIGRAM_SIMILARITY, keyword_similarity=TRIGRAM_SIMILARITY)
            for rec in hits[:limit]
        ]

    def term_stats(self, terms: list[str], site_id: str) -> list[dict[str, Any]]:
        with self._lock:
            candidates = self._active_chunks(site_id)
            total_materials = len(
                {
                    mat.material_id
                    for mat in self._materials.values()
                    if mat.site_id == site_id and mat.is_active
                }
            )

        rows: list[dict[str, Any]] = []
        for term in terms:
            phrase = _tokens(term)
            doc_count = len(
                {rec.material_id for rec in candidates if phrase and _contains_phrase(rec.tokens, phrase)}
            )
            reason: str | None = None
            kept = doc_count > 0
            if not kept:
                reason = "not_found"
            elif (
                self.max_doc_fraction is not None
                and total_materials > 0
                and doc_count / total_materials > self.max_doc_fraction
            ):
                kept = False
                reason = "too_common"
            rows.append({"term": term, "doc_count": doc_count, "kept": kept, "reason": reason})
        return rows

    def get_embedding(self, chunk_id: str) -> tuple[str, list[float]] | None:
        with self._lock:
            rec = self._chunks.get(chunk_id)
            if rec is None:
                return None
            material = self._materials[rec.material_id]
            return material.site_id, list(rec.embedding)

    def _active_chunks(self, site_id: str) -> list[_StoredChunk]:
        return [
            rec
            for rec in self._chunks.values()
            if (material := self._materials.get(rec.material_id)) is not None
            and material.site_id == site_id
            and material.is_active
        ]

    def _delete_locked(self, material_id: str) -> int:
        stale = [cid for cid, rec in self._chunks.items() if rec.material_id == material_id]
        for cid in stale:
            del self._chunks[cid]
        return len(stale)

    def _to_result(
        self, rec: _StoredChunk, similarity: float, *, keyword_similarity: float = 0.0
    ) -> SearchResult:
        material = self._materials[rec.material_id]
        return SearchResult(
            chunk_id=rec.chunk_id,
            content=rec.content,
            similarity=similarity,
            metadata=dict(rec.metadata),
            material_id=rec.material_id,
            material_title=material.title,
            keyword_similarity=keyword_similarity,
        )


def _tokens(text: str) -> list[str]:
    return _TERM_TOKEN.findall(normalize_text(text))


def _parse_text_query(query: str) -> tuple[list[list[str]], bool]:
    """Parse `a OR "b c"` (any clause) or websearch-style `a "b c"` (all clauses)."""

    if " OR " in query:
        parts = [part.strip() for part in query.split(" OR ")]
        require_all = False
    else:
        parts = [m.group(0) for m in _WEBSEARCH_PART.finditer(query)]
        require_all = True

    clauses: list[list[str]] = []
    for part in parts:
        if len(part) >= 2 and part.startswith('"') and part.endswith('"'):
            part = part[1:-1].replace('""', '"')
        part = part.replace("\\", "")
        tokens = _tokens(part)
        if tokens:
            clauses.append(tokens)
    return clauses, require_all


def _contains_phrase(tokens: list[str], phrase: list[str]) -> bool:
    if not phrase:
        return False
    width = len(phrase)
    if width == 1:
        return phrase[0] in tokens
    return any(tokens[i : i + width] == phrase for i in range(len(tokens) - width + 1))


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
