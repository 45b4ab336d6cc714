"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(slots=True)
class Chunk:
    """A size-bounded segment of a document with its span in the cleaned text."""

    content: str
    index: int
    start_char: int
    end_char: int
    token_count: int


@dataclass(slots=True)
class EmbeddedChunk:
    """A chunk plus its vector and the model that produced it."""

    chunk: Chunk
    vector: list[float]
    model: str
    dimension: int


@dataclass(slots=True)
class Material:
    """A source document owned by one tenant (site)."""

    material_id: str
    site_id: str
    title: str
    metadata: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True


@dataclass(slots=True)
class SearchResult:
    """A chunk-level search hit."""

    chunk_id: str
    content: str
    similarity: float
    metadata: dict[str, Any]
    material_id: str
    material_title: str
    rerank_score: float | None = None
    keyword_similarity: float = 0.0


@dataclass(slots=True)
class BoostsApplied:
    term_matches: list[str] = field(default_factory=list)
    category_boost: float = 0.0


@dataclass(slots=True)
class Candidate:
    """A scored entity competing to ground the answer."""

    id: str
    title: str
    content: str = ""
    category: str | None = None
    brand: str | None = None
    model: str | None = None
    base_score: float = 0.0
    final_score: float = 0.0
    score_source: str = "fts"
    boosts_applied: BoostsApplied = field(default_factory=BoostsApplied)
    material_id: str | None = None


@dataclass(slots=True)
class SafeContext:
    terms: list[str]
    category_hint: str | None
    query_redacted: bool


@dataclass(slots=True)
class AmbiguityResult:
    ambiguous: bool
    score: float
    reasons: list[str]
    tokens: list[str]


@dataclass(slots=True)
class ExtractedTerms:
    tokens: list[str]
    bigrams: list[str]
    combined: list[str]
    script: str = "latin"


@dataclass(slots=True)
class ValidatedTerm:
    term: str
    doc_count: int
    kept: bool
    reason: str | None = None


@dataclass(slots=True)
class ValidationResult:
    kept: list[str]
    dropped: list[ValidatedTerm]
    validated_terms: list[ValidatedTerm]
    telemetry: dict[str, int]


@dataclass(slots=True)
class RetrievedChunk:
    id: str
    content: str
    material_title: str
    material_id: str


class ResolutionMode(str, Enum):
    SINGLE = "single"
    MULTI = "multi"
    REFUSAL = "refusal"


@dataclass(slots=True)
class Decision:
    """Terminal decision: one candidate, two candidates, or none."""

    mode: ResolutionMode
    candidates: list[Candidate] = field(default_factory=list)

    @classmethod
    def single(cls, candidate: Candidate) -> "Decision":
        return cls(mode=ResolutionMode.SINGLE, candidates=[candidate])

    @classmethod
    def multi(cls, top: Candidate, second: Candidate) -> "Decision":
        return cls(mode=ResolutionMode.MULTI, candidates=[top, second])

    @classmethod
    def refusal(cls) -> "Decision":
        return cls(mode=ResolutionMode.REFUSAL)


@dataclass(slots=True)
class ResolutionResult:
    """What the answer-assembly layer receives."""

    mode: ResolutionMode
    system_prompt: str
    chunks: list[dict[str, str]] = field(default_factory=list)
    telemetry: dict[str, Any] | None = None
