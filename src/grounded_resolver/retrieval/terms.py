"""Query term extraction for corpus-aware keyword search."""

from __future__ import annotations

import re

from grounded_resolver.config import TermExtractionConfig
from grounded_resolver.text.normalizer import contains_unsegmented_script
from grounded_resolver.types import ExtractedTerms

_LETTER_DIGIT_SEPARATOR = re.compile(r"([a-z])[\s\-.]+([0-9])")
_NON_WORD = re.compile(r"[\W_]+", flags=re.UNICODE)
_DIGIT = re.compile(r"\d")


class TermExtractor:
    """Extracts ranked single-word and two-word terms without stopword lists.

    Queries in scripts without word boundaries return None; callers switch to
    trigram search for those.
    """

    def __init__(self, config: TermExtractionConfig | None = None) -> None:
        self.config = config or TermExtractionConfig()

    def extract_terms(self, query: str, max_terms: int | None = None) -> ExtractedTerms | None:
        if contains_unsegmented_script(query):
            return None

        limit = max_terms or self.config.max_extract_terms
        normalized = _LETTER_DIGIT_SEPARATOR.sub(r"\1\2", query.lower())
        tokens = self._tokenize(normalized)
        bigrams = [f"{left} {right}" for left, right in zip(tokens, tokens[1:])]
        combined = self._rank(bigrams + tokens, limit)
        return ExtractedTerms(tokens=tokens, bigrams=bigrams, combined=combined, script="latin")

    def is_non_latin(self, query: str) -> bool:
        return contains_unsegmented_script(query)

    def _tokenize(self, text: str) -> list[str]:
        tokens = (_NON_WORD.sub("", raw) for raw in text.split())
        return [token for token in tokens if len(token) >= self.config.term_min_length]

    def _rank(self, terms: list[str], limit: int) -> list[str]:
        eligible = [term for term in terms if len(term) >= self.config.term_min_length]
        # Stable: ties keep their original order.
        eligible.sort(
            key=lambda term: (
                " " not in term,
                _DIGIT.search(term) is None,
                -len(term),
            )
        )
        return eligible[:limit]
