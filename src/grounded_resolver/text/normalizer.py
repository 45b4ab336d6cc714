"""Deterministic text normalization shared by ingestion and query time.

`normalize_text` is the matching normalizer: the indexer stores its output next to
every chunk and every query-time comparison (post-filters, ambiguity tokens, context
terms) runs the same function. Any change here must be re-run against stored
content, otherwise exact-match filters silently stop matching.

`EmbeddingTextNormalizer` is a separate, configurable normalizer applied to text
right before it is embedded, again identically for documents and queries.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from hashlib import blake2b

_TRANSLITERATION = (
    ("æ", "ae"),
    ("ø", "oe"),
    ("å", "aa"),
    ("ä", "ae"),
    ("ö", "oe"),
)
_LETTER_DIGIT_SEPARATOR = re.compile(r"([a-z])[\s\-.]+([0-9])")
_WHITESPACE = re.compile(r"\s+")

_SCRIPT_RANGES = (
    (0x2E80, 0x2FDF), (0x3005, 0x3007), (0x3021, 0x3029), (0x3038, 0x303B),
    (0x3400, 0x4DBF), (0x4E00, 0x9FFF), (0xF900, 0xFAFF), (0x20000, 0x3134F),  # Han
    (0x3040, 0x309F),  # Hiragana
    (0x30A0, 0x30FF), (0x31F0, 0x31FF), (0xFF66, 0xFF9F),  # Katakana
    (0x1100, 0x11FF), (0x3130, 0x318F), (0xAC00, 0xD7AF),  # Hangul
    (0x0E00, 0x0E7F),  # Thai
    (0x0600, 0x06FF), (0x0750, 0x077F), (0x08A0, 0x08FF), (0xFB50, 0xFDFF), (0xFE70, 0xFEFE),  # Arabic
    (0x0590, 0x05FF), (0xFB1D, 0xFB4F),  # Hebrew
)
_UNSEGMENTED_SCRIPTS = re.compile(
    "[" + "".join(f"{chr(low)}-{chr(high)}" for low, high in _SCRIPT_RANGES) + "]"
)
_COMBINING_MARKS = re.compile(f"[{chr(0x0300)}-{chr(0x036F)}]")


def normalize_text(text: str | None) -> str:
    """Case-fold, canonicalize, transliterate and collapse separators.

    >>> normalize_text("Køb IVISKIN G-3")
    'koeb iviskin g3'
    """

    if not text:
        return ""
    normalized = unicodedata.normalize("NFC", text)
    normalized = unicodedata.normalize("NFC", normalized.lower())
    for source, target in _TRANSLITERATION:
        normalized = normalized.replace(source, target)
    # a mark left behind by a transliterated vowel recombines with the new base
    normalized = unicodedata.normalize("NFC", normalized)
    normalized = _LETTER_DIGIT_SEPARATOR.sub(r"\1\2", normalized)
    normalized = _WHITESPACE.sub(" ", normalized)
    return normalized.strip()


def is_normalized(text: str) -> bool:
    return normalize_text(text) == text


def normalization_hash(text: str) -> str:
    """Short stable hash of the normalized text, for parity debugging."""

    digest = blake2b(normalize_text(text).encode("utf-8"), digest_size=4)
    return digest.hexdigest()


def contains_unsegmented_script(text: str) -> bool:
    """True for scripts where whitespace does not separate words reliably."""

    return bool(_UNSEGMENTED_SCRIPTS.search(text or ""))


def needs_trigram_fallback(query: str) -> bool:
    return contains_unsegmented_script(query)


@dataclass(slots=True)
class EmbeddingTextNormalizer:
    """Normalization applied to every text right before embedding."""

    unicode_normalize: bool = True
    normalize_whitespace: bool = True
    lowercase: bool = True
    strip_trailing_punctuation: bool = True
    remove_diacritics: bool = False

    def normalize(self, text: str | None) -> str:
        if not text:
            return ""
        normalized = text
        if self.unicode_normalize:
            normalized = unicodedata.normalize("NFKC", normalized)
        if self.normalize_whitespace:
            normalized = _WHITESPACE.sub(" ", normalized).strip()
        if self.strip_trailing_punctuation:
            normalized = re.sub(r"[?!.:,;]+$", "", normalized)
        if self.remove_diacritics:
            decomposed = unicodedata.normalize("NFD", normalized)
            normalized = _COMBINING_MARKS.sub("", decomposed)
        if self.lowercase:
            normalized = normalized.lower()
        return normalized

    def options_string(self) -> str:
        enabled = [
            name
            for name in (
                "unicode_normalize",
                "normalize_whitespace",
                "lowercase",
                "strip_trailing_punctuation",
                "remove_diacritics",
            )
            if getattr(self, name)
        ]
        return "+".join(enabled)
