"""Deterministic ambiguity heuristics for short product-style queries."""

from __future__ import annotations

import re

from grounded_resolver.config import AmbiguityConfig
from grounded_resolver.text.normalizer import normalize_text
from grounded_resolver.types import AmbiguityResult

TIER_WORDS = frozenset(
    {
        "starter",
        "basic",
        "standard",
        "pro",
        "premium",
        "enterprise",
        "plus",
        "max",
        "mini",
        "lite",
        "advanced",
        "elite",
    }
)
# Tier words long enough to pass as a brand name but never treated as one.
_NON_BRAND_WORDS = frozenset({"basic", "standard", "premium", "advanced", "starter", "enterprise"})

_SHORT_CODE = re.compile(r"^[a-z]?\d{1,3}$")
_LETTERS_THEN_DIGITS = re.compile(r"^[a-z]+\d+$")
_DIGITS_THEN_LETTERS = re.compile(r"^\d+[a-z]+$")
_ALPHA = re.compile(r"^[a-z]+$")


def detect_ambiguity(query: str, config: AmbiguityConfig | None = None) -> AmbiguityResult:
    """Flag tokens that could name products in several categories.

    A token is ambiguous when it is a short code (`g3`, `x1`, `23`), a short
    mixed alphanumeric (`s23`, `3x`) or a tier word (`pro`, `max`). Each
    ambiguous token adds `token_weight` to the score, capped at 1.0. When the
    query also carries a plausible brand word (four or more letters) the query
    is treated as specific and the result is not ambiguous.
    """

    config = config or AmbiguityConfig()
    tokens = [token for token in normalize_text(query).split() if token]

    reasons: list[str] = []
    ambiguous_tokens: list[str] = []
    score = 0.0
    for token in tokens:
        matched = False
        if _SHORT_CODE.match(token):
            matched = True
            reasons.append("short_code")
        if (
            _LETTERS_THEN_DIGITS.match(token) or _DIGITS_THEN_LETTERS.match(token)
        ) and 2 <= len(token) <= 4:
            matched = True
            reasons.append("mixed_alphanumeric")
        if token in TIER_WORDS:
            matched = True
            reasons.append("tier_word")
        if matched:
            ambiguous_tokens.append(token)
            score += config.token_weight

    has_brand = any(
        len(token) >= 4 and _ALPHA.match(token) and token not in _NON_BRAND_WORDS
        for token in tokens
    )
    if has_brand and ambiguous_tokens:
        return AmbiguityResult(ambiguous=False, score=0.0, reasons=["brand_present"], tokens=[])

    return AmbiguityResult(
        ambiguous=bool(ambiguous_tokens),
        score=min(1.0, score),
        reasons=list(dict.fromkeys(reasons)),
        tokens=ambiguous_tokens,
    )
