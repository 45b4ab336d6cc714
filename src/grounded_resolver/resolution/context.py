"""PII-safe context term extraction from conversation and page metadata."""

from __future__ import annotations

import re
from typing import Any, Mapping, Sequence

from grounded_resolver.config import ContextConfig
from grounded_resolver.text.normalizer import normalize_text
from grounded_resolver.types import Candidate, SafeContext

# Applied in order. Short product codes such as g3 or s23 match none of these.
PII_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b")),
    ("phone", re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")),
    ("url", re.compile(r"https?://[^\s]+")),
    (
        "address",
        re.compile(
            r"\d{1,5}\s+\w+\s+(street|st|avenue|ave|road|rd|lane|ln|drive|dr)",
            flags=re.IGNORECASE,
        ),
    ),
)

_CATEGORY_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("hair", "beauty"), "beauty"),
    (("vacuum", "clean"), "cleaning"),
    (("tech", "device"), "technology"),
)


def scrub_pii(text: str) -> tuple[str, bool]:
    """Replace emails, phone numbers, URLs and street addresses with `[type]`."""

    redacted = False
    scrubbed = text
    for label, pattern in PII_PATTERNS:
        scrubbed, count = pattern.subn(f"[{label}]", scrubbed)
        if count:
            redacted = True
    return scrubbed, redacted


def extract_context(
    messages: Sequence[str],
    page: Mapping[str, Any] | None = None,
    config: ContextConfig | None = None,
) -> SafeContext:
    """Collect boost terms from recent turns and the current page.

    The user query is never touched here; the terms only feed score boosts.
    """

    config = config or ContextConfig()
    page = page or {}
    title = page.get("title") or ""
    description = page.get("description") or ""

    recent = list(messages)[-config.max_messages :]
    combined = " ".join(recent) + " " + title + " " + description

    scrubbed, redacted = scrub_pii(combined)
    normalized = normalize_text(scrubbed)

    denylist = set(config.denylist)
    terms: list[str] = []
    for term in normalized.split():
        if not config.min_term_length <= len(term) <= config.max_term_length:
            continue
        if term in denylist or term in terms:
            continue
        terms.append(term)

    terms = terms[: config.max_terms]
    while terms and len(" ".join(terms)) > config.max_total_chars:
        terms.pop()

    return SafeContext(
        terms=terms,
        category_hint=category_hint_from_title(title),
        query_redacted=redacted,
    )


def category_hint_from_title(title: str | None) -> str | None:
    if not title:
        return None
    title_norm = normalize_text(title)
    for keywords, category in _CATEGORY_KEYWORDS:
        if any(keyword in title_norm for keyword in keywords):
            return category
    return None


def filter_terms_for_telemetry(terms: list[str], candidates: Sequence[Candidate]) -> list[str]:
    """Keep the terms that occur among candidate title words.

    Telemetry only; scoring is unaffected.
    """

    if not candidates:
        return terms
    title_words: set[str] = set()
    for candidate in candidates:
        title_words.update(
            word for word in normalize_text(candidate.title).split() if len(word) >= 2
        )
    return [term for term in terms if term in title_words]
