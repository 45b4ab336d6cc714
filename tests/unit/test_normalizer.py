import pytest

from grounded_resolver.text.normalizer import (
    EmbeddingTextNormalizer,
    contains_unsegmented_script,
    is_normalized,
    needs_trigram_fallback,
    normalization_hash,
    normalize_text,
)

HAN_VACUUM = "".join(chr(code) for code in (0x5438, 0x5C18, 0x5668))
THAI_HELLO = "".join(chr(code) for code in (0x0E2A, 0x0E27, 0x0E31, 0x0E2A, 0x0E14, 0x0E35))
CAFE_DECOMPOSED = "Cafe" + chr(0x0301)
CAFE_COMPOSED = "caf" + chr(0x00E9)

PARITY_CORPUS = [
    ("Køb IVISKIN G-3", "koeb iviskin g3"),
    ("Blåbær  Æble", "blaabaer aeble"),
    ("Größe ÄÖ", "groeße aeoe"),
    ("iPhone 15 Pro", "iphone15 pro"),
    ("Model X . 7", "model x7"),
    ("  tabs\tand\nnewlines  ", "tabs and newlines"),
    ("S-23 Ultra", "s23 ultra"),
    (CAFE_DECOMPOSED, CAFE_COMPOSED),
]


@pytest.mark.parametrize(("raw", "expected"), PARITY_CORPUS)
def test_normalize_text_fixed_corpus(raw: str, expected: str) -> None:
    assert normalize_text(raw) == expected


@pytest.mark.parametrize(("raw", "expected"), PARITY_CORPUS)
def test_normalize_text_is_idempotent(raw: str, expected: str) -> None:
    once = normalize_text(raw)
    assert normalize_text(once) == once
    assert is_normalized(once)


COMBINING_MARK_INPUTS = [
    chr(0x00E4) + chr(0x0301),
    "a" + chr(0x0308) + chr(0x0301),
    "K" + chr(0x00D6) + chr(0x0301) + "b G-3",
    chr(0x00C5) + chr(0x0301) + "l",
    chr(0x00F8) + chr(0x0303) + " " + chr(0x00E6) + chr(0x0300),
]


@pytest.mark.parametrize("raw", COMBINING_MARK_INPUTS)
def test_normalize_text_is_idempotent_with_combining_marks(raw: str) -> None:
    once = normalize_text(raw)

    assert normalize_text(once) == once
    assert normalization_hash(once) == normalization_hash(raw)


def test_mark_after_transliterated_vowel_recombines() -> None:
    assert normalize_text(chr(0x00E4) + chr(0x0301)) == "a" + chr(0x00E9)


def test_normalize_text_handles_empty_input() -> None:
    assert normalize_text(None) == ""
    assert normalize_text("") == ""
    assert normalize_text("   ") == ""


def test_separator_variants_share_a_normalization_hash() -> None:
    assert normalization_hash("G-3") == normalization_hash("g3")
    assert normalization_hash("G 3") == normalization_hash("G.3")
    assert len(normalization_hash("anything")) == 8
    assert normalization_hash("g3") != normalization_hash("g4")


def test_unsegmented_scripts_need_trigram_matching() -> None:
    assert contains_unsegmented_script(HAN_VACUUM)
    assert contains_unsegmented_script(THAI_HELLO)
    assert needs_trigram_fallback(f"iviskin {HAN_VACUUM}")
    assert not contains_unsegmented_script("iviskin g3")
    assert not needs_trigram_fallback("Køb IVISKIN")
    assert not contains_unsegmented_script("")


def test_embedding_normalizer_defaults() -> None:
    normalizer = EmbeddingTextNormalizer()

    assert normalizer.normalize("  What is   G3?? ") == "what is g3"
    assert normalizer.normalize(None) == ""
    assert normalizer.options_string() == (
        "unicode_normalize+normalize_whitespace+lowercase+strip_trailing_punctuation"
    )


def test_embedding_normalizer_optional_diacritics_removal() -> None:
    normalizer = EmbeddingTextNormalizer(remove_diacritics=True)

    assert normalizer.normalize(CAFE_COMPOSED) == "cafe"
    assert EmbeddingTextNormalizer().normalize(CAFE_COMPOSED) == CAFE_COMPOSED
