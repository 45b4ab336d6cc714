import pytest

from grounded_resolver.config import ChunkingConfig
from grounded_resolver.errors import ChunkingError
from grounded_resolver.ingest.chunker import TextChunker, estimate_tokens


def _make_long_text(sentence_count: int = 40) -> str:
    return " ".join(
        f"Sentence number {index} describes the cordless vacuum in detail."
        for index in range(sentence_count)
    )


def test_chunker_rejects_invalid_bounds() -> None:
    with pytest.raises(ChunkingError, match="Chunk overlap must be less than chunk size"):
        TextChunker(ChunkingConfig(chunk_size=100, chunk_overlap=100))
    with pytest.raises(ChunkingError, match="Minimum chunk size cannot be greater"):
        TextChunker(ChunkingConfig(chunk_size=100, chunk_overlap=10, min_chunk_size=200))
    with pytest.raises(ChunkingError, match="Maximum chunk size cannot be less"):
        TextChunker(
            ChunkingConfig(chunk_size=600, chunk_overlap=10, min_chunk_size=10, max_chunk_size=500)
        )


def test_chunker_returns_nothing_for_blank_input() -> None:
    chunker = TextChunker()

    assert chunker.chunk("") == []
    assert chunker.chunk("   \n\n\t ") == []


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_chunker_token_bounds_and_overlap() -> None:
    config = ChunkingConfig(chunk_size=100, chunk_overlap=20, min_chunk_size=10, max_chunk_size=200)
    chunker = TextChunker(config)
    text = _make_long_text()
    cleaned = TextChunker.clean_text(text)

    chunks = chunker.chunk(text)

    assert len(chunks) >= 2
    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    assert all(chunk.token_count <= config.max_chunk_size for chunk in chunks)

    overlap = cleaned[chunks[1].start_char : chunks[0].end_char]
    assert overlap
    assert cleaned[chunks[1].start_char - 1] == " "
    assert chunks[0].content.endswith(overlap)
    assert chunks[1].content.startswith(overlap)


def test_chunk_spans_cover_the_whole_text() -> None:
    config = ChunkingConfig(chunk_size=100, chunk_overlap=20, min_chunk_size=10, max_chunk_size=200)
    text = _make_long_text()
    cleaned = TextChunker.clean_text(text)

    chunks = TextChunker(config).chunk(text)

    assert chunks[0].start_char == 0
    assert chunks[-1].end_char == len(cleaned)
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start_char <= previous.end_char + 1
    for chunk in chunks:
        assert cleaned[chunk.start_char : chunk.end_char].split() == chunk.content.split()


def test_chunker_is_deterministic() -> None:
    config = ChunkingConfig(chunk_size=100, chunk_overlap=20, min_chunk_size=10, max_chunk_size=200)
    text = _make_long_text()

    assert TextChunker(config).chunk(text) == TextChunker(config).chunk(text)


def test_trailing_chunk_below_minimum_is_dropped() -> None:
    chunker = TextChunker(ChunkingConfig(chunk_size=100, chunk_overlap=10, min_chunk_size=50))

    assert chunker.chunk("Too short.") == []


def test_trailing_fragment_without_punctuation_is_kept() -> None:
    chunker = TextChunker(ChunkingConfig(chunk_size=100, chunk_overlap=10, min_chunk_size=1))
    text = "First sentence here. trailing words without punctuation"

    chunks = chunker.chunk(text)

    assert len(chunks) == 1
    assert chunks[0].content == text


def test_oversized_sentence_is_split_on_word_boundaries() -> None:
    config = ChunkingConfig(chunk_size=100, chunk_overlap=10, min_chunk_size=1, max_chunk_size=200)
    text = " ".join(["alpha"] * 300)

    chunks = TextChunker(config).chunk(text)

    assert len(chunks) > 1
    assert all(chunk.token_count <= config.chunk_size for chunk in chunks)
    assert sum(len(chunk.content.split()) for chunk in chunks) == 300


def test_clean_text_normalizes_line_endings_and_spaces() -> None:
    assert TextChunker.clean_text("a\r\nb\rc\td    e  ") == "a\nb\nc d e"
