"""Sentence-respecting sliding-window chunking."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

from grounded_resolver.config import ChunkingConfig
from grounded_resolver.errors import ChunkingError
from grounded_resolver.types import Chunk

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE = re.compile(r"[^.!?]*(?:[.!?]+|$)")
_WORD = re.compile(r"\S+")


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""

    return math.ceil(len(text) / 4)


@dataclass(slots=True)
class _Word:
    text: str
    start: int
    end: int


@dataclass(slots=True)
class _ChunkState:
    words: list[_Word] = field(default_factory=list)
    tokens: int = 0


class TextChunker:
    """Packs sentences into size-bounded chunks with a word-aligned overlap.

    Design notes:
    1. Structure first.
       Text is cleaned (line endings, tabs, repeated spaces), split into paragraphs
       on blank lines and each paragraph into sentences on terminal punctuation.
       A sentence never straddles a paragraph boundary. A trailing fragment with
       no punctuation is still a sentence, so no words are lost.

    2. Sliding-window packing second.
       Sentences are appended to the open chunk until the next one would push the
       estimated size past `chunk_size`. The chunk is then closed and the next one
       starts with the tail of the closed chunk: whole words, walked backwards until
       at least `chunk_overlap` tokens are collected.

    3. Oversized sentences.
       A sentence above `max_chunk_size` bypasses sentence packing and is cut on
       word boundaries into windows of at most `chunk_size` tokens.

    4. The final chunk is emitted only if it reaches `min_chunk_size`.

    Every chunk records the character span it covers in the cleaned text, which
    makes coverage checkable: consecutive spans overlap or touch.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()
        if self.config.chunk_overlap >= self.config.chunk_size:
            raise ChunkingError("Chunk overlap must be less than chunk size")
        if self.config.min_chunk_size > self.config.chunk_size:
            raise ChunkingError("Minimum chunk size cannot be greater than chunk size")
        if self.config.max_chunk_size < self.config.chunk_size:
            raise ChunkingError("Maximum chunk size cannot be less than chunk size")

    def chunk(self, text: str) -> list[Chunk]:
        """Split text into ordered chunks.

        Returns an empty list for empty or whitespace-only input. The same text and
        configuration always yield the same boundaries.
        """

        if not text or not text.strip():
            return []

        cleaned = self.clean_text(text)
        chunks: list[Chunk] = []
        state = _ChunkState()

        for words in self._sentences(cleaned):
            sentence_tokens = estimate_tokens(_join(words))

            if sentence_tokens > self.config.max_chunk_size:
                if state.words:
                    chunks.append(self._create_chunk(state.words, len(chunks)))
                for window in self._split_long_sentence(words):
                    chunks.append(self._create_chunk(window, len(chunks)))
                state = _ChunkState()
                continue

            if state.words and state.tokens + sentence_tokens > self.config.chunk_size:
                chunks.append(self._create_chunk(state.words, len(chunks)))
                carried = self._overlap_words(state.words)
                state = _ChunkState(words=carried + words)
                state.tokens = estimate_tokens(_join(state.words))
            else:
                state.words.extend(words)
                state.tokens += sentence_tokens

        if state.words and estimate_tokens(_join(state.words)) >= self.config.min_chunk_size:
            chunks.append(self._create_chunk(state.words, len(chunks)))

        return chunks

    @staticmethod
    def clean_text(text: str) -> str:
        cleaned = text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", " ")
        cleaned = re.sub(r" +", " ", cleaned)
        return cleaned.strip()

    def _sentences(self, cleaned: str) -> list[list[_Word]]:
        sentences: list[list[_Word]] = []
        for start, end in self._paragraph_spans(cleaned):
            if self.config.respect_sentences:
                spans = self._sentence_spans(cleaned, start, end)
            else:
                spans = [(start, end)]
            for sentence_start, sentence_end in spans:
                words = [
                    _Word(text=m.group(), start=m.start(), end=m.end())
                    for m in _WORD.finditer(cleaned, sentence_start, sentence_end)
                ]
                if words:
                    sentences.append(words)
        return sentences

    def _paragraph_spans(self, cleaned: str) -> list[tuple[int, int]]:
        if not self.config.split_by_paragraph:
            return [(0, len(cleaned))]
        spans: list[tuple[int, int]] = []
        position = 0
        for match in _PARAGRAPH_BREAK.finditer(cleaned):
            spans.append((position, match.start()))
            position = match.end()
        spans.append((position, len(cleaned)))
        return spans

    @staticmethod
    def _sentence_spans(cleaned: str, start: int, end: int) -> list[tuple[int, int]]:
        paragraph = cleaned[start:end]
        return [
            (start + match.start(), start + match.end())
            for match in _SENTENCE.finditer(paragraph)
            if match.group().strip()
        ]

    def _split_long_sentence(self, words: list[_Word]) -> list[list[_Word]]:
        windows: list[list[_Word]] = []
        current: list[_Word] = []
        for word in words:
            candidate = current + [word]
            if current and estimate_tokens(_join(candidate)) > self.config.chunk_size:
                windows.append(current)
                current = [word]
            else:
                current = candidate
        if current:
            windows.append(current)
        return windows

    def _overlap_words(self, words: list[_Word]) -> list[_Word]:
        carried: list[_Word] = []
        token_count = 0
        for word in reversed(words):
            if token_count >= self.config.chunk_overlap:
                break
            token_count += estimate_tokens(word.text)
            carried.insert(0, word)
        return carried

    @staticmethod
    def _create_chunk(words: list[_Word], index: int) -> Chunk:
        content = _join(words)
        return Chunk(
            content=content,
            index=index,
            start_char=words[0].start,
            end_char=words[-1].end,
            token_count=estimate_tokens(content),
        )


def _join(words: list[_Word]) -> str:
    return " ".join(word.text for word in words)
