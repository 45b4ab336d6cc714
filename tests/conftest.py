from __future__ import annotations

import re
from math import sqrt

import pytest

from grounded_resolver.ingest.embedder import Embedder

_TOKEN = re.compile(r"\w+")


class VocabularyEmbedder(Embedder):
    """One dimension per distinct word, so cosine similarity is exact word overlap."""

    model_name = "vocabulary-test"

    def __init__(self, dimension: int = 256) -> None:
        super().__init__()
        self.dimension = dimension
        self._vocabulary: dict[str, int] = {}

    def _embed_texts(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def _embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in _TOKEN.findall(text.lower()):
            index = self._vocabulary.setdefault(token, len(self._vocabulary))
            vector[index] += 1.0
        norm = sqrt(sum(value * value for value in vector))
        return [value / norm for value in vector] if norm else vector


@pytest.fixture
def vocab_embedder() -> VocabularyEmbedder:
    return VocabularyEmbedder()
