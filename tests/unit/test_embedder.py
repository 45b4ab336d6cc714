from math import sqrt

import pytest
from langchain_core.embeddings import Embeddings

from grounded_resolver.config import EmbeddingConfig, Settings
from grounded_resolver.errors import EmbeddingProviderError
from grounded_resolver.ingest.embedder import (
    HashingEmbedder,
    OpenAIEmbedder,
    as_langchain_embeddings,
    create_embedder,
)


class _FakeOpenAIClient:
    def __init__(self, dimension: int = 1536, fail: bool = False) -> None:
        self.dimension = dimension
        self.fail = fail
        self.batches: list[list[str]] = []

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if self.fail:
            raise RuntimeError("429 Too Many Requests")
        self.batches.append(list(texts))
        return [[0.5] * self.dimension for _ in texts]


def test_hashing_embedder_is_deterministic_and_unit_length() -> None:
    embedder = HashingEmbedder(dimension=32)

    vector = embedder.embed_query("cordless vacuum weight")

    assert embedder.model_name == "hashing-32"
    assert len(vector) == 32
    assert sqrt(sum(value * value for value in vector)) == pytest.approx(1.0)
    assert embedder.embed_query("cordless vacuum weight") == vector


def test_documents_and_queries_share_normalization() -> None:
    embedder = HashingEmbedder()

    assert embedder.embed_query("What is G3?") == embedder.embed_documents(["what is   g3"])[0]
    assert embedder.embed_documents([]) == []


def test_empty_text_embeds_to_zero_vector() -> None:
    assert HashingEmbedder(dimension=8).embed_query("") == [0.0] * 8


def test_openai_embedder_batches_requests() -> None:
    client = _FakeOpenAIClient()
    embedder = OpenAIEmbedder(
        EmbeddingConfig(batch_size=2, batch_delay_seconds=0.0), client=client
    )

    vectors = embedder.embed_documents(["a", "b", "c"])

    assert len(vectors) == 3
    assert [len(batch) for batch in client.batches] == [2, 1]
    assert embedder.dimension == 1536
    assert embedder.model_name == "text-embedding-3-small"


def test_openai_embedder_rejects_unknown_model() -> None:
    with pytest.raises(EmbeddingProviderError, match="Unsupported embedding model"):
        OpenAIEmbedder(EmbeddingConfig(model="text-embedding-unknown"), client=_FakeOpenAIClient())


def test_openai_embedder_wraps_provider_errors() -> None:
    embedder = OpenAIEmbedder(client=_FakeOpenAIClient(fail=True))

    with pytest.raises(EmbeddingProviderError) as excinfo:
        embedder.embed_query("g3")
    assert excinfo.value.provider == "openai"


def test_openai_embedder_checks_dimension() -> None:
    embedder = OpenAIEmbedder(client=_FakeOpenAIClient(dimension=8))

    with pytest.raises(EmbeddingProviderError, match="Expected 1536 dimensions"):
        embedder.embed_query("g3")


def test_langchain_adapter_delegates_to_embedder() -> None:
    embedder = HashingEmbedder(dimension=16)

    adapter = as_langchain_embeddings(embedder)

    assert isinstance(adapter, Embeddings)
    assert adapter.embed_query("g3") == embedder.embed_query("g3")
    assert adapter.embed_documents(["g3", "g4"]) == embedder.embed_documents(["g3", "g4"])


def test_create_embedder_without_key_uses_hashing() -> None:
    embedder = create_embedder(Settings(ENV="test", OPENAI_API_KEY=None))

    assert isinstance(embedder, HashingEmbedder)
    assert embedder.dimension == 256
