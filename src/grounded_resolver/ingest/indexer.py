"""Ingest pipeline: chunk -> embed -> replace stored chunks."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from loguru import logger

from grounded_resolver.errors import EmbeddingProviderError
from grounded_resolver.ingest.chunker import TextChunker
from grounded_resolver.ingest.embedder import Embedder
from grounded_resolver.resilience.circuit_breaker import CircuitBreaker
from grounded_resolver.retrieval.store import SearchBackend
from grounded_resolver.text.normalizer import normalization_hash, normalize_text
from grounded_resolver.types import EmbeddedChunk, Material


@dataclass(slots=True)
class IndexResult:
    material_id: str
    success: bool
    chunks_created: int = 0
    chunk_ids: list[str] = field(default_factory=list)
    error: str | None = None


class ContentIndexer:
    """Coordinates chunker, embedder and search backend for one material at a time.

    Re-indexing replaces a material's chunks wholesale: old chunks are deleted
    before the new ones are written, so a document never carries a mix of
    chunks from two versions.
    """

    def __init__(
        self,
        chunker: TextChunker,
        embedder: Embedder,
        backend: SearchBackend,
        *,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._chunker = chunker
        self._embedder = embedder
        self._backend = backend
        self._breaker = breaker

    def index_material(self, material: Material, text: str) -> IndexResult:
        """Chunk, embed and store one material. Failures are reported, not raised."""

        try:
            self._backend.upsert_material(material)
            chunks = self._chunker.chunk(text)
            if not chunks:
                self._backend.delete_chunks(material.material_id)
                logger.warning(f"[Indexer] no chunks produced for {material.material_id}")
                return IndexResult(material_id=material.material_id, success=True)

            vectors = self._embed([chunk.content for chunk in chunks])
            embedded: list[EmbeddedChunk] = []
            for chunk, vector in zip(chunks, vectors, strict=True):
                if len(vector) != self._embedder.dimension:
                    raise EmbeddingProviderError(
                        f"Embedding dimension mismatch: expected {self._embedder.dimension}, "
                        f"got {len(vector)}",
                        provider=self._embedder.model_name,
                    )
                embedded.append(
                    EmbeddedChunk(
                        chunk=chunk,
                        vector=vector,
                        model=self._embedder.model_name,
                        dimension=len(vector),
                    )
                )

            chunk_ids = self._backend.replace_chunks(material.material_id, embedded)
        except Exception as exc:
            logger.error(f"[Indexer] failed to index {material.material_id}: {exc}")
            return IndexResult(material_id=material.material_id, success=False, error=str(exc))

        logger.info(
            f"[Indexer] indexed {material.material_id}: {len(chunk_ids)} chunks, "
            f"model={self._embedder.model_name} norm={normalization_hash(normalize_text(text))}"
        )
        return IndexResult(
            material_id=material.material_id,
            success=True,
            chunks_created=len(chunk_ids),
            chunk_ids=chunk_ids,
        )

    def index_many(
        self, items: list[tuple[Material, str]], *, delay_seconds: float = 0.5
    ) -> list[IndexResult]:
        """Index materials sequentially with a pause between them."""

        results: list[IndexResult] = []
        for position, (material, text) in enumerate(items):
            if position > 0 and delay_seconds > 0:
                time.sleep(delay_seconds)
            results.append(self.index_material(material, text))
        failed = sum(1 for result in results if not result.success)
        logger.info(f"[Indexer] batch done: {len(results) - failed} ok, {failed} failed")
        return results

    def remove_material(self, material_id: str) -> int:
        removed = self._backend.delete_chunks(material_id)
        logger.info(f"[Indexer] removed {removed} chunks for {material_id}")
        return removed

    def _embed(self, texts: list[str]) -> list[list[float]]:
        if self._breaker is None:
            return self._embedder.embed_documents(texts)
        return self._breaker.call(lambda: self._embedder.embed_documents(texts))
