"""FastAPI entrypoint for indexing, resolution, product matching and telemetry."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from grounded_resolver.config import MarginConfig, Settings
from grounded_resolver.errors import RateLimitExceededError
from grounded_resolver.ingest.chunker import TextChunker
from grounded_resolver.ingest.embedder import create_embedder
from grounded_resolver.ingest.indexer import ContentIndexer
from grounded_resolver.obs.logging import setup_logger
from grounded_resolver.obs.telemetry import InMemoryTelemetryWriter, TelemetrySink
from grounded_resolver.resilience.circuit_breaker import CircuitBreaker
from grounded_resolver.resilience.rate_limiter import SlidingWindowRateLimiter
from grounded_resolver.resolution.engine import ResolutionContext, ResolutionEngine
from grounded_resolver.resolution.products import Product, ProductMatcher
from grounded_resolver.resolution.scoring import CandidateScorer
from grounded_resolver.retrieval.hybrid import HybridSearchService
from grounded_resolver.retrieval.reranker import create_reranker
from grounded_resolver.retrieval.store import InMemorySearchBackend
from grounded_resolver.retrieval.terms import TermExtractor
from grounded_resolver.retrieval.validator import CorpusValidator
from grounded_resolver.types import Material

DEFAULT_INSTRUCTIONS = "You are a helpful assistant. Answer only from the provided materials."


class PageContextModel(BaseModel):
    title: str | None = None
    description: str | None = None
    url: str | None = None


class ResolveRequest(BaseModel):
    query: str = Field(min_length=1, max_length=2000)
    site_id: str = Field(min_length=1)
    messages: list[str] = Field(default_factory=list)
    page_context: PageContextModel | None = None
    base_instructions: str = DEFAULT_INSTRUCTIONS


class MaterialRequest(BaseModel):
    material_id: str = Field(min_length=1)
    site_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


class ProductModel(BaseModel):
    id: str
    title: str
    match_score: float = Field(default=0.0, ge=0.0)
    match_type: str = "unknown"
    url: str | None = None
    description: str | None = None


class ProductMatchRequest(BaseModel):
    query: str = Field(min_length=1)
    products: list[ProductModel] = Field(default_factory=list)
    page_context: PageContextModel | None = None
    aliases: list[str] = Field(default_factory=list)


_settings = Settings()
setup_logger(_settings.log_level, _settings.log_file)

app = FastAPI(title="Grounded Resolver", version="0.1.0")

_backend = InMemorySearchBackend()
_embedder = create_embedder(_settings)
_breaker_config = _settings.circuit_breaker_config()
_embedding_breaker = CircuitBreaker("embeddings", _breaker_config)
_search_breaker = CircuitBreaker("search", _breaker_config)
_reranker_breaker = CircuitBreaker("reranker", _breaker_config)

_indexer = ContentIndexer(
    TextChunker(_settings.chunking_config()),
    _embedder,
    _backend,
    breaker=_embedding_breaker,
)
_search = HybridSearchService(
    _backend,
    _embedder,
    config=_settings.hybrid_search_config(),
    reranker=create_reranker(_settings),
    term_extractor=TermExtractor(_settings.term_extraction_config()),
    corpus_validator=CorpusValidator(_backend, _settings.corpus_validation_config()),
    scorer=CandidateScorer(weights=_settings.score_weights(), boosts=_settings.boost_config()),
    embedding_breaker=_embedding_breaker,
    search_breaker=_search_breaker,
    reranker_breaker=_reranker_breaker,
)
_telemetry_writer = InMemoryTelemetryWriter()
_telemetry = TelemetrySink(_telemetry_writer, development=_settings.is_development)
_engine = ResolutionEngine(
    _search,
    config=_settings.resolution_config(),
    context_config=_settings.context_config(),
    ambiguity_config=_settings.ambiguity_config(),
    boost_config=_settings.boost_config(),
    telemetry=_telemetry,
)
_product_matcher = ProductMatcher(MarginConfig())
_ip_limiter = SlidingWindowRateLimiter(_settings.ip_rate_limit_config())
_site_limiter = SlidingWindowRateLimiter(_settings.site_rate_limit_config())
_trust_forwarded_for = _settings.trust_proxy_headers


def _client_key(request: Request) -> str:
    """Client address; `X-Forwarded-For` is honoured only behind a trusted proxy."""
    forwarded_for = request.headers.get("X-Forwarded-For") if _trust_forwarded_for else None
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _enforce_rate_limits(request: Request, site_id: str) -> None:
    _ip_limiter.enforce(f"ip:{_client_key(request)}")
    _site_limiter.enforce(f"site:{site_id}")


@app.exception_handler(RateLimitExceededError)
def rate_limit_exceeded(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded"},
        headers={
            "Retry-After": str(exc.retry_after_seconds),
            "X-RateLimit-Limit": str(exc.limit),
            "X-RateLimit-Remaining": "0",
        },
    )


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "embedding_model": _embedder.model_name,
        "reranker_enabled": _settings.reranker_config().enabled,
        "smart_context_enabled": _settings.enable_smart_context,
        "chunk_count": _backend.count_chunks(),
        "circuit_breakers": [breaker.get_status() for breaker in _search.breakers()],
    }


@app.post("/materials")
def index_material(request: MaterialRequest) -> dict[str, Any]:
    material = Material(
        material_id=request.material_id,
        site_id=request.site_id,
        title=request.title,
        metadata=request.metadata,
        is_active=request.is_active,
    )
    result = _indexer.index_material(material, request.text)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error or "Indexing failed")
    return {
        "material_id": result.material_id,
        "chunks_created": result.chunks_created,
        "chunk_ids": result.chunk_ids,
    }


@app.delete("/materials/{material_id}")
def delete_material(material_id: str) -> dict[str, Any]:
    if _backend.get_material(material_id) is None:
        raise HTTPException(status_code=404, detail=f"Material not found: {material_id}")
    removed = _indexer.remove_material(material_id)
    _backend.delete_material(material_id)
    return {"material_id": material_id, "chunks_removed": removed}


@app.post("/resolve")
def resolve(request: ResolveRequest, http_request: Request) -> dict[str, Any]:
    _enforce_rate_limits(http_request, request.site_id)
    page = request.page_context.model_dump() if request.page_context else None
    result = _engine.resolve(
        request.query,
        request.site_id,
        ResolutionContext(messages=request.messages, page_context=page),
        request.base_instructions,
    )
    return {
        "mode": result.mode.value,
        "system_prompt": result.system_prompt,
        "chunks": result.chunks,
        "telemetry": result.telemetry,
    }


@app.post("/products/match")
def match_products(request: ProductMatchRequest) -> dict[str, Any]:
    products = [Product(**item.model_dump()) for item in request.products]
    page = request.page_context.model_dump() if request.page_context else None
    outcome = _product_matcher.match(products, request.query, page, request.aliases)
    return {
        "products": [asdict(product) for product in outcome.products],
        "confidence": outcome.confidence,
        "clarification": {
            "should_ask": outcome.should_clarify,
            "reason": outcome.reason,
            "options": [asdict(option) for option in outcome.clarification_options],
        },
    }


@app.get("/telemetry")
def telemetry(limit: int = 20) -> dict[str, Any]:
    _telemetry.flush()
    return {
        "items": _telemetry_writer.list_recent(limit=limit),
        "summary": _telemetry_writer.summary(),
    }
