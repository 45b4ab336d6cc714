"""Configuration models for the resolution core."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChunkingConfig(BaseModel):
    """Configures sentence-respecting sliding-window chunking (token units)."""

    chunk_size: int = Field(default=512, ge=1)
    chunk_overlap: int = Field(default=128, ge=0)
    split_by_paragraph: bool = True
    respect_sentences: bool = True
    min_chunk_size: int = Field(default=100, ge=0)
    max_chunk_size: int = Field(default=1000, ge=1)


class TermExtractionConfig(BaseModel):
    term_min_length: int = Field(default=2, ge=1)
    max_extract_terms: int = Field(default=5, ge=1)


class CorpusValidationConfig(BaseModel):
    """Per-tenant term validation cache settings."""

    cache_size: int = Field(default=1000, ge=1)
    cache_ttl_seconds: float = Field(default=900.0, gt=0.0)


class AmbiguityConfig(BaseModel):
    token_weight: float = Field(default=0.5, gt=0.0, le=1.0)


class ContextConfig(BaseModel):
    """Limits for conversation/page context extraction."""

    max_messages: int = Field(default=2, ge=1)
    max_terms: int = Field(default=5, ge=1)
    max_total_chars: int = Field(default=120, ge=1)
    min_term_length: int = Field(default=2, ge=1)
    max_term_length: int = Field(default=20, ge=1)
    denylist: list[str] = Field(default_factory=list)


class HybridSearchConfig(BaseModel):
    """Defaults for hybrid vector + keyword search."""

    vector_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    limit: int = Field(default=10, ge=1)
    similarity_threshold: float = Field(default=0.3, ge=0.0)
    use_reranker: bool = True
    max_fts_terms: int = Field(default=3, ge=1)
    vector_suggest_threshold: float = Field(default=0.25, ge=0.0)
    keyword_veto_threshold: float = Field(default=0.03, ge=0.0)
    max_workers: int = Field(default=4, ge=1)
    corpus_aware_search: bool = False


class ScoreWeights(BaseModel):
    """Weights of the normalized base-score components; must sum to 1.0."""

    alias: float = Field(default=0.6, ge=0.0, le=1.0)
    fts: float = Field(default=0.3, ge=0.0, le=1.0)
    vector: float = Field(default=0.1, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_sum(self) -> "ScoreWeights":
        total = self.alias + self.fts + self.vector
        if abs(total - 1.0) > 0.001:
            raise ValueError(f"Score weights must sum to 1.0, got {total}")
        return self


class BoostConfig(BaseModel):
    """Bounded multiplicative context boost."""

    context_term: float = Field(default=0.1, ge=0.0)
    category: float = Field(default=0.15, ge=0.0)
    max_total: float = Field(default=0.25, ge=0.0)
    enable_category_boost: bool = False
    max_final_score: float = Field(default=1.25, gt=0.0)


class ResolutionConfig(BaseModel):
    """Decision thresholds and prompt budget for the resolution engine."""

    enable_smart_context: bool = True
    ambiguity_delta: float = Field(default=0.2, ge=0.0)
    ambiguity_min_score: float = Field(default=0.5, ge=0.0, le=1.0)
    max_multi_context_tokens: int = Field(default=1500, ge=1)
    multi_chunks_per_candidate: int = Field(default=3, ge=1)
    multi_chunk_chars: int = Field(default=250, ge=1)
    chunks_per_candidate: int = Field(default=6, ge=1)
    chunk_similarity_threshold: float = Field(default=0.1, ge=0.0)
    fallback_limit: int = Field(default=6, ge=1)
    candidate_margin: float = Field(default=1.0, ge=0.0, le=1.0)


class MarginConfig(BaseModel):
    """Page-context boost, margin re-rank and clarification gate."""

    enabled: bool = True
    boost_factor: float = Field(default=0.15, ge=0.0, le=1.0)
    margin_threshold: float = Field(default=0.10, ge=0.0, le=1.0)
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout_seconds: float = Field(default=30.0, gt=0.0)
    request_timeout_seconds: float = Field(default=60.0, gt=0.0)
    min_requests: int = Field(default=3, ge=1)
    success_rate_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    max_concurrent_calls: int = Field(default=4, ge=1)


class RateLimitConfig(BaseModel):
    """Sliding-window quota with a burst allowance."""

    enabled: bool = True
    requests: int = Field(default=100, ge=1)
    window_seconds: float = Field(default=3600.0, gt=0.0)
    burst_size: int = Field(default=10, ge=0)
    max_keys: int = Field(default=10_000, ge=1)


class EmbeddingConfig(BaseModel):
    model: str = "text-embedding-3-small"
    batch_size: int = Field(default=100, ge=1)
    batch_delay_seconds: float = Field(default=0.1, ge=0.0)
    hashing_dimension: int = Field(default=256, ge=8)


class RerankerConfig(BaseModel):
    enabled: bool = False
    model: str = "rerank-english-v3.0"
    endpoint: str = "https://api.cohere.ai/v1/rerank"
    max_documents: int = Field(default=1000, ge=1)
    timeout_seconds: float = Field(default=10.0, gt=0.0)


class Settings(BaseSettings):
    """Environment-backed settings; builds the component configs."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    env: str = Field(default="development", alias="ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, alias="LOG_FILE")

    chunk_size_tokens: int = Field(default=512, alias="CHUNK_SIZE_TOKENS")
    chunk_overlap_tokens: int = Field(default=128, alias="CHUNK_OVERLAP_TOKENS")
    min_chunk_size_tokens: int = Field(default=100, alias="MIN_CHUNK_SIZE_TOKENS")

    enable_smart_context: bool = Field(default=True, alias="ENABLE_SMART_CONTEXT")
    ambiguity_delta: float = Field(default=0.2, alias="AMBIGUITY_DELTA")
    ambiguity_min_score: float = Field(default=0.5, alias="AMBIGUITY_MIN_SCORE")
    max_multi_context_tokens: int = Field(default=1500, alias="MAX_MULTI_CONTEXT_TOKENS")

    boost_context_term: float = Field(default=0.1, alias="BOOST_CONTEXT_TERM")
    boost_category: float = Field(default=0.15, alias="BOOST_CATEGORY")
    max_total_boost: float = Field(default=0.25, alias="MAX_TOTAL_BOOST")
    enable_category_boost: bool = Field(default=False, alias="ENABLE_CATEGORY_BOOST")

    score_weight_alias: float = Field(default=0.6, alias="SCORE_WEIGHT_ALIAS")
    score_weight_fts: float = Field(default=0.3, alias="SCORE_WEIGHT_FTS")
    score_weight_vector: float = Field(default=0.1, alias="SCORE_WEIGHT_VECTOR")
    ambiguity_token_weight: float = Field(default=0.5, alias="AMBIGUITY_TOKEN_WEIGHT")

    max_extract_terms: int = Field(default=5, alias="MAX_EXTRACT_TERMS")
    term_min_length: int = Field(default=2, alias="TERM_MIN_LENGTH")
    max_fts_terms: int = Field(default=3, alias="MAX_FTS_TERMS")
    corpus_aware_search: bool = Field(default=False, alias="CORPUS_AWARE_SEARCH")
    corpus_cache_size: int = Field(default=1000, alias="CORPUS_CACHE_SIZE")
    corpus_cache_ttl_ms: int = Field(default=900_000, alias="CORPUS_CACHE_TTL")
    context_denylist: str = Field(default="", alias="CONTEXT_DENYLIST")

    circuit_breaker_failure_threshold: int = Field(
        default=5, alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD"
    )
    circuit_breaker_reset_timeout_ms: int = Field(
        default=30_000, alias="CIRCUIT_BREAKER_RESET_TIMEOUT_MS"
    )
    circuit_breaker_timeout_ms: int = Field(default=60_000, alias="CIRCUIT_BREAKER_TIMEOUT_MS")
    circuit_breaker_max_concurrent_calls: int = Field(
        default=4, alias="CIRCUIT_BREAKER_MAX_CONCURRENT_CALLS"
    )

    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_requests_per_hour: int = Field(default=100, alias="RATE_LIMIT_REQUESTS_PER_HOUR")
    rate_limit_burst_size: int = Field(default=10, alias="RATE_LIMIT_BURST_SIZE")
    rate_limit_window_seconds: float = Field(default=3600.0, alias="RATE_LIMIT_WINDOW_SECONDS")
    site_rate_limit_requests_per_hour: int = Field(
        default=1000, alias="SITE_RATE_LIMIT_REQUESTS_PER_HOUR"
    )
    site_rate_limit_burst_size: int = Field(default=50, alias="SITE_RATE_LIMIT_BURST_SIZE")
    site_rate_limit_window_seconds: float = Field(
        default=3600.0, alias="SITE_RATE_LIMIT_WINDOW_SECONDS"
    )
    rate_limit_max_keys: int = Field(default=10_000, alias="RATE_LIMIT_MAX_KEYS")
    trust_proxy_headers: bool = Field(default=False, alias="TRUST_PROXY_HEADERS")

    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_embedding_model: str = Field(
        default="text-embedding-3-small", alias="OPENAI_EMBEDDING_MODEL"
    )
    cohere_api_key: str | None = Field(default=None, alias="COHERE_API_KEY")
    reranker_enabled: bool = Field(default=False, alias="RERANKER_ENABLED")

    @property
    def is_development(self) -> bool:
        return self.env.lower() == "development"

    def chunking_config(self) -> ChunkingConfig:
        return ChunkingConfig(
            chunk_size=self.chunk_size_tokens,
            chunk_overlap=self.chunk_overlap_tokens,
            min_chunk_size=self.min_chunk_size_tokens,
        )

    def resolution_config(self) -> ResolutionConfig:
        return ResolutionConfig(
            enable_smart_context=self.enable_smart_context,
            ambiguity_delta=self.ambiguity_delta,
            ambiguity_min_score=self.ambiguity_min_score,
            max_multi_context_tokens=self.max_multi_context_tokens,
        )

    def boost_config(self) -> BoostConfig:
        return BoostConfig(
            context_term=self.boost_context_term,
            category=self.boost_category,
            max_total=self.max_total_boost,
            enable_category_boost=self.enable_category_boost,
        )

    def term_extraction_config(self) -> TermExtractionConfig:
        return TermExtractionConfig(
            term_min_length=self.term_min_length,
            max_extract_terms=self.max_extract_terms,
        )

    def corpus_validation_config(self) -> CorpusValidationConfig:
        return CorpusValidationConfig(
            cache_size=self.corpus_cache_size,
            cache_ttl_seconds=self.corpus_cache_ttl_ms / 1000.0,
        )

    def context_config(self) -> ContextConfig:
        denylist = [
            term.strip().lower()
            for term in self.context_denylist.split(",")
            if term.strip()
        ]
        return ContextConfig(denylist=denylist)

    def hybrid_search_config(self) -> HybridSearchConfig:
        return HybridSearchConfig(
            max_fts_terms=self.max_fts_terms,
            corpus_aware_search=self.corpus_aware_search,
        )

    def score_weights(self) -> ScoreWeights:
        return ScoreWeights(
            alias=self.score_weight_alias,
            fts=self.score_weight_fts,
            vector=self.score_weight_vector,
        )

    def ambiguity_config(self) -> AmbiguityConfig:
        return AmbiguityConfig(token_weight=self.ambiguity_token_weight)

    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.circuit_breaker_failure_threshold,
            reset_timeout_seconds=self.circuit_breaker_reset_timeout_ms / 1000.0,
            request_timeout_seconds=self.circuit_breaker_timeout_ms / 1000.0,
            max_concurrent_calls=self.circuit_breaker_max_concurrent_calls,
        )

    def ip_rate_limit_config(self) -> RateLimitConfig:
        return RateLimitConfig(
            enabled=self.rate_limit_enabled,
            requests=self.rate_limit_requests_per_hour,
            window_seconds=self.rate_limit_window_seconds,
            burst_size=self.rate_limit_burst_size,
            max_keys=self.rate_limit_max_keys,
        )

    def site_rate_limit_config(self) -> RateLimitConfig:
        return RateLimitConfig(
            enabled=self.rate_limit_enabled,
            requests=self.site_rate_limit_requests_per_hour,
            window_seconds=self.site_rate_limit_window_seconds,
            burst_size=self.site_rate_limit_burst_size,
            max_keys=self.rate_limit_max_keys,
        )

    def embedding_config(self) -> EmbeddingConfig:
        return EmbeddingConfig(model=self.openai_embedding_model)

    def reranker_config(self) -> RerankerConfig:
        return RerankerConfig(enabled=self.reranker_enabled and bool(self.cohere_api_key))
