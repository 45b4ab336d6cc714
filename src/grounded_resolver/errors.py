"""Exception types raised by the resolution core."""

from __future__ import annotations


class GroundedResolverError(Exception):
    """Base class for package errors."""


class ChunkingError(GroundedResolverError, ValueError):
    """Invalid chunker configuration."""


class EmbeddingProviderError(GroundedResolverError):
    def __init__(self, message: str, provider: str = "unknown") -> None:
        super().__init__(message)
        self.provider = provider


class RerankingError(GroundedResolverError):
    def __init__(self, message: str, provider: str = "unknown") -> None:
        super().__init__(message)
        self.provider = provider


class SearchError(GroundedResolverError):
    """A search could not run at all."""


class CircuitOpenError(GroundedResolverError):
    def __init__(self, name: str, retry_after_seconds: float) -> None:
        super().__init__(
            f"Circuit '{name}' is open; retry in {retry_after_seconds:.1f}s"
        )
        self.name = name
        self.retry_after_seconds = retry_after_seconds


class RateLimitExceededError(GroundedResolverError):
    def __init__(self, key: str, limit: int, retry_after_seconds: int) -> None:
        super().__init__(f"Rate limit exceeded for {key}")
        self.key = key
        self.limit = limit
        self.retry_after_seconds = retry_after_seconds
