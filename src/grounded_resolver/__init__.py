"""Grounded resolver package."""

from .config import ChunkingConfig, HybridSearchConfig, ResolutionConfig, Settings

__all__ = ["ChunkingConfig", "HybridSearchConfig", "ResolutionConfig", "Settings"]
