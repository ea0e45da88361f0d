"""Context retrieval package."""

from .config import ChunkingConfig, EmbeddingConfig, RetrievalConfig

__all__ = ["ChunkingConfig", "EmbeddingConfig", "RetrievalConfig"]
