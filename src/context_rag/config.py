"""Configuration models for the retrieval system."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class ChunkingConfig(BaseModel):
    """Configures character-bounded semantic chunking."""

    target_size: int = Field(default=1000, ge=1)
    max_size: int = Field(default=1500, ge=1)
    overlap: int = Field(default=200, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ChunkingConfig":
        if self.target_size > self.max_size:
            raise ValueError("target_size must not exceed max_size")
        if self.overlap >= self.target_size:
            raise ValueError("overlap must be less than target_size")
        return self


class EmbeddingConfig(BaseModel):
    """Configures batched embedding generation and its retry budget."""

    batch_size: int = Field(default=100, ge=1)
    max_retries: int = Field(default=3, ge=1)
    backoff_delays: tuple[float, ...] = (1.0, 5.0, 15.0)


class RetrievalConfig(BaseModel):
    """Configures hybrid search, reranking and diversity selection."""

    similarity_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    initial_limit: int = Field(default=30, ge=1)
    vector_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    keyword_weight: float = Field(default=0.3, ge=0.0, le=1.0)

    top_k: int = Field(default=8, ge=1)
    diversity_factor: float = Field(default=0.2, ge=0.0)
    expand_queries: bool = True
    use_reranking: bool = True
    rerank_skip_threshold: int = Field(default=5, ge=0)

    request_timeout_seconds: float = Field(default=30.0, gt=0.0)
    evaluation_timeout_seconds: float = Field(default=300.0, gt=0.0)
