"""Embedding service abstractions and concrete adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt

from langchain_core.embeddings import Embeddings


class Embedder(ABC):
    """Embedding service used by ingest and hybrid search.

    Implementations must return one vector per input, in input order, and let
    rate-limit and timeout errors propagate with recognisable messages so the
    embedding retry policy can classify them.
    """

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts."""

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


class LangChainEmbedder(Embedder):
    """Adapts any LangChain `Embeddings` model (e.g. `OpenAIEmbeddings`)."""

    def __init__(self, embeddings: Embeddings) -> None:
        self._embeddings = embeddings

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await self._embeddings.aembed_documents(texts)

    async def embed_query(self, text: str) -> list[float]:
        return await self._embeddings.aembed_query(text)


class HashingEmbedder(Embedder):
    """Deterministic bag-of-words embedding without external model calls.

    Used for local runs and deterministic tests. In production, use
    `LangChainEmbedder` over a hosted embedding model.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]
