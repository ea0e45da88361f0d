"""Single-query hybrid (vector + keyword) search."""

from __future__ import annotations

import logging

from context_rag.config import RetrievalConfig
from context_rag.errors import RetrievalError
from context_rag.ingest.embedder import Embedder
from context_rag.retrieval.store import HybridRankingStore
from context_rag.types import SearchCandidate

logger = logging.getLogger(__name__)


class HybridSearcher:
    """Embeds a query and delegates blended ranking to the store.

    The 70/30 vector/keyword weighting belongs to the store; this class only
    passes the cap, the similarity threshold, the document allowlist and the
    raw query text for keyword matching. Failures are not retried here.
    """

    def __init__(
        self,
        store: HybridRankingStore,
        embedder: Embedder,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.config = config or RetrievalConfig()

    async def search(
        self,
        query: str,
        *,
        document_ids: list[str] | None = None,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[SearchCandidate]:
        try:
            query_embedding = await self.embedder.embed_query(query)
            return await self.store.match_chunks_hybrid(
                query_embedding=query_embedding,
                query_text=query,
                match_count=limit or self.config.initial_limit,
                similarity_threshold=(
                    self.config.similarity_threshold if threshold is None else threshold
                ),
                document_ids=document_ids or None,
            )
        except Exception as exc:
            logger.error("Hybrid search error for %r: %s", query, exc)
            raise RetrievalError(f"Search failed: {exc}") from exc
