"""Multi-stage retrieval: expand -> search -> merge -> rerank -> diversify -> enrich."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import TypeVar

from context_rag.config import RetrievalConfig
from context_rag.errors import RetrievalError, RetrievalTimeoutError
from context_rag.retrieval.fusion import apply_mmr, deduplicate_and_merge
from context_rag.retrieval.hybrid import HybridSearcher
from context_rag.retrieval.query_expansion import QueryExpander
from context_rag.retrieval.reranker import Reranker, with_combined_scores
from context_rag.retrieval.store import HierarchyStore
from context_rag.types import RetrievalResult, SearchCandidate

logger = logging.getLogger(__name__)

DOCUMENT_TITLE_CHARS = 100

T = TypeVar("T")


@dataclass(slots=True)
class RetrievalOptions:
    """Per-request overrides; unset fields fall back to `RetrievalConfig`."""

    expand_queries: bool | None = None
    use_reranking: bool | None = None
    top_k: int | None = None
    diversity_factor: float | None = None
    timeout_seconds: float | None = None


class RetrievalPipeline:
    """Top-level retrieval entry point.

    Each call is independent: no state is shared between requests beyond the
    injected store and service clients.
    """

    def __init__(
        self,
        searcher: HybridSearcher,
        hierarchy_store: HierarchyStore,
        *,
        expander: QueryExpander | None = None,
        reranker: Reranker | None = None,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.searcher = searcher
        self.hierarchy_store = hierarchy_store
        self.expander = expander
        self.reranker = reranker
        self.config = config or RetrievalConfig()

    async def retrieve_context(
        self,
        query: str,
        document_ids: list[str] | None = None,
        options: RetrievalOptions | None = None,
    ) -> RetrievalResult:
        """Retrieve an ordered, diversified context set for `query`.

        Raises:
            RetrievalError: a variant search failed.
            RetrievalTimeoutError: the overall deadline expired.
        """

        options = options or RetrievalOptions()
        timeout = _pick(options.timeout_seconds, self.config.request_timeout_seconds)
        try:
            return await asyncio.wait_for(
                self._retrieve(query, document_ids, options), timeout=timeout
            )
        except asyncio.TimeoutError as exc:
            logger.error("Retrieval for %r exceeded %.1fs deadline", query, timeout)
            raise RetrievalTimeoutError(
                f"Retrieval exceeded {timeout:.1f}s deadline"
            ) from exc

    async def retrieve_many(
        self,
        queries: list[str],
        document_ids: list[str] | None = None,
        options: RetrievalOptions | None = None,
    ) -> list[RetrievalResult]:
        """Run queries one after another for bulk evaluation runs.

        Each query gets `evaluation_timeout_seconds` unless `options` sets a
        deadline. The first failing query aborts the run.
        """

        options = options or RetrievalOptions()
        if options.timeout_seconds is None:
            options = replace(options, timeout_seconds=self.config.evaluation_timeout_seconds)
        return [await self.retrieve_context(query, document_ids, options) for query in queries]

    async def _retrieve(
        self,
        query: str,
        document_ids: list[str] | None,
        options: RetrievalOptions,
    ) -> RetrievalResult:
        expand = _pick(options.expand_queries, self.config.expand_queries)
        use_reranking = _pick(options.use_reranking, self.config.use_reranking)
        top_k = _pick(options.top_k, self.config.top_k)
        diversity_factor = _pick(options.diversity_factor, self.config.diversity_factor)

        # 1. Expand
        if expand and self.expander is not None:
            query_variants = await self.expander.expand(query)
        else:
            query_variants = [query]

        # 2. Search every variant concurrently
        result_sets = await self._search_all(query_variants, document_ids)

        # 3. Merge and deduplicate
        merged = deduplicate_and_merge(result_sets, query_variants)
        total_candidates = len(merged)

        # 4. Rerank against the original query
        if use_reranking and self.reranker is not None:
            reranked = await self.reranker.rerank(merged, query)
        else:
            reranked = with_combined_scores(merged)

        # 5. Diversify
        diverse = apply_mmr(reranked, diversity_factor, top_k)

        # 6. Enrich with ancestor summaries
        chunks = list(
            await asyncio.gather(*(self._with_parent_context(item) for item in diverse))
        )

        logger.info(
            "Retrieved %d chunk(s) from %d candidate(s) across %d query variant(s)",
            len(chunks),
            total_candidates,
            len(query_variants),
        )
        return RetrievalResult(
            chunks=chunks,
            query_variants=query_variants,
            total_candidates=total_candidates,
        )

    async def _search_all(
        self, query_variants: list[str], document_ids: list[str] | None
    ) -> list[list[SearchCandidate]]:
        outcomes = await asyncio.gather(
            *(
                self.searcher.search(variant, document_ids=document_ids)
                for variant in query_variants
            ),
            return_exceptions=True,
        )
        failures = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
        if failures:
            raise RetrievalError(
                f"{len(failures)} of {len(query_variants)} variant searches failed: {failures[0]}"
            ) from failures[0]
        return [outcome for outcome in outcomes if not isinstance(outcome, BaseException)]

    async def _with_parent_context(self, candidate: SearchCandidate) -> SearchCandidate:
        try:
            ancestors = await self.hierarchy_store.get_ancestors(candidate.id)
        except KeyError:
            logger.debug("No hierarchy node for chunk %s", candidate.id)
            return candidate
        except Exception as exc:
            logger.warning("Parent context lookup failed for chunk %s: %s", candidate.id, exc)
            return candidate

        document = next((node for node in ancestors if node.level == "document"), None)
        section = next((node for node in ancestors if node.level == "section"), None)
        if document is None and section is None:
            logger.debug("Chunk %s has no parent context", candidate.id)
            return candidate

        return replace(
            candidate,
            document_title=(
                document.summary[:DOCUMENT_TITLE_CHARS]
                if document is not None and document.summary
                else None
            ),
            parent_summary=section.summary if section is not None else None,
        )


def _pick(value: T | None, default: T) -> T:
    return default if value is None else value
