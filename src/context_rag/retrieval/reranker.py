"""Second-pass relevance scoring over merged search candidates."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import replace

from langchain_core.messages import HumanMessage

from context_rag.llm import ChatModel, parse_json_object, response_text
from context_rag.types import SearchCandidate

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 200
NEUTRAL_SCORE = 5

RERANK_PROMPT = """
Given the query and document excerpts below, rate each excerpt's relevance from 0 to 10.

Query: {query}

Excerpts:
{excerpts}

Return JSON: {{ "scores": [score1, score2, ...] }} with one score per excerpt.
""".strip()


class Reranker(ABC):
    """Assigns `rerank_score` to every candidate."""

    @abstractmethod
    async def rerank(
        self, candidates: list[SearchCandidate], query: str
    ) -> list[SearchCandidate]:
        """Return candidates carrying `rerank_score`, best first."""


def with_combined_scores(candidates: list[SearchCandidate]) -> list[SearchCandidate]:
    """Copy `combined_score` into `rerank_score`, keeping the input order."""
    return [replace(item, rerank_score=item.combined_score) for item in candidates]


class LLMReranker(Reranker):
    """Scores all candidates in one batched JSON completion.

    Small candidate sets skip the model call: with five or fewer items there
    is too little to reorder for the call to pay off.
    """

    def __init__(self, llm: ChatModel, *, skip_threshold: int = 5) -> None:
        self.llm = llm
        self.skip_threshold = skip_threshold

    async def rerank(
        self, candidates: list[SearchCandidate], query: str
    ) -> list[SearchCandidate]:
        if not candidates:
            return []
        if len(candidates) <= self.skip_threshold:
            return with_combined_scores(candidates)

        excerpts = "\n\n".join(
            f"[{i}] {item.content[:EXCERPT_CHARS]}..."
            for i, item in enumerate(candidates, start=1)
        )
        try:
            response = await self.llm.ainvoke(
                [HumanMessage(content=RERANK_PROMPT.format(query=query, excerpts=excerpts))]
            )
            payload = parse_json_object(response_text(response))
            scores = payload.get("scores") or []
            if not isinstance(scores, list):
                raise ValueError("scores must be a list")
        except Exception as exc:
            logger.warning("Reranking error: %s", exc)
            return with_combined_scores(candidates)

        rescored = [
            replace(item, rerank_score=_normalize_score(scores[i] if i < len(scores) else None))
            for i, item in enumerate(candidates)
        ]
        return sorted(rescored, key=lambda item: item.rerank_score or 0.0, reverse=True)


class KeywordOverlapReranker(Reranker):
    """Offline reranker using query-document lexical overlap."""

    async def rerank(
        self, candidates: list[SearchCandidate], query: str
    ) -> list[SearchCandidate]:
        query_terms = set(query.lower().split())
        rescored: list[SearchCandidate] = []
        for item in candidates:
            chunk_terms = set(item.content.lower().split())
            overlap = len(query_terms & chunk_terms) / max(1, len(query_terms))
            rescored.append(
                replace(item, rerank_score=(item.combined_score * 0.8) + (overlap * 0.2))
            )
        return sorted(rescored, key=lambda x: x.rerank_score or 0.0, reverse=True)


def _normalize_score(raw: object) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return NEUTRAL_SCORE / 10
    if not 0 <= raw <= 10:
        return NEUTRAL_SCORE / 10
    return float(raw) / 10
