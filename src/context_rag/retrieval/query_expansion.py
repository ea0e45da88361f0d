"""LLM-backed query rephrasing to widen recall."""

from __future__ import annotations

import logging

from langchain_core.messages import HumanMessage

from context_rag.llm import ChatModel, parse_json_object, response_text

logger = logging.getLogger(__name__)

MAX_VARIANTS = 3

EXPANSION_PROMPT = """
Given this search query, generate 3 alternative phrasings that might help find relevant information. Focus on:
1. Synonyms and related terms
2. More specific versions
3. More general versions

Query: {query}

Return as JSON: {{ "variants": ["variant1", "variant2", "variant3"] }}
""".strip()


class QueryExpander:
    """Best-effort expansion: the original query always comes back first."""

    def __init__(self, llm: ChatModel) -> None:
        self.llm = llm

    async def expand(self, query: str) -> list[str]:
        try:
            response = await self.llm.ainvoke(
                [HumanMessage(content=EXPANSION_PROMPT.format(query=query))]
            )
            payload = parse_json_object(response_text(response))
            raw_variants = payload.get("variants") or payload.get("queries") or []
            if not isinstance(raw_variants, list):
                raise ValueError("variants must be a list")
        except Exception as exc:
            logger.warning("Query expansion error: %s", exc)
            return [query]

        variants = [
            variant.strip()
            for variant in raw_variants
            if isinstance(variant, str) and variant.strip()
        ]
        return [query, *variants[:MAX_VARIANTS]]
