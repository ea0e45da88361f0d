"""Domain glossary extraction from freshly ingested content."""

from __future__ import annotations

import logging

from langchain_core.messages import HumanMessage, SystemMessage

from context_rag.llm import ChatModel, create_json_chat_model, parse_json_object, response_text
from context_rag.retrieval.store import GlossaryStore
from context_rag.types import GlossaryTerm

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 4000
MAX_RESPONSE_TOKENS = 1000

_SYSTEM_PROMPT = "You extract domain-specific terminology. Always respond with valid JSON only."

_EXTRACTION_PROMPT = """
You are a domain-specific terminology extractor. Analyze the following text and extract up to 5 important domain-specific terms with clear, concise definitions.

Rules:
- Only extract terms that are specific to the domain/industry discussed in the text
- Do not extract common English words or generic phrases
- Definitions should be 1-2 sentences, clear and self-contained
- Return valid JSON only

Return a JSON object with this exact structure:
{{
  "terms": [
    {{ "term": "Example Term", "definition": "A clear definition of the term." }}
  ]
}}

Text to analyze:
{content}
""".strip()


class GlossaryExtractor:
    def __init__(self, llm: ChatModel, store: GlossaryStore) -> None:
        self.llm = llm
        self.store = store

    async def extract(self, content: str, document_id: str) -> list[GlossaryTerm]:
        """Extract up to five terms and upsert each into the glossary store.

        Request errors propagate; an unparseable response yields no terms.
        """

        response = await self.llm.ainvoke(
            [
                SystemMessage(content=_SYSTEM_PROMPT),
                HumanMessage(
                    content=_EXTRACTION_PROMPT.format(content=content[:MAX_CONTENT_CHARS])
                ),
            ]
        )
        raw = response_text(response)
        try:
            payload = parse_json_object(raw or "{}")
        except ValueError:
            logger.error("Failed to parse glossary extraction response: %s", raw)
            return []

        entries = payload.get("terms")
        terms = [
            GlossaryTerm(term=entry["term"].strip(), definition=entry["definition"].strip())
            for entry in (entries if isinstance(entries, list) else [])
            if isinstance(entry, dict)
            and isinstance(entry.get("term"), str)
            and isinstance(entry.get("definition"), str)
            and entry["term"].strip()
            and entry["definition"].strip()
        ]

        for term in terms:
            try:
                await self.store.upsert_term(term, document_id)
            except Exception as exc:
                logger.error("Failed to upsert glossary term %r: %s", term.term, exc)

        logger.info("Extracted %d glossary term(s) from document %s", len(terms), document_id)
        return terms


def create_glossary_extractor(store: GlossaryStore) -> GlossaryExtractor | None:
    """Build an extractor on its own JSON-mode model, or None without an API key."""

    llm = create_json_chat_model(max_tokens=MAX_RESPONSE_TOKENS)
    if llm is None:
        return None
    return GlossaryExtractor(llm, store)
