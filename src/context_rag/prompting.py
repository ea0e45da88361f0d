"""Grounded prompt assembly from retrieved context."""

from __future__ import annotations

from dataclasses import dataclass

from context_rag.types import SearchCandidate

_SYSTEM_PROMPT = """
You are a knowledge-base assistant.

Rules:
1) Answer only from the numbered sources in the context below.
2) Cite every factual statement with its source number, e.g. [1] or [2][3].
3) If the sources do not cover the question, say so and share what they do cover.
4) Keep answers concise: 2 to 4 short paragraphs.

Context from knowledge base:
{context}
""".strip()

_NO_CONTEXT_PROMPT = """
You are a knowledge-base assistant.

The question does not closely match the reference material, so no sources are
available for this answer.

Rules:
1) Acknowledge the topic and answer only at a general level.
2) Never invent specific facts, figures, or policies.
3) Ask one clarifying question that could help find relevant material.
""".strip()

CONTEXT_SEPARATOR = "\n\n---\n\n"


@dataclass(slots=True)
class Source:
    index: int
    document_id: str
    content: str
    document_title: str | None
    page_number: int | None
    section_header: str | None
    similarity: float


@dataclass(slots=True)
class RagPrompt:
    system_prompt: str
    formatted_context: str
    sources: list[Source]
    confidence: int


def build_rag_prompt(chunks: list[SearchCandidate]) -> RagPrompt:
    """Number the retrieved chunks and embed them in the system prompt.

    Confidence is the mean `combined_score` as a 0-100 integer.
    """

    sources = [
        Source(
            index=i,
            document_id=chunk.document_id,
            content=chunk.content,
            document_title=chunk.document_title,
            page_number=chunk.page_number,
            section_header=chunk.section_header,
            similarity=chunk.combined_score,
        )
        for i, chunk in enumerate(chunks, start=1)
    ]

    blocks: list[str] = []
    for i, chunk in enumerate(chunks, start=1):
        page = f" [Page {chunk.page_number}]" if chunk.page_number else ""
        header = f"({chunk.section_header}) " if chunk.section_header else ""
        blocks.append(f"[{i}]{page} {header}{chunk.content}")
    formatted_context = CONTEXT_SEPARATOR.join(blocks)

    average = sum(c.combined_score for c in chunks) / len(chunks) if chunks else 0.0
    confidence = min(round(average * 100), 100)

    return RagPrompt(
        system_prompt=_SYSTEM_PROMPT.format(context=formatted_context),
        formatted_context=formatted_context,
        sources=sources,
        confidence=confidence,
    )


def build_empty_context_prompt() -> str:
    """System prompt for the no-context path (a successful empty retrieval)."""
    return _NO_CONTEXT_PROMPT


def follow_up_suggestions(chunks: list[SearchCandidate], limit: int = 2) -> list[str]:
    headers: list[str] = []
    for chunk in chunks:
        if chunk.section_header and chunk.section_header not in headers:
            headers.append(chunk.section_header)
    return [f"Tell me more about {header}" for header in headers[:limit]]
