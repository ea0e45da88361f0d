"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

NodeLevel = Literal["document", "section", "chunk"]


def estimate_tokens(text: str) -> int:
    """Rough token estimate at four characters per token."""
    return -(-len(text) // 4)


@dataclass(slots=True)
class Section:
    """A logical section of extracted document text."""

    content: str
    header: str | None = None
    page_number: int | None = None


@dataclass(slots=True)
class TextChunk:
    """A size-bounded slice of section text produced by the chunker."""

    content: str
    chunk_index: int
    token_count: int
    section_header: str | None = None
    page_number: int | None = None


@dataclass(slots=True)
class HierarchyNode:
    """One node of the document -> section -> chunk tree.

    ``summary`` is only set on document and section nodes, ``page_number``
    and ``embedding`` only on chunk nodes.
    """

    node_id: str
    document_id: str
    level: NodeLevel
    content: str
    chunk_index: int
    token_count: int
    parent_id: str | None = None
    summary: str | None = None
    section_header: str | None = None
    page_number: int | None = None
    embedding: list[float] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DocumentHierarchy:
    document: HierarchyNode
    sections: list[HierarchyNode]
    chunks: list[HierarchyNode]


@dataclass(slots=True)
class SearchCandidate:
    """A retrieval candidate flowing through search, rerank and enrichment."""

    id: str
    document_id: str
    content: str
    similarity: float
    keyword_score: float
    combined_score: float
    summary: str | None = None
    page_number: int | None = None
    section_header: str | None = None
    rerank_score: float | None = None
    document_title: str | None = None
    parent_summary: str | None = None
    matched_queries: tuple[str, ...] = ()


@dataclass(slots=True)
class RetrievalResult:
    """Ordered context chunks plus the query variants that produced them."""

    chunks: list[SearchCandidate]
    query_variants: list[str]
    total_candidates: int

    @property
    def is_empty(self) -> bool:
        return not self.chunks


@dataclass(slots=True)
class ChunkToEmbed:
    id: str
    content: str


@dataclass(slots=True)
class EmbeddingRunResult:
    """Outcome of one embedding job; partial failure is not an exception."""

    success: bool
    processed_count: int
    failed_count: int


@dataclass(slots=True)
class GlossaryTerm:
    term: str
    definition: str
