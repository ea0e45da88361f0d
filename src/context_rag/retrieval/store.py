"""Store contracts for hybrid ranking, the node hierarchy and the glossary."""

from __future__ import annotations

from dataclasses import replace
from math import sqrt
from typing import Protocol

from context_rag.types import ChunkToEmbed, GlossaryTerm, HierarchyNode, SearchCandidate


class HybridRankingStore(Protocol):
    """Blends vector similarity with keyword matching into one ranked list.

    The vector/keyword weighting is the store's own configuration. Zero
    matches must come back as an empty list, not an error.
    """

    async def match_chunks_hybrid(
        self,
        *,
        query_embedding: list[float],
        query_text: str,
        match_count: int,
        similarity_threshold: float,
        document_ids: list[str] | None = None,
    ) -> list[SearchCandidate]:
        """Return candidates ordered by descending `combined_score`."""


class HierarchyStore(Protocol):
    """Persists hierarchy nodes and answers ancestor lookups."""

    async def insert_node(self, node: HierarchyNode) -> None:
        """Insert a node; its parent must already be stored."""

    async def get_ancestors(self, chunk_id: str) -> list[HierarchyNode]:
        """Return the ancestor chain, nearest parent first, document last."""

    async def list_chunks_missing_embeddings(self, document_id: str) -> list[ChunkToEmbed]:
        """Return chunk-level nodes of a document that have no vector yet."""

    async def update_embedding(
        self, chunk_id: str, embedding: list[float], token_count: int
    ) -> None:
        """Back-fill the vector of one chunk node."""


class GlossaryStore(Protocol):
    async def upsert_term(self, term: GlossaryTerm, source_document_id: str) -> bool:
        """Store a term unless it already exists; return whether it was added."""


class InMemoryDocumentStore:
    """Deterministic hierarchy + hybrid ranking store for tests and local runs."""

    def __init__(self, *, vector_weight: float = 0.7, keyword_weight: float = 0.3) -> None:
        self.vector_weight = vector_weight
        self.keyword_weight = keyword_weight
        self._nodes: dict[str, HierarchyNode] = {}

    def get_node(self, node_id: str) -> HierarchyNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise KeyError(f"Node not found: {node_id}")
        return node

    def nodes_for_document(self, document_id: str) -> list[HierarchyNode]:
        return [node for node in self._nodes.values() if node.document_id == document_id]

    async def insert_node(self, node: HierarchyNode) -> None:
        if node.node_id in self._nodes:
            raise ValueError(f"Node already stored: {node.node_id}")
        if node.parent_id is not None and node.parent_id not in self._nodes:
            raise ValueError(
                f"Parent {node.parent_id} must be stored before node {node.node_id}"
            )
        self._nodes[node.node_id] = node

    async def get_ancestors(self, chunk_id: str) -> list[HierarchyNode]:
        ancestors: list[HierarchyNode] = []
        parent_id = self.get_node(chunk_id).parent_id
        while parent_id is not None:
            parent = self.get_node(parent_id)
            ancestors.append(parent)
            parent_id = parent.parent_id
        return ancestors

    async def list_chunks_missing_embeddings(self, document_id: str) -> list[ChunkToEmbed]:
        return [
            ChunkToEmbed(id=node.node_id, content=node.content)
            for node in self._nodes.values()
            if node.document_id == document_id
            and node.level == "chunk"
            and node.embedding is None
        ]

    async def update_embedding(
        self, chunk_id: str, embedding: list[float], token_count: int
    ) -> None:
        node = self.get_node(chunk_id)
        if node.level != "chunk":
            raise ValueError(f"Only chunk nodes carry embeddings: {chunk_id}")
        self._nodes[chunk_id] = replace(node, embedding=embedding, token_count=token_count)

    async def match_chunks_hybrid(
        self,
        *,
        query_embedding: list[float],
        query_text: str,
        match_count: int,
        similarity_threshold: float,
        document_ids: list[str] | None = None,
    ) -> list[SearchCandidate]:
        query_tokens = set(query_text.lower().split())
        allowed = set(document_ids) if document_ids else None

        scored: list[SearchCandidate] = []
        for node in self._nodes.values():
            if node.level != "chunk" or node.embedding is None:
                continue
            if allowed is not None and node.document_id not in allowed:
                continue

            similarity = _cosine_similarity(query_embedding, node.embedding)
            if similarity < similarity_threshold:
                continue
            text_tokens = set(node.content.lower().split())
            keyword_score = len(query_tokens & text_tokens) / max(1, len(query_tokens))
            scored.append(
                SearchCandidate(
                    id=node.node_id,
                    document_id=node.document_id,
                    content=node.content,
                    similarity=similarity,
                    keyword_score=keyword_score,
                    combined_score=(similarity * self.vector_weight)
                    + (keyword_score * self.keyword_weight),
                    summary=node.summary,
                    page_number=node.page_number,
                    section_header=node.section_header,
                )
            )

        ranked = sorted(scored, key=lambda item: item.combined_score, reverse=True)
        return ranked[:match_count]


class InMemoryGlossaryStore:
    """Glossary keyed by exact term; duplicates are ignored."""

    def __init__(self) -> None:
        self.terms: dict[str, tuple[GlossaryTerm, str]] = {}

    async def upsert_term(self, term: GlossaryTerm, source_document_id: str) -> bool:
        if term.term in self.terms:
            return False
        self.terms[term.term] = (term, source_document_id)
        return True


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
