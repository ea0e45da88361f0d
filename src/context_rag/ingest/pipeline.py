"""End-to-end ingest pipeline: chunk -> build hierarchy -> store -> embed."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

from context_rag.ingest.chunker import SemanticChunker
from context_rag.ingest.embedding_generator import EmbeddingGenerator
from context_rag.ingest.glossary import GlossaryExtractor
from context_rag.ingest.hierarchy import build_hierarchy, flatten_hierarchy
from context_rag.retrieval.store import HierarchyStore
from context_rag.types import DocumentHierarchy, EmbeddingRunResult, Section

logger = logging.getLogger(__name__)

GLOSSARY_SOURCE_CHUNKS = 3


@dataclass(slots=True)
class IngestReport:
    document_id: str
    chunk_count: int
    section_count: int
    embeddings: EmbeddingRunResult


async def store_hierarchy(store: HierarchyStore, hierarchy: DocumentHierarchy) -> None:
    """Insert every node parents-first so each parent exists before its children."""
    for node in flatten_hierarchy(hierarchy):
        await store.insert_node(node)


class IngestPipeline:
    """Coordinates chunker/hierarchy/store/embedding stages.

    This class isolates ingestion from query-time retrieval so indexing can be
    executed offline, in batch jobs, or behind an upload endpoint. Glossary
    extraction runs as a detached background task: its failures are logged
    and never reach the caller.
    """

    def __init__(
        self,
        chunker: SemanticChunker,
        store: HierarchyStore,
        embedding_generator: EmbeddingGenerator,
        glossary_extractor: GlossaryExtractor | None = None,
    ) -> None:
        self._chunker = chunker
        self._store = store
        self._embedding_generator = embedding_generator
        self._glossary_extractor = glossary_extractor
        self._background_tasks: set[asyncio.Task[Any]] = set()

    async def ingest_document(
        self,
        document_id: str,
        title: str,
        sections: list[Section],
        *,
        full_text: str | None = None,
    ) -> IngestReport:
        """Ingest one extracted document and return what was created.

        Raises:
            ValueError: when the sections carry no text at all.
        """

        text = full_text if full_text is not None else "\n\n".join(s.content for s in sections)
        if not text.strip():
            raise ValueError("No text content extracted")

        chunks = self._chunker.chunk_with_sections(sections)
        hierarchy = build_hierarchy(title, text, sections, chunks, document_id=document_id)
        await store_hierarchy(self._store, hierarchy)

        embeddings = await self._embedding_generator.generate_embeddings_for_document(
            document_id
        )
        if not embeddings.success:
            logger.warning(
                "Embedding generation for %s had %d failure(s)",
                document_id,
                embeddings.failed_count,
            )

        glossary_content = "\n\n".join(
            node.content for node in hierarchy.chunks[:GLOSSARY_SOURCE_CHUNKS]
        )
        if self._glossary_extractor is not None and glossary_content.strip():
            self._spawn_detached(
                self._glossary_extractor.extract(glossary_content, document_id),
                name=f"glossary-{document_id}",
            )

        logger.info(
            "Ingested document %s: %d section node(s), %d chunk(s), %d embedded",
            document_id,
            len(hierarchy.sections),
            len(hierarchy.chunks),
            embeddings.processed_count,
        )
        return IngestReport(
            document_id=document_id,
            chunk_count=len(hierarchy.chunks),
            section_count=len(hierarchy.sections),
            embeddings=embeddings,
        )

    @property
    def pending_tasks(self) -> int:
        return len(self._background_tasks)

    async def drain(self) -> None:
        """Wait for outstanding background tasks (shutdown and tests)."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    def _spawn_detached(self, coro: Coroutine[Any, Any, Any], *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Background task %s failed (non-blocking): %s", task.get_name(), exc)
