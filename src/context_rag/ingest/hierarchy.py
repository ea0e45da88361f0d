"""Document -> section -> chunk tree construction."""

from __future__ import annotations

import uuid

from context_rag.types import (
    DocumentHierarchy,
    HierarchyNode,
    Section,
    TextChunk,
    estimate_tokens,
)

DOCUMENT_SUMMARY_CHARS = 500
SECTION_SUMMARY_CHARS = 300
MIN_HEADERLESS_SECTION_CHARS = 200


def summarize(text: str, max_length: int) -> str:
    """Truncate `text` at the last space before `max_length`, adding an ellipsis."""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_space = truncated.rfind(" ")
    return (truncated[:last_space] if last_space > 0 else truncated) + "..."


def build_hierarchy(
    title: str,
    full_text: str,
    sections: list[Section],
    chunks: list[TextChunk],
    *,
    document_id: str | None = None,
) -> DocumentHierarchy:
    """Assemble the three-level tree for one document.

    Node ids are assigned here so parent links are complete before storage.
    Headerless sections of 200 characters or less get no section node. A chunk
    links to the first section node with the same header string; headerless
    or unmatched chunks hang directly off the document node.
    """

    doc_id = document_id or str(uuid.uuid4())
    document = HierarchyNode(
        node_id=str(uuid.uuid4()),
        document_id=doc_id,
        level="document",
        content=full_text,
        chunk_index=0,
        token_count=estimate_tokens(full_text),
        summary=summarize(full_text, DOCUMENT_SUMMARY_CHARS),
        metadata={"title": title},
    )

    kept = [
        section
        for section in sections
        if section.header or len(section.content) > MIN_HEADERLESS_SECTION_CHARS
    ]
    section_nodes = [
        HierarchyNode(
            node_id=str(uuid.uuid4()),
            document_id=doc_id,
            level="section",
            content=section.content,
            chunk_index=index,
            token_count=estimate_tokens(section.content),
            parent_id=document.node_id,
            summary=summarize(section.content, SECTION_SUMMARY_CHARS),
            section_header=section.header,
        )
        for index, section in enumerate(kept)
    ]

    chunk_nodes: list[HierarchyNode] = []
    for chunk in chunks:
        parent = None
        if chunk.section_header is not None:
            parent = next(
                (node for node in section_nodes if node.section_header == chunk.section_header),
                None,
            )
        chunk_nodes.append(
            HierarchyNode(
                node_id=str(uuid.uuid4()),
                document_id=doc_id,
                level="chunk",
                content=chunk.content,
                chunk_index=chunk.chunk_index,
                token_count=chunk.token_count,
                parent_id=parent.node_id if parent else document.node_id,
                section_header=chunk.section_header,
                page_number=chunk.page_number,
            )
        )

    return DocumentHierarchy(document=document, sections=section_nodes, chunks=chunk_nodes)


def flatten_hierarchy(hierarchy: DocumentHierarchy) -> list[HierarchyNode]:
    """Return nodes parents-first: document, then sections, then chunks."""
    return [hierarchy.document, *hierarchy.sections, *hierarchy.chunks]
