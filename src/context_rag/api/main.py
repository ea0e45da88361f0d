"""FastAPI entrypoint for ingest/search/trace endpoints."""

from __future__ import annotations

import os
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from context_rag.config import ChunkingConfig, EmbeddingConfig, RetrievalConfig
from context_rag.errors import RetrievalError, RetrievalTimeoutError
from context_rag.ingest.chunker import SemanticChunker
from context_rag.ingest.embedder import Embedder, HashingEmbedder, LangChainEmbedder
from context_rag.ingest.embedding_generator import EmbeddingGenerator
from context_rag.ingest.glossary import create_glossary_extractor
from context_rag.ingest.pipeline import IngestPipeline
from context_rag.llm import create_embeddings, create_json_chat_model
from context_rag.obs.logger import configure_logging
from context_rag.obs.tracing import Timer, TraceStore
from context_rag.prompting import (
    build_empty_context_prompt,
    build_rag_prompt,
    follow_up_suggestions,
)
from context_rag.retrieval.hybrid import HybridSearcher
from context_rag.retrieval.pipeline import RetrievalOptions, RetrievalPipeline
from context_rag.retrieval.query_expansion import QueryExpander
from context_rag.retrieval.reranker import KeywordOverlapReranker, LLMReranker, Reranker
from context_rag.retrieval.store import InMemoryDocumentStore, InMemoryGlossaryStore
from context_rag.types import Section


def _create_embedder() -> Embedder:
    embeddings = create_embeddings()
    if embeddings is None:
        return HashingEmbedder()
    return LangChainEmbedder(embeddings)


class SectionPayload(BaseModel):
    content: str
    header: str | None = None
    page_number: int | None = Field(default=None, ge=1)


class IngestRequest(BaseModel):
    title: str = Field(min_length=1)
    sections: list[SectionPayload] = Field(min_length=1)
    document_id: str | None = None
    full_text: str | None = None


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    document_ids: list[str] | None = None
    top_k: int | None = Field(default=None, ge=1, le=20)
    diversity_factor: float | None = Field(default=None, ge=0.0)
    expand_queries: bool | None = None
    use_reranking: bool | None = None


_retrieval_config = RetrievalConfig()
_llm = create_json_chat_model()
_embedder = _create_embedder()
_store = InMemoryDocumentStore(
    vector_weight=_retrieval_config.vector_weight,
    keyword_weight=_retrieval_config.keyword_weight,
)
_glossary_store = InMemoryGlossaryStore()

_embedding_generator = EmbeddingGenerator(_embedder, _store, EmbeddingConfig())
_ingest_pipeline = IngestPipeline(
    SemanticChunker(ChunkingConfig()),
    _store,
    _embedding_generator,
    create_glossary_extractor(_glossary_store),
)

_reranker: Reranker = (
    LLMReranker(_llm, skip_threshold=_retrieval_config.rerank_skip_threshold)
    if _llm is not None
    else KeywordOverlapReranker()
)
_pipeline = RetrievalPipeline(
    HybridSearcher(_store, _embedder, _retrieval_config),
    _store,
    expander=QueryExpander(_llm) if _llm is not None else None,
    reranker=_reranker,
    config=_retrieval_config,
)
_trace_store = TraceStore()


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    yield
    await _ingest_pipeline.drain()


app = FastAPI(title="Context Retrieval Service", version="0.1.0", lifespan=lifespan)


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": _llm is not None,
        "embedder": type(_embedder).__name__,
        "reranker": type(_reranker).__name__,
        "trace_count": len(_trace_store),
    }


@app.post("/ingest")
async def ingest(request: IngestRequest) -> dict[str, Any]:
    document_id = request.document_id or str(uuid.uuid4())
    sections = [
        Section(content=s.content, header=s.header, page_number=s.page_number)
        for s in request.sections
    ]
    try:
        report = await _ingest_pipeline.ingest_document(
            document_id, request.title, sections, full_text=request.full_text
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return asdict(report)


@app.post("/documents/{document_id}/embeddings")
async def generate_embeddings(document_id: str) -> dict[str, Any]:
    result = await _embedding_generator.generate_embeddings_for_document(document_id)
    return asdict(result)


@app.post("/search")
async def search(request: SearchRequest) -> dict[str, Any]:
    options = RetrievalOptions(
        expand_queries=request.expand_queries,
        use_reranking=request.use_reranking,
        top_k=request.top_k,
        diversity_factor=request.diversity_factor,
    )
    try:
        with Timer() as timer:
            result = await _pipeline.retrieve_context(
                request.query, request.document_ids, options
            )
    except RetrievalTimeoutError as exc:
        raise HTTPException(status_code=504, detail=str(exc)) from exc
    except RetrievalError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    record = _trace_store.create_record(
        query=request.query, result=result, latency_ms=timer.elapsed_ms
    )

    if result.is_empty:
        system_prompt, confidence = build_empty_context_prompt(), 0
    else:
        prompt = build_rag_prompt(result.chunks)
        system_prompt, confidence = prompt.system_prompt, prompt.confidence

    return {
        "chunks": [asdict(chunk) for chunk in result.chunks],
        "query_variants": result.query_variants,
        "total_candidates": result.total_candidates,
        "has_context": not result.is_empty,
        "system_prompt": system_prompt,
        "confidence": confidence,
        "follow_ups": follow_up_suggestions(result.chunks),
        "trace_id": record.trace_id,
    }


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
