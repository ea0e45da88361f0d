"""Retrieval tracing and latency accounting."""

from __future__ import annotations

import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone

from context_rag.types import RetrievalResult


@dataclass(slots=True)
class RetrievalTrace:
    trace_id: str
    timestamp_utc: str
    query: str
    query_variants: list[str]
    total_candidates: int
    chunk_ids: list[str]
    top_score: float
    latency_ms: float
    empty: bool


class TraceStore:
    """In-memory trace storage for API-level observability.

    Keeps the most recent `max_records` traces; older ones are evicted and
    drop out of `summary()`.
    """

    def __init__(self, max_records: int = 1000) -> None:
        self.max_records = max_records
        self._records: OrderedDict[str, RetrievalTrace] = OrderedDict()

    def __len__(self) -> int:
        return len(self._records)

    def create_record(
        self,
        *,
        query: str,
        result: RetrievalResult,
        latency_ms: float,
    ) -> RetrievalTrace:
        trace_id = str(uuid.uuid4())
        scores = [
            chunk.rerank_score if chunk.rerank_score is not None else chunk.combined_score
            for chunk in result.chunks
        ]
        record = RetrievalTrace(
            trace_id=trace_id,
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            query=query,
            query_variants=list(result.query_variants),
            total_candidates=result.total_candidates,
            chunk_ids=[chunk.id for chunk in result.chunks],
            top_score=max(scores, default=0.0),
            latency_ms=latency_ms,
            empty=result.is_empty,
        )
        self._records[trace_id] = record
        while len(self._records) > self.max_records:
            self._records.popitem(last=False)
        return record

    def get(self, trace_id: str) -> RetrievalTrace:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[RetrievalTrace]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate core retrieval metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "empty_result_rate": 0.0,
                "avg_total_candidates": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "empty_result_rate": sum(1 for record in records if record.empty) / total,
            "avg_total_candidates": sum(record.total_candidates for record in records) / total,
        }


class Timer:
    """Simple context timer used around retrieval calls."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
