import asyncio

import pytest

from context_rag.config import EmbeddingConfig
from context_rag.errors import EmbeddingServiceError
from context_rag.ingest.embedder import Embedder
from context_rag.ingest.embedding_generator import (
    EmbeddingGenerator,
    RetryAction,
    next_retry_action,
)
from context_rag.types import ChunkToEmbed


class ScriptedEmbedder(Embedder):
    """Raises the error scripted for a given call number (0-based)."""

    def __init__(self, failures: dict[int, Exception] | None = None) -> None:
        self.failures = dict(failures or {})
        self.calls: list[list[str]] = []

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        call_number = len(self.calls)
        self.calls.append(list(texts))
        if call_number in self.failures:
            raise self.failures[call_number]
        return [[float(len(text)), 1.0] for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        return [float(len(text)), 1.0]


class RecordingStore:
    def __init__(self, chunks: list[ChunkToEmbed] | None = None, fail_ids=()) -> None:
        self.chunks = list(chunks or [])
        self.fail_ids = set(fail_ids)
        self.stored: dict[str, list[float]] = {}
        self.update_calls: list[str] = []

    async def list_chunks_missing_embeddings(self, document_id: str) -> list[ChunkToEmbed]:
        return [chunk for chunk in self.chunks if chunk.id not in self.stored]

    async def update_embedding(self, chunk_id: str, embedding: list[float], token_count: int) -> None:
        self.update_calls.append(chunk_id)
        if chunk_id in self.fail_ids:
            raise RuntimeError("write rejected")
        self.stored[chunk_id] = embedding


class BrokenListingStore(RecordingStore):
    async def list_chunks_missing_embeddings(self, document_id: str) -> list[ChunkToEmbed]:
        raise ConnectionError("database unavailable")


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _chunks(count: int) -> list[ChunkToEmbed]:
    return [ChunkToEmbed(id=f"chunk-{i}", content=f"chunk text {i}") for i in range(count)]


@pytest.mark.parametrize(
    ("error", "attempt", "expected"),
    [
        (RuntimeError("429 Too Many Requests"), 1, RetryAction(retry=True, delay_seconds=1.0)),
        (RuntimeError("rate_limit_exceeded"), 2, RetryAction(retry=True, delay_seconds=5.0)),
        (RuntimeError("Rate limit reached"), 3, RetryAction(retry=False)),
        (RuntimeError("request timeout"), 1, RetryAction(retry=True, delay_seconds=1.0)),
        (RuntimeError("read ECONNRESET"), 2, RetryAction(retry=True, delay_seconds=5.0)),
        (asyncio.TimeoutError(), 1, RetryAction(retry=True, delay_seconds=1.0)),
        (ValueError("invalid input"), 1, RetryAction(retry=False)),
    ],
)
def test_retry_policy(error: Exception, attempt: int, expected: RetryAction) -> None:
    assert next_retry_action(error, attempt, EmbeddingConfig()) == expected


@pytest.mark.asyncio
async def test_batches_and_progress() -> None:
    embedder = ScriptedEmbedder()
    store = RecordingStore()
    generator = EmbeddingGenerator(embedder, store, EmbeddingConfig(batch_size=100))
    progress: list[int] = []

    result = await generator.generate_and_store_embeddings("doc-1", _chunks(150), progress.append)

    assert [len(call) for call in embedder.calls] == [100, 50]
    assert progress == [67, 100]
    assert result.success is True
    assert result.processed_count == 150
    assert result.failed_count == 0
    assert len(store.stored) == 150


@pytest.mark.asyncio
async def test_rate_limited_batch_is_retried_with_backoff() -> None:
    # Second batch hits the rate limit twice before succeeding.
    rate_limited = RuntimeError("Error code: 429 - rate_limit_exceeded")
    embedder = ScriptedEmbedder(failures={1: rate_limited, 2: rate_limited})
    store = RecordingStore()
    sleep = SleepRecorder()
    generator = EmbeddingGenerator(embedder, store, EmbeddingConfig(), sleep=sleep)

    result = await generator.generate_and_store_embeddings("doc-1", _chunks(150))

    assert len(embedder.calls) == 4
    assert sleep.delays == [1.0, 5.0]
    assert result.processed_count == 150
    assert result.failed_count == 0
    assert len(store.update_calls) == len(set(store.update_calls)) == 150


@pytest.mark.asyncio
async def test_non_retryable_failure_fails_whole_batch_only() -> None:
    embedder = ScriptedEmbedder(failures={0: ValueError("invalid input")})
    store = RecordingStore()
    sleep = SleepRecorder()
    generator = EmbeddingGenerator(embedder, store, EmbeddingConfig(batch_size=100), sleep=sleep)

    result = await generator.generate_and_store_embeddings("doc-1", _chunks(150))

    assert len(embedder.calls) == 2
    assert sleep.delays == []
    assert result.success is False
    assert result.failed_count == 100
    assert result.processed_count == 50
    assert not any(chunk_id in store.stored for chunk_id in (f"chunk-{i}" for i in range(100)))


@pytest.mark.asyncio
async def test_exhausted_retries_count_batch_as_failed() -> None:
    timeout = RuntimeError("request timeout")
    embedder = ScriptedEmbedder(failures={0: timeout, 1: timeout, 2: timeout})
    sleep = SleepRecorder()
    generator = EmbeddingGenerator(embedder, RecordingStore(), EmbeddingConfig(), sleep=sleep)

    result = await generator.generate_and_store_embeddings("doc-1", _chunks(10))

    assert len(embedder.calls) == 3
    assert sleep.delays == [1.0, 5.0]
    assert result.success is False
    assert result.failed_count == 10
    assert result.processed_count == 0


@pytest.mark.asyncio
async def test_embed_with_retry_reports_attempts() -> None:
    embedder = ScriptedEmbedder(
        failures={0: RuntimeError("429"), 1: ValueError("bad payload")}
    )
    generator = EmbeddingGenerator(embedder, RecordingStore(), sleep=SleepRecorder())

    with pytest.raises(EmbeddingServiceError) as exc_info:
        await generator._embed_with_retry(["text"])

    assert exc_info.value.attempts == 2
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_store_failure_only_fails_that_chunk() -> None:
    store = RecordingStore(fail_ids={"chunk-3"})
    generator = EmbeddingGenerator(ScriptedEmbedder(), store)

    result = await generator.generate_and_store_embeddings("doc-1", _chunks(5))

    assert result.success is False
    assert result.processed_count == 4
    assert result.failed_count == 1
    assert "chunk-3" not in store.stored


@pytest.mark.asyncio
async def test_document_embedding_is_idempotent() -> None:
    embedder = ScriptedEmbedder()
    store = RecordingStore(chunks=_chunks(3))
    generator = EmbeddingGenerator(embedder, store)

    first = await generator.generate_embeddings_for_document("doc-1")
    second = await generator.generate_embeddings_for_document("doc-1")

    assert (first.success, first.processed_count, first.failed_count) == (True, 3, 0)
    assert (second.success, second.processed_count, second.failed_count) == (True, 0, 0)
    assert len(embedder.calls) == 1


@pytest.mark.asyncio
async def test_listing_failure_returns_unsuccessful_result() -> None:
    embedder = ScriptedEmbedder()
    generator = EmbeddingGenerator(embedder, BrokenListingStore())

    result = await generator.generate_embeddings_for_document("doc-1")

    assert (result.success, result.processed_count, result.failed_count) == (False, 0, 0)
    assert embedder.calls == []
