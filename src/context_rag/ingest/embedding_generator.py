"""Batched embedding generation with classified retry and backoff."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt

from context_rag.config import EmbeddingConfig
from context_rag.errors import EmbeddingServiceError
from context_rag.ingest.embedder import Embedder
from context_rag.retrieval.store import HierarchyStore
from context_rag.types import ChunkToEmbed, EmbeddingRunResult, estimate_tokens

logger = logging.getLogger(__name__)

_RATE_LIMIT_MARKERS = ("rate_limit", "429", "Rate limit")
_TIMEOUT_MARKERS = ("timeout", "ETIMEDOUT", "ECONNRESET")
_RETRYABLE_TYPES: tuple[type[BaseException], ...] = (
    TimeoutError,
    asyncio.TimeoutError,
    ConnectionResetError,
)

ProgressCallback = Callable[[int], None]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryAction:
    retry: bool
    delay_seconds: float = 0.0


def is_rate_limit_error(error: BaseException) -> bool:
    message = str(error)
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def is_timeout_error(error: BaseException) -> bool:
    if isinstance(error, _RETRYABLE_TYPES):
        return True
    message = str(error)
    return any(marker in message for marker in _TIMEOUT_MARKERS)


def next_retry_action(
    error: BaseException, attempt: int, config: EmbeddingConfig
) -> RetryAction:
    """Decide what follows a failed embedding request.

    Args:
        error: The exception raised by the request.
        attempt: 1-based number of the attempt that just failed.
        config: Retry budget and backoff delays.

    Returns:
        `RetryAction(retry=True, delay_seconds=...)` for rate-limit and
        timeout errors while attempts remain, otherwise `RetryAction(False)`.
    """

    if attempt >= config.max_retries:
        return RetryAction(retry=False)
    if not (is_rate_limit_error(error) or is_timeout_error(error)):
        return RetryAction(retry=False)
    delays = config.backoff_delays
    delay = delays[min(attempt - 1, len(delays) - 1)] if delays else 0.0
    return RetryAction(retry=True, delay_seconds=delay)


class EmbeddingGenerator:
    """Embeds chunk text in fixed-size batches and back-fills the store.

    Batches run strictly one after another; retry state lives inside a
    single batch and never crosses into the next one.
    """

    def __init__(
        self,
        embedder: Embedder,
        store: HierarchyStore,
        config: EmbeddingConfig | None = None,
        *,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._embedder = embedder
        self._store = store
        self.config = config or EmbeddingConfig()
        self._sleep = sleep

    async def generate_and_store_embeddings(
        self,
        document_id: str,
        chunks: list[ChunkToEmbed],
        on_progress: ProgressCallback | None = None,
    ) -> EmbeddingRunResult:
        """Embed and store vectors for `chunks`, one service call per batch.

        A request failure fails its whole batch; a store failure fails only
        that chunk. Neither raises: the counts carry partial success.
        """

        processed_count = 0
        failed_count = 0
        total = len(chunks)
        batch_size = self.config.batch_size

        for start in range(0, total, batch_size):
            batch = chunks[start : start + batch_size]
            try:
                embeddings = await self._embed_with_retry([chunk.content for chunk in batch])
            except EmbeddingServiceError as exc:
                logger.error(
                    "Batch embedding failed for document %s at index %d after %d attempt(s): %s",
                    document_id,
                    start,
                    exc.attempts,
                    exc,
                )
                failed_count += len(batch)
            else:
                for chunk, embedding in zip(batch, embeddings, strict=True):
                    try:
                        await self._store.update_embedding(
                            chunk.id, embedding, estimate_tokens(chunk.content)
                        )
                    except Exception as exc:
                        logger.error("Failed to store embedding for chunk %s: %s", chunk.id, exc)
                        failed_count += 1
                    else:
                        processed_count += 1

            if on_progress is not None:
                on_progress(math.floor((start + len(batch)) / total * 100 + 0.5))

        return EmbeddingRunResult(
            success=failed_count == 0,
            processed_count=processed_count,
            failed_count=failed_count,
        )

    async def generate_embeddings_for_document(self, document_id: str) -> EmbeddingRunResult:
        """Embed every chunk-level node of a document that still lacks a vector."""

        try:
            chunks = await self._store.list_chunks_missing_embeddings(document_id)
        except Exception as exc:
            logger.error("Failed to fetch chunks for document %s: %s", document_id, exc)
            return EmbeddingRunResult(success=False, processed_count=0, failed_count=0)

        if not chunks:
            return EmbeddingRunResult(success=True, processed_count=0, failed_count=0)

        def log_progress(progress: int) -> None:
            logger.info("Embedding progress for %s: %d%%", document_id, progress)

        return await self.generate_and_store_embeddings(document_id, chunks, log_progress)

    async def _embed_with_retry(self, texts: list[str]) -> list[list[float]]:
        retrying = AsyncRetrying(
            retry=self._should_retry,
            wait=self._retry_delay,
            stop=stop_after_attempt(self.config.max_retries),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        attempts = 0
        try:
            async for attempt in retrying:
                attempts = attempt.retry_state.attempt_number
                with attempt:
                    embeddings = await self._embedder.embed_documents(texts)
        except Exception as exc:
            retryable = is_rate_limit_error(exc) or is_timeout_error(exc)
            raise EmbeddingServiceError(str(exc), attempts=attempts, retryable=retryable) from exc

        if len(embeddings) != len(texts):
            raise EmbeddingServiceError(
                f"Expected {len(texts)} embeddings, received {len(embeddings)}",
                attempts=attempts,
                retryable=False,
            )
        return embeddings

    def _action(self, state: RetryCallState) -> RetryAction:
        if state.outcome is None or not state.outcome.failed:
            return RetryAction(retry=False)
        return next_retry_action(state.outcome.exception(), state.attempt_number, self.config)

    def _should_retry(self, state: RetryCallState) -> bool:
        return self._action(state).retry

    def _retry_delay(self, state: RetryCallState) -> float:
        return self._action(state).delay_seconds

    def _log_retry(self, state: RetryCallState) -> None:
        logger.info(
            "Retry attempt %d after %.1fs",
            state.attempt_number,
            self._retry_delay(state),
        )
