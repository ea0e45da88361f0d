"""Exceptions surfaced to callers of the retrieval and ingest stages."""

from __future__ import annotations


class RetrievalError(RuntimeError):
    """Retrieval broke; distinct from an empty (successful) result."""


class RetrievalTimeoutError(RetrievalError):
    """The retrieval pipeline exceeded its overall deadline."""


class EmbeddingServiceError(RuntimeError):
    """An embedding request failed after its retry budget was spent."""

    def __init__(self, message: str, *, attempts: int, retryable: bool) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.retryable = retryable
