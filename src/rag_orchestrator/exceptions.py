"""Custom exception hierarchy for the RAG orchestrator."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INVALID_QUERY = "INVALID_QUERY"
    INVALID_REQUEST = "INVALID_REQUEST"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSIENT_NETWORK = "TRANSIENT_NETWORK"
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
    EMBEDDING_FAILED = "EMBEDDING_FAILED"
    CONFIGURATION = "CONFIGURATION"

    def __str__(self) -> str:
        return self.value


class RAGOrchestratorError(Exception):
    """Base exception for all orchestrator errors."""

    kind: ErrorKind = ErrorKind.TRANSIENT_NETWORK


class InvalidQuery(RAGOrchestratorError):
    """Caller supplied a query or k that cannot be served."""

    kind = ErrorKind.INVALID_QUERY


class InvalidRequest(RAGOrchestratorError):
    """A remote service rejected the request as malformed."""

    kind = ErrorKind.INVALID_REQUEST


class AuthenticationFailed(RAGOrchestratorError):
    """Credentials were rejected by a remote service."""

    kind = ErrorKind.AUTHENTICATION_FAILED


class RateLimited(RAGOrchestratorError):
    """A remote service throttled the call."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TransientNetworkError(RAGOrchestratorError):
    """Timeout, dropped connection or server-side failure."""

    kind = ErrorKind.TRANSIENT_NETWORK


class BackendUnavailable(RAGOrchestratorError):
    """Every configured retrieval backend failed."""

    kind = ErrorKind.BACKEND_UNAVAILABLE

    def __init__(self, message: str, errors: dict[str, BaseException] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or {}


class EmbeddingError(RAGOrchestratorError):
    """Error generating embeddings."""

    kind = ErrorKind.EMBEDDING_FAILED


class ConfigurationError(RAGOrchestratorError):
    """Error in system configuration."""

    kind = ErrorKind.CONFIGURATION


class PipelineError(RAGOrchestratorError):
    """Single typed failure surfaced by the pipeline.

    ``stage`` is "retrieval" or "generation"; ``kind`` is the kind of the
    underlying cause, or INVALID_REQUEST for exceptions outside the taxonomy.
    """

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        self.kind = getattr(cause, "kind", ErrorKind.INVALID_REQUEST)
        super().__init__(f"{stage} failed ({self.kind}): {cause}")
