"""Retry policy: attempt budget, exponential backoff with jitter, retryable kinds."""

from __future__ import annotations

import random
from dataclasses import dataclass, field

from rag_orchestrator.exceptions import ErrorKind

DEFAULT_RETRYABLE = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT_NETWORK})


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_backoff: float = 0.5
    max_backoff: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.1
    timeout: float | None = None  # per attempt, seconds
    retryable: frozenset[ErrorKind] = field(default_factory=lambda: DEFAULT_RETRYABLE)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")

    def is_retryable(self, error: BaseException) -> bool:
        kind = getattr(error, "kind", None)
        return kind in self.retryable

    def backoff(self, attempt: int, retry_after: float | None = None) -> float:
        """Delay before the retry following ``attempt`` (0-based)."""
        if retry_after is not None:
            return min(retry_after, self.max_backoff)
        delay = min(self.initial_backoff * (self.multiplier**attempt), self.max_backoff)
        return delay + delay * self.jitter * random.random()
