"""Per-invocation trace id and timed stages."""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from uuid import uuid4

import structlog

from rag_orchestrator.observability.metrics import log_latency


@dataclass
class Span:
    name: str
    offset_ms: float
    duration_ms: float = 0.0
    error: str | None = None
    attributes: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        record = {
            "name": self.name,
            "offset_ms": round(self.offset_ms, 2),
            "duration_ms": round(self.duration_ms, 2),
            **self.attributes,
        }
        if self.error is not None:
            record["error"] = self.error
        return record


class TraceContext:
    """Collects spans for one pipeline invocation.

    A span that exits with an exception is recorded with the exception's
    error kind (or class name) and the exception propagates unchanged.
    """

    def __init__(self, trace_id: str | None = None) -> None:
        self.trace_id = trace_id or uuid4().hex
        self.spans: list[Span] = []
        self._origin = time.perf_counter()

    def _now_ms(self) -> float:
        return (time.perf_counter() - self._origin) * 1000

    @contextmanager
    def span(self, name: str, **attributes) -> Iterator[Span]:
        s = Span(name=name, offset_ms=self._now_ms(), attributes=attributes)
        try:
            yield s
        except Exception as e:
            s.error = str(getattr(e, "kind", type(e).__name__))
            raise
        finally:
            s.duration_ms = self._now_ms() - s.offset_ms
            self.spans.append(s)
            log_latency(self.trace_id, name, s.duration_ms)

    @contextmanager
    def bound(self) -> Iterator[TraceContext]:
        """Bind the trace id into structlog context vars for the enclosed block."""
        with structlog.contextvars.bound_contextvars(trace_id=self.trace_id):
            yield self

    @property
    def elapsed_ms(self) -> float:
        return self._now_ms()

    def summary(self) -> list[dict]:
        return [s.as_dict() for s in self.spans]
