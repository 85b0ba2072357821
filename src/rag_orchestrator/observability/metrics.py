"""Metric recording helpers."""

from __future__ import annotations

from rag_orchestrator.observability.logger import get_logger

logger = get_logger("metrics")


def log_retrieval_metrics(
    fetched: int,
    merged: int,
    filtered: int,
    returned: int,
    failed_backends: int,
    diversified: bool,
) -> None:
    logger.info(
        "retrieval_metrics",
        fetched=fetched,
        merged=merged,
        filtered=filtered,
        returned=returned,
        failed_backends=failed_backends,
        diversified=diversified,
    )


def log_generation_metrics(
    model: str | None,
    context_len: int,
    answer_len: int,
    streamed: bool,
    fragments: int | None = None,
) -> None:
    logger.info(
        "generation_metrics",
        model=model,
        context_len=context_len,
        answer_len=answer_len,
        streamed=streamed,
        fragments=fragments,
    )


def log_latency(trace_id: str, stage: str, duration_ms: float) -> None:
    logger.info(
        "latency",
        trace_id=trace_id,
        stage=stage,
        duration_ms=round(duration_ms, 2),
    )
