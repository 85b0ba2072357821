"""Fan-out retrieval across backends with merge, filtering and MMR diversification."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from rag_orchestrator.exceptions import BackendUnavailable, ConfigurationError, InvalidQuery
from rag_orchestrator.models.domain import Document, Query, RetrievalResult
from rag_orchestrator.observability.logger import get_logger
from rag_orchestrator.observability.metrics import log_retrieval_metrics
from rag_orchestrator.protocols.embedder import Embedder
from rag_orchestrator.protocols.retriever import RetrieverBackend
from rag_orchestrator.resilience.policy import RetryPolicy
from rag_orchestrator.resilience.wrapper import ResilienceWrapper
from rag_orchestrator.retrieval.filters import apply_filters, validate_filters
from rag_orchestrator.retrieval.mmr import (
    cosine_similarity_matrix,
    lexical_similarity_matrix,
    mmr_select,
)
from rag_orchestrator.retrieval.rrf import merge_max_score, reciprocal_rank_fusion

logger = get_logger("orchestrator")

MERGE_STRATEGIES = ("max_score", "rrf")


class RetrievalOrchestrator:
    def __init__(
        self,
        backends: Sequence[RetrieverBackend],
        embedder: Embedder | None = None,
        fetch_multiplier: int = 4,
        mmr_lambda: float = 0.5,
        merge_strategy: str = "max_score",
        rrf_k: int = 60,
        embed_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not backends:
            raise ConfigurationError("RetrievalOrchestrator needs at least one backend")
        if fetch_multiplier < 1:
            raise ConfigurationError("fetch_multiplier must be >= 1")
        if not 0.0 <= mmr_lambda <= 1.0:
            raise ConfigurationError("mmr_lambda must be within [0, 1]")
        if merge_strategy not in MERGE_STRATEGIES:
            raise ConfigurationError(f"Unknown merge strategy {merge_strategy!r}")
        self._backends = list(backends)
        self._embedder = embedder
        self._fetch_multiplier = fetch_multiplier
        self._mmr_lambda = mmr_lambda
        self._merge_strategy = merge_strategy
        self._rrf_k = rrf_k
        self._embed_wrapper = ResilienceWrapper(embed_policy, sleep=sleep, name="embed")

    @property
    def backend_names(self) -> list[str]:
        return [b.name for b in self._backends]

    async def retrieve(
        self,
        query: Query,
        k: int,
        *,
        diversify: bool = False,
        mmr_lambda: float | None = None,
    ) -> RetrievalResult:
        self._validate(query, k, mmr_lambda)
        lambda_mult = self._mmr_lambda if mmr_lambda is None else mmr_lambda

        embed_error = None
        if self._embedder is not None and query.embedding is None:
            query, embed_error = await self._embed_query(query)

        fetch_k = k * self._fetch_multiplier if diversify else k
        outcomes = await asyncio.gather(
            *(backend.search(query, fetch_k) for backend in self._backends),
            return_exceptions=True,
        )

        result_lists: list[list[Document]] = []
        errors: dict[str, BaseException] = {}
        for backend, outcome in zip(self._backends, outcomes):
            if isinstance(outcome, BaseException):
                errors[backend.name] = outcome
            else:
                result_lists.append(list(outcome))

        if not result_lists:
            last = list(errors.values())[-1]
            if embed_error is not None:
                errors["embedder"] = embed_error
            logger.error(
                "all_backends_failed",
                backends=list(errors),
                errors={name: repr(e) for name, e in errors.items()},
            )
            raise BackendUnavailable(
                f"All {len(errors)} retrieval backends failed", errors=errors
            ) from last

        if errors:
            logger.warning(
                "partial_backend_failure",
                failed=list(errors),
                succeeded=len(result_lists),
                errors={name: repr(e) for name, e in errors.items()},
            )

        if self._merge_strategy == "rrf":
            merged = reciprocal_rank_fusion(result_lists, k=self._rrf_k)
        else:
            merged = merge_max_score(result_lists)

        candidates = apply_filters(merged, query.filters)

        if diversify and len(candidates) > 1:
            similarity = await self._similarity(candidates)
            selected = mmr_select(candidates, k, lambda_mult, similarity=similarity)
        else:
            selected = candidates[:k]

        log_retrieval_metrics(
            fetched=sum(len(r) for r in result_lists),
            merged=len(merged),
            filtered=len(candidates),
            returned=len(selected),
            failed_backends=len(errors),
            diversified=diversify,
        )
        return RetrievalResult.of(selected)

    async def _embed_query(self, query: Query) -> tuple[Query, Exception | None]:
        """Embed under the retry policy; on failure the query goes out without a vector."""
        embedder = self._embedder
        text = query.text
        try:
            vector = await self._embed_wrapper.call(lambda: embedder.embed_query(text))
        except Exception as e:
            # Sparse backends still answer; dense ones embed for themselves or fail alone.
            logger.warning(
                "partial_backend_failure",
                failed=["embedder"],
                kind=str(getattr(e, "kind", type(e).__name__)),
                error=str(e),
            )
            return query, e
        return query.with_embedding(vector), None

    async def _similarity(self, candidates: list[Document]):
        if self._embedder is not None:
            embedder = self._embedder
            texts = [d.content for d in candidates]
            try:
                embeddings = await self._embed_wrapper.call(lambda: embedder.embed_texts(texts))
            except Exception as e:
                logger.warning(
                    "similarity_embedding_failed",
                    kind=str(getattr(e, "kind", type(e).__name__)),
                    error=str(e),
                    fallback="lexical",
                )
            else:
                return cosine_similarity_matrix(embeddings)
        return await asyncio.to_thread(lexical_similarity_matrix, candidates)

    @staticmethod
    def _validate(query: Query, k: int, mmr_lambda: float | None) -> None:
        if isinstance(k, bool) or not isinstance(k, int) or k <= 0:
            raise InvalidQuery(f"k must be a positive integer, got {k!r}")
        if query.embedding is None and not (query.text or "").strip():
            raise InvalidQuery("Query text is empty and no embedding was supplied")
        if query.embedding is not None and len(query.embedding) == 0:
            raise InvalidQuery("Query embedding is empty")
        if mmr_lambda is not None and not 0.0 <= mmr_lambda <= 1.0:
            raise InvalidQuery(f"mmr_lambda must be within [0, 1], got {mmr_lambda}")
        validate_filters(query.filters)
