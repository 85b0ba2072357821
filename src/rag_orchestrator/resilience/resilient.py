"""Backends and clients wrapped in a ResilienceWrapper with an ordered fallback chain."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Any

from rag_orchestrator.models.domain import (
    GenerationRequest,
    GenerationResponse,
    Query,
    RetrievalResult,
)
from rag_orchestrator.protocols.llm import GenerationClient
from rag_orchestrator.protocols.retriever import RetrieverBackend
from rag_orchestrator.resilience.policy import RetryPolicy
from rag_orchestrator.resilience.wrapper import ResilienceWrapper


class ResilientRetriever:
    def __init__(
        self,
        primary: RetrieverBackend,
        fallbacks: Sequence[RetrieverBackend] = (),
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._primary = primary
        self._fallbacks = list(fallbacks)
        self._wrapper = ResilienceWrapper(policy, sleep=sleep, name=f"search:{primary.name}")

    @property
    def name(self) -> str:
        return self._primary.name

    async def search(self, query: Query, k: int) -> RetrievalResult:
        return await self._wrapper.call(
            lambda: self._primary.search(query, k),
            [lambda b=b: b.search(query, k) for b in self._fallbacks],
        )


class ResilientGenerationClient:
    def __init__(
        self,
        primary: GenerationClient,
        fallbacks: Sequence[GenerationClient] = (),
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._primary = primary
        self._fallbacks = list(fallbacks)
        self._wrapper = ResilienceWrapper(policy, sleep=sleep, name=f"generate:{primary.name}")

    @property
    def name(self) -> str:
        return self._primary.name

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        return await self._wrapper.call(
            lambda: self._primary.generate(request),
            [lambda c=c: c.generate(request) for c in self._fallbacks],
        )

    def generate_stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        return self._wrapper.stream(
            lambda: self._primary.generate_stream(request),
            [lambda c=c: c.generate_stream(request) for c in self._fallbacks],
        )

    def count_tokens(self, text: str) -> int:
        return self._primary.count_tokens(text)
