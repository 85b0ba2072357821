"""Protocol for generation clients."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol

from rag_orchestrator.models.domain import GenerationRequest, GenerationResponse


class GenerationClient(Protocol):
    @property
    def name(self) -> str: ...

    async def generate(self, request: GenerationRequest) -> GenerationResponse: ...

    def generate_stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Finite, non-restartable sequence of text fragments."""
        ...

    def count_tokens(self, text: str) -> int: ...
