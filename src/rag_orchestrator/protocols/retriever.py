"""Protocol for retriever backends."""

from __future__ import annotations

from typing import Protocol

from rag_orchestrator.models.domain import Query, RetrievalResult


class RetrieverBackend(Protocol):
    @property
    def name(self) -> str: ...

    async def search(self, query: Query, k: int) -> RetrievalResult:
        """Return at most ``k`` documents, most relevant first."""
        ...
