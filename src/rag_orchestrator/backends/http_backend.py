"""Remote retriever backend speaking a JSON search API over the shared HTTP pool.

Wire format is defined by ``models/schemas.py``: a ``SearchRequest`` body is
POSTed and a ``SearchResponse`` is expected back.
"""

from __future__ import annotations

from collections.abc import Mapping

import httpx
from pydantic import ValidationError

from rag_orchestrator.exceptions import (
    AuthenticationFailed,
    InvalidRequest,
    RAGOrchestratorError,
    RateLimited,
    TransientNetworkError,
)
from rag_orchestrator.models.domain import Document, Query, RetrievalResult
from rag_orchestrator.models.schemas import SearchRequest, SearchResponse
from rag_orchestrator.observability.logger import get_logger
from rag_orchestrator.transport.http_pool import HTTPClientPool

logger = get_logger("http_backend")


def _parse_retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value:
        try:
            return float(value)
        except ValueError:
            return None
    return None


def map_status(response: httpx.Response, backend: str) -> RAGOrchestratorError | None:
    status = response.status_code
    if response.is_success:
        return None
    detail = response.text[:200]
    if status == 429:
        return RateLimited(f"{backend} rate limited", retry_after=_parse_retry_after(response))
    if status in (401, 403):
        return AuthenticationFailed(f"{backend} rejected credentials ({status})")
    if status == 408 or status >= 500:
        return TransientNetworkError(f"{backend} returned {status}: {detail}")
    return InvalidRequest(f"{backend} rejected request ({status}): {detail}")


def _serializable_filters(filters: Mapping | None) -> dict | None:
    if not filters:
        return None
    # Predicates cannot cross the wire; the orchestrator still applies them locally.
    out = {
        key: dict(spec) if isinstance(spec, Mapping) else spec
        for key, spec in filters.items()
        if not callable(spec)
    }
    return out or None


class HTTPRetrieverBackend:
    def __init__(
        self,
        url: str,
        pool: HTTPClientPool,
        api_key: str = "",
        name: str = "http",
    ) -> None:
        self._url = url
        self._pool = pool
        self._api_key = api_key
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def search(self, query: Query, k: int) -> RetrievalResult:
        body = SearchRequest(
            query=query.text,
            k=k,
            embedding=list(query.embedding) if query.embedding is not None else None,
            filters=_serializable_filters(query.filters),
        )
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            response = await self._pool.client.post(
                self._url, json=body.model_dump(exclude_none=True), headers=headers
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"{self._name} timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{self._name} connection error: {e}") from e

        error = map_status(response, self._name)
        if error is not None:
            logger.warning("remote_search_failed", backend=self._name, status=response.status_code)
            raise error

        try:
            parsed = SearchResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise TransientNetworkError(f"{self._name} returned a malformed body: {e}") from e

        seen: set[str] = set()
        documents = []
        for hit in parsed.results:
            doc_id = str(hit.id)
            if doc_id in seen:
                continue
            seen.add(doc_id)
            documents.append(
                Document(content=hit.content, id=doc_id, metadata=hit.metadata or {}, score=hit.score)
            )
        return RetrievalResult.of(documents[:k])
