"""Process-wide HTTP connection pool shared by remote backends."""

from __future__ import annotations

import httpx

from rag_orchestrator.observability.logger import get_logger

logger = get_logger("http_pool")


class HTTPClientPool:
    """Owns one ``httpx.AsyncClient``; safe for concurrent use by many invocations.

    Connections are acquired per request and returned to the pool when the
    request completes or is cancelled.
    """

    def __init__(
        self,
        max_connections: int = 100,
        max_keepalive_connections: int = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive_connections,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            # Per-call timeouts belong to the RetryPolicy, not the pool.
            self._client = httpx.AsyncClient(
                limits=self._limits, timeout=None, transport=self._transport
            )
            logger.debug("http_pool_opened", max_connections=self._limits.max_connections)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            logger.debug("http_pool_closed")
        self._client = None

    async def __aenter__(self) -> HTTPClientPool:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
