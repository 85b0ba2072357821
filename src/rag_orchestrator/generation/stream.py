"""Single-consumer stream of generated text fragments."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING

from rag_orchestrator.observability.logger import get_logger

if TYPE_CHECKING:
    from rag_orchestrator.models.domain import RetrievalResult

logger = get_logger("stream")


class GenerationStream:
    """Finite, non-restartable async iterator over text fragments.

    End of stream is signalled by ``StopAsyncIteration``. Once exhausted or
    closed, further iteration yields nothing. ``aclose()`` (or leaving an
    ``async with`` block) cancels generation and closes the underlying
    network stream; cancelling is not an error.
    """

    def __init__(
        self,
        source: AsyncIterator[str],
        on_complete: Callable[[GenerationStream], None] | None = None,
        documents: RetrievalResult | None = None,
        trace_id: str | None = None,
    ) -> None:
        self._source = source
        self.documents = documents
        self.trace_id = trace_id
        self._on_complete = on_complete
        self._fragments: list[str] = []
        self._finished = False
        self._cancelled = False

    def __aiter__(self) -> GenerationStream:
        return self

    async def __anext__(self) -> str:
        if self._finished:
            raise StopAsyncIteration
        try:
            fragment = await self._source.__anext__()
        except StopAsyncIteration:
            await self._finish()
            raise
        except BaseException:
            self._finished = True
            await self._close_source()
            raise
        self._fragments.append(fragment)
        return fragment

    async def aclose(self) -> None:
        if self._finished:
            return
        self._cancelled = True
        await self._close_source()
        self._finished = True
        logger.info("stream_cancelled", fragments=len(self._fragments))

    async def __aenter__(self) -> GenerationStream:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @property
    def text(self) -> str:
        return "".join(self._fragments)

    @property
    def fragments(self) -> list[str]:
        return list(self._fragments)

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def collect(self) -> str:
        async for _ in self:
            pass
        return self.text

    async def _finish(self) -> None:
        self._finished = True
        await self._close_source()
        if self._on_complete is not None:
            self._on_complete(self)

    async def _close_source(self) -> None:
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()
