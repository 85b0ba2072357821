"""Retry-with-backoff and ordered fallback around remote calls."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Any, TypeVar

from rag_orchestrator.exceptions import TransientNetworkError
from rag_orchestrator.observability.logger import get_logger
from rag_orchestrator.resilience.policy import RetryPolicy

logger = get_logger("resilience")

T = TypeVar("T")
Operation = Callable[[], Awaitable[T]]
StreamFactory = Callable[[], AsyncIterator[str]]

_END = object()


async def _next_fragment(iterator: AsyncIterator[str]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


async def _aclose(iterator: Any) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()


class ResilienceWrapper:
    """Runs an operation under a RetryPolicy, then each fallback in order.

    Every operation gets its own budget of ``policy.max_attempts`` calls.
    Errors whose kind is not retryable propagate at once and never trigger
    a fallback.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str = "operation",
    ) -> None:
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._name = name

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def call(self, operation: Operation[T], fallbacks: Sequence[Operation[T]] = ()) -> T:
        for position, op in enumerate([operation, *fallbacks][:-1]):
            try:
                return await self._with_retries(op, position)
            except Exception as e:
                if not self._policy.is_retryable(e):
                    raise
                self._log_fallback(position, e)
        # The last operation in the chain has no fallback; its failure propagates.
        last = fallbacks[-1] if fallbacks else operation
        return await self._with_retries(last, len(fallbacks))

    async def stream(
        self, factory: StreamFactory, fallbacks: Sequence[StreamFactory] = ()
    ) -> AsyncIterator[str]:
        """Yield fragments from the first stream that produces one.

        Retries and fallbacks only apply until the first fragment arrives;
        a failure after that propagates, since a stream cannot be restarted.
        """
        chain = [factory, *fallbacks]
        for position, make in enumerate(chain):
            for attempt in range(self._policy.max_attempts):
                iterator = make().__aiter__()
                try:
                    first = await self._invoke(lambda: _next_fragment(iterator))
                except Exception as e:
                    await _aclose(iterator)
                    if not self._policy.is_retryable(e):
                        raise
                    if attempt + 1 < self._policy.max_attempts:
                        await self._pause(attempt, e, position)
                        continue
                    if position + 1 == len(chain):
                        raise
                    self._log_fallback(position, e)
                    break

                try:
                    fragment = first
                    while fragment is not _END:
                        yield fragment
                        fragment = await self._invoke(lambda: _next_fragment(iterator))
                finally:
                    await _aclose(iterator)
                return

    def _log_fallback(self, position: int, error: Exception) -> None:
        logger.warning(
            "fallback_engaged",
            operation=self._name,
            failed_position=position,
            next_position=position + 1,
            error=str(error),
        )

    async def _with_retries(self, op: Operation[T], position: int) -> T:
        attempt = 0
        while True:
            try:
                result = await self._invoke(op)
            except Exception as e:
                if not self._policy.is_retryable(e) or attempt + 1 >= self._policy.max_attempts:
                    if attempt > 0:
                        logger.warning(
                            "retries_exhausted",
                            operation=self._name,
                            position=position,
                            attempts=attempt + 1,
                            error=str(e),
                        )
                    raise
                await self._pause(attempt, e, position)
                attempt += 1
                continue
            if attempt > 0:
                logger.info(
                    "recovered_after_retry",
                    operation=self._name,
                    position=position,
                    attempts=attempt + 1,
                )
            return result

    async def _invoke(self, op: Operation[T]) -> T:
        timeout = self._policy.timeout
        try:
            if timeout is None:
                return await op()
            return await asyncio.wait_for(op(), timeout)
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(f"{self._name} timed out after {timeout}s") from e

    async def _pause(self, attempt: int, error: Exception, position: int) -> None:
        delay = self._policy.backoff(attempt, getattr(error, "retry_after", None))
        logger.info(
            "retry_scheduled",
            operation=self._name,
            position=position,
            attempt=attempt + 1,
            max_attempts=self._policy.max_attempts,
            wait_s=round(delay, 3),
            error_kind=str(getattr(error, "kind", type(error).__name__)),
        )
        await self._sleep(delay)
