"""OpenAI chat-completions generation client."""

from __future__ import annotations

from collections.abc import AsyncIterator

import openai
from openai import AsyncOpenAI

from rag_orchestrator.exceptions import (
    AuthenticationFailed,
    InvalidRequest,
    RAGOrchestratorError,
    RateLimited,
    TransientNetworkError,
)
from rag_orchestrator.generation.tokens import count_tokens
from rag_orchestrator.models.domain import GenerationRequest, GenerationResponse
from rag_orchestrator.observability.logger import get_logger

logger = get_logger("openai_chat")


def _retry_after(e: openai.APIStatusError) -> float | None:
    value = e.response.headers.get("retry-after") if e.response is not None else None
    try:
        return float(value) if value else None
    except ValueError:
        return None


def map_openai_error(e: Exception) -> RAGOrchestratorError:
    """Translate openai SDK exceptions into the orchestrator taxonomy."""
    if isinstance(e, openai.RateLimitError):
        return RateLimited(f"OpenAI rate limited: {e}", retry_after=_retry_after(e))
    if isinstance(e, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthenticationFailed(f"OpenAI rejected credentials: {e}")
    if isinstance(e, (openai.APITimeoutError, openai.APIConnectionError)):
        return TransientNetworkError(f"OpenAI network error: {e}")
    if isinstance(e, openai.InternalServerError):
        return TransientNetworkError(f"OpenAI server error: {e}")
    if isinstance(e, openai.APIStatusError) and e.status_code < 500:
        return InvalidRequest(f"OpenAI rejected request: {e}")
    # Anything else is a local or SDK usage fault; retrying cannot fix it.
    return InvalidRequest(f"OpenAI call failed: {e!r}")


class OpenAIChatProvider:
    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.1,
        max_tokens: int = 4096,
        client: AsyncOpenAI | None = None,
    ) -> None:
        # SDK-level retries are disabled; the ResilienceWrapper owns retry policy.
        self._client = client or AsyncOpenAI(api_key=api_key, max_retries=0)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def name(self) -> str:
        return f"openai:{self._model}"

    def _messages(self, request: GenerationRequest) -> list[dict]:
        messages = []
        if request.system_instructions:
            messages.append({"role": "system", "content": request.system_instructions})
        messages.append({"role": "user", "content": request.render_prompt()})
        return messages

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        try:
            completion = await self._client.chat.completions.create(
                model=self._model,
                messages=self._messages(request),
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except Exception as e:
            raise map_openai_error(e) from e
        text = completion.choices[0].message.content if completion.choices else ""
        logger.debug("openai_generated", model=self._model, answer_len=len(text or ""))
        return GenerationResponse(text=text or "", model=self._model)

    async def generate_stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        try:
            stream = await self._client.chat.completions.create(
                model=self._model,
                messages=self._messages(request),
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                stream=True,
            )
        except Exception as e:
            raise map_openai_error(e) from e
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except Exception as e:
            raise map_openai_error(e) from e
        finally:
            await stream.close()

    def count_tokens(self, text: str) -> int:
        return count_tokens(text)
