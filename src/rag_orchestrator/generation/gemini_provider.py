"""Google Gemini generation client using the google-genai SDK."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import httpx
from google import genai
from google.genai import errors, types

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

logger = get_logger("gemini")


def map_gemini_error(e: Exception) -> RAGOrchestratorError:
    if isinstance(e, errors.APIError):
        code = getattr(e, "code", None) or 0
        if code == 429:
            return RateLimited(f"Gemini rate limited: {e}")
        if code in (401, 403):
            return AuthenticationFailed(f"Gemini rejected credentials: {e}")
        if 400 <= code < 500 and code != 408:
            return InvalidRequest(f"Gemini rejected request: {e}")
        return TransientNetworkError(f"Gemini server error: {e}")
    if isinstance(
        e, (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError, ConnectionError)
    ):
        return TransientNetworkError(f"Gemini network error: {e}")
    # Anything else is a local or SDK usage fault; retrying cannot fix it.
    return InvalidRequest(f"Gemini call failed: {e!r}")


class GeminiProvider:
    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        temperature: float = 0.1,
        max_tokens: int = 4096,
    ) -> None:
        self._client = genai.Client(api_key=api_key)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def name(self) -> str:
        return f"gemini:{self._model}"

    def _config(self, request: GenerationRequest) -> types.GenerateContentConfig:
        config = types.GenerateContentConfig(
            temperature=self._temperature,
            max_output_tokens=self._max_tokens,
        )
        if request.system_instructions:
            config.system_instruction = request.system_instructions
        return config

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        try:
            response = await self._client.aio.models.generate_content(
                model=self._model,
                contents=request.render_prompt(),
                config=self._config(request),
            )
        except Exception as e:
            raise map_gemini_error(e) from e
        text = response.text or ""
        logger.debug("gemini_generated", model=self._model, answer_len=len(text))
        return GenerationResponse(text=text, model=self._model)

    async def generate_stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        try:
            stream = await self._client.aio.models.generate_content_stream(
                model=self._model,
                contents=request.render_prompt(),
                config=self._config(request),
            )
        except Exception as e:
            raise map_gemini_error(e) from e
        try:
            async for chunk in stream:
                if chunk.text:
                    yield chunk.text
        except Exception as e:
            raise map_gemini_error(e) from e
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    def count_tokens(self, text: str) -> int:
        return count_tokens(text)
