"""OpenAI embeddings client."""

from __future__ import annotations

import openai
from openai import AsyncOpenAI

from rag_orchestrator.exceptions import EmbeddingError
from rag_orchestrator.generation.openai_provider import map_openai_error
from rag_orchestrator.observability.logger import get_logger

logger = get_logger("embeddings")


class OpenAIEmbedder:
    """Embeds in batches of ``batch_size``.

    ``dimensions`` is sent to the API so text-embedding-3 models return
    vectors sized for the index; any other length is an ``EmbeddingError``.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        batch_size: int = 100,
        dimensions: int = 1536,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key, max_retries=0)
        self._model = model
        self._batch_size = batch_size
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def model(self) -> str:
        return self._model

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            vectors.extend(await self._embed_batch(texts[start : start + self._batch_size]))
        logger.info("embedded_texts", count=len(texts), model=self._model)
        return vectors

    async def embed_query(self, query: str) -> list[float]:
        (vector,) = await self._embed_batch([query])
        return vector

    async def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        try:
            response = await self._client.embeddings.create(
                input=batch, model=self._model, dimensions=self._dimensions
            )
        except openai.APIError as e:
            # SDK errors keep their kind so the retry policy can classify them.
            raise map_openai_error(e) from e
        except Exception as e:
            raise EmbeddingError(f"Failed to embed {len(batch)} texts: {e}") from e

        items = sorted(response.data, key=lambda item: item.index)
        if len(items) != len(batch):
            raise EmbeddingError(f"Expected {len(batch)} embeddings, got {len(items)}")
        for item in items:
            if len(item.embedding) != self._dimensions:
                raise EmbeddingError(
                    f"{self._model} returned {len(item.embedding)} dimensions, "
                    f"expected {self._dimensions}"
                )
        return [item.embedding for item in items]
