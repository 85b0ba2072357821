"""Embedder decorator that serves repeated texts from the SQLite cache."""

from __future__ import annotations

from rag_orchestrator.embeddings.cache import EmbeddingCache
from rag_orchestrator.observability.logger import get_logger
from rag_orchestrator.protocols.embedder import Embedder

logger = get_logger("cached_embedder")


class CachedEmbedder:
    """Cache-first Embedder.

    Keys are namespaced (normally by model name) so several embedding models
    can share one cache file. Cached vectors whose length no longer matches
    ``delegate.dimensions`` are treated as misses and overwritten. Duplicate
    texts within one batch reach the delegate once.
    """

    def __init__(self, delegate: Embedder, cache: EmbeddingCache, namespace: str = "") -> None:
        self._delegate = delegate
        self._cache = cache
        self._namespace = namespace

    @property
    def dimensions(self) -> int:
        return self._delegate.dimensions

    def _key(self, text: str) -> str:
        return f"{self._namespace}\x1f{text}" if self._namespace else text

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        unique = list(dict.fromkeys(texts))
        found = await self._cache.get_batch([self._key(t) for t in unique])
        vectors = {
            unique[i]: vec for i, vec in found.items() if len(vec) == self._delegate.dimensions
        }

        misses = [t for t in unique if t not in vectors]
        if misses:
            fresh = await self._delegate.embed_texts(misses)
            await self._cache.put_batch([self._key(t) for t in misses], fresh)
            vectors.update(zip(misses, fresh))

        logger.debug(
            "embed_texts_cached",
            total=len(texts),
            unique=len(unique),
            misses=len(misses),
        )
        return [vectors[t] for t in texts]

    async def embed_query(self, query: str) -> list[float]:
        cached = await self._cache.get(self._key(query))
        if cached is not None and len(cached) == self._delegate.dimensions:
            return cached
        vector = await self._delegate.embed_query(query)
        await self._cache.put(self._key(query), vector)
        return vector
