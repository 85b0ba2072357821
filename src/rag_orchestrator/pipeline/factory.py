"""Builds a RAGPipeline from Settings.

Backends and generation providers are chosen by name from explicit
configuration; list order is the fallback order for providers.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Optional

from rag_orchestrator.backends.bm25_backend import BM25Backend
from rag_orchestrator.backends.faiss_backend import FAISSBackend
from rag_orchestrator.backends.http_backend import HTTPRetrieverBackend
from rag_orchestrator.config.settings import Settings
from rag_orchestrator.context.assembler import ContextAssembler
from rag_orchestrator.embeddings.cache import EmbeddingCache
from rag_orchestrator.embeddings.cached_embedder import CachedEmbedder
from rag_orchestrator.embeddings.openai_embedder import OpenAIEmbedder
from rag_orchestrator.exceptions import ConfigurationError
from rag_orchestrator.generation.gemini_provider import GeminiProvider
from rag_orchestrator.generation.openai_provider import OpenAIChatProvider
from rag_orchestrator.observability.logger import get_logger, setup_logging
from rag_orchestrator.pipeline.query_pipeline import RAGPipeline
from rag_orchestrator.protocols.embedder import Embedder
from rag_orchestrator.protocols.llm import GenerationClient
from rag_orchestrator.protocols.retriever import RetrieverBackend
from rag_orchestrator.resilience.resilient import ResilientGenerationClient, ResilientRetriever
from rag_orchestrator.retrieval.orchestrator import RetrievalOrchestrator
from rag_orchestrator.transport.http_pool import HTTPClientPool

logger = get_logger("factory")

BackendBuilder = Callable[[Settings, Optional[Embedder], HTTPClientPool], RetrieverBackend]
ProviderBuilder = Callable[[Settings], GenerationClient]

# Backends that need a query embedding.
DENSE_BACKENDS = frozenset({"faiss"})


def _faiss(settings: Settings, embedder: Embedder | None, pool: HTTPClientPool) -> RetrieverBackend:
    if embedder is None:
        raise ConfigurationError("faiss backend requires an embedder")
    return FAISSBackend(
        embedder=embedder,
        dimensions=settings.embedding_dimensions,
        index_path=settings.faiss_index_path,
    )


def _bm25(settings: Settings, embedder: Embedder | None, pool: HTTPClientPool) -> RetrieverBackend:
    return BM25Backend(index_path=settings.bm25_index_path)


def _http(settings: Settings, embedder: Embedder | None, pool: HTTPClientPool) -> RetrieverBackend:
    if not settings.remote_backend_url:
        raise ConfigurationError("http backend requires RAG_REMOTE_BACKEND_URL")
    return HTTPRetrieverBackend(
        url=settings.remote_backend_url,
        pool=pool,
        api_key=settings.remote_backend_api_key,
    )


def _gemini(settings: Settings) -> GenerationClient:
    return GeminiProvider(
        api_key=settings.google_api_key,
        model=settings.gemini_model,
        temperature=settings.generation_temperature,
        max_tokens=settings.generation_max_tokens,
    )


def _openai(settings: Settings) -> GenerationClient:
    return OpenAIChatProvider(
        api_key=settings.openai_api_key,
        model=settings.openai_chat_model,
        temperature=settings.generation_temperature,
        max_tokens=settings.generation_max_tokens,
    )


BACKENDS: dict[str, BackendBuilder] = {"faiss": _faiss, "bm25": _bm25, "http": _http}
PROVIDERS: dict[str, ProviderBuilder] = {"gemini": _gemini, "openai": _openai}


async def build_embedder(settings: Settings) -> Embedder:
    Path(settings.embedding_cache_db_path).parent.mkdir(parents=True, exist_ok=True)
    cache = EmbeddingCache(
        settings.embedding_cache_db_path,
        max_entries=settings.embedding_cache_max_entries,
    )
    await cache.initialize()
    raw = OpenAIEmbedder(
        api_key=settings.openai_api_key,
        model=settings.embedding_model,
        batch_size=settings.embedding_batch_size,
        dimensions=settings.embedding_dimensions,
    )
    return CachedEmbedder(delegate=raw, cache=cache, namespace=settings.embedding_model)


def build_backends(
    settings: Settings, embedder: Embedder | None, pool: HTTPClientPool
) -> list[RetrieverBackend]:
    unknown = [n for n in settings.retriever_backends if n not in BACKENDS]
    if unknown:
        raise ConfigurationError(f"Unknown retriever backends: {unknown}")
    if not settings.retriever_backends:
        raise ConfigurationError("At least one retriever backend must be configured")
    policy = settings.retry_policy(timeout=settings.backend_timeout_s)
    return [
        ResilientRetriever(BACKENDS[name](settings, embedder, pool), policy=policy)
        for name in settings.retriever_backends
    ]


def build_generator(settings: Settings) -> GenerationClient:
    names = settings.generation_providers
    unknown = [n for n in names if n not in PROVIDERS]
    if unknown:
        raise ConfigurationError(f"Unknown generation providers: {unknown}")
    if not names:
        raise ConfigurationError("At least one generation provider must be configured")
    clients = [PROVIDERS[name](settings) for name in names]
    return ResilientGenerationClient(
        clients[0],
        fallbacks=clients[1:],
        policy=settings.retry_policy(timeout=settings.generation_timeout_s),
    )


async def build_pipeline(
    settings: Settings | None = None,
    embedder: Embedder | None = None,
    generator: GenerationClient | None = None,
    http_pool: HTTPClientPool | None = None,
) -> RAGPipeline:
    settings = settings or Settings()
    setup_logging(settings.log_level, settings.log_json)

    pool = http_pool or HTTPClientPool(
        max_connections=settings.http_max_connections,
        max_keepalive_connections=settings.http_max_keepalive_connections,
    )
    if embedder is None and DENSE_BACKENDS & set(settings.retriever_backends):
        embedder = await build_embedder(settings)

    backends = build_backends(settings, embedder, pool)
    orchestrator = RetrievalOrchestrator(
        backends,
        embedder=embedder,
        fetch_multiplier=settings.fetch_multiplier,
        mmr_lambda=settings.mmr_lambda,
        merge_strategy=settings.merge_strategy,
        rrf_k=settings.rrf_k,
        embed_policy=settings.retry_policy(timeout=settings.backend_timeout_s),
    )
    assembler = ContextAssembler(delimiter=settings.context_delimiter)
    generator = generator or build_generator(settings)

    logger.info(
        "pipeline_built",
        backends=orchestrator.backend_names,
        generator=generator.name,
        providers=settings.generation_providers,
    )
    return RAGPipeline(
        orchestrator=orchestrator,
        assembler=assembler,
        generator=generator,
        settings=settings,
        http_pool=pool,
    )
