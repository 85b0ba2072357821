"""Central configuration via Pydantic Settings. All values driven by env vars."""

from __future__ import annotations

from pydantic_settings import BaseSettings

from rag_orchestrator.exceptions import ErrorKind
from rag_orchestrator.resilience.policy import RetryPolicy


class Settings(BaseSettings):
    # API Keys
    openai_api_key: str = ""
    google_api_key: str = ""
    remote_backend_api_key: str = ""

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Embedding
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_batch_size: int = 100
    embedding_cache_db_path: str = "data/embedding_cache.db"
    embedding_cache_max_entries: int = 10_000

    # Generation, in fallback order
    generation_providers: list[str] = ["gemini", "openai"]
    gemini_model: str = "gemini-2.0-flash"
    openai_chat_model: str = "gpt-4o-mini"
    generation_temperature: float = 0.1
    generation_max_tokens: int = 4096

    # Retrieval, queried concurrently
    retriever_backends: list[str] = ["faiss", "bm25"]
    remote_backend_url: str = ""
    default_k: int = 5
    fetch_multiplier: int = 4
    mmr_lambda: float = 0.5
    merge_strategy: str = "max_score"  # "max_score" or "rrf"
    rrf_k: int = 60

    # Context assembly
    context_max_length: int = 8000
    context_delimiter: str = "\n\n"

    # Resilience
    retry_max_attempts: int = 3
    retry_initial_backoff: float = 0.5
    retry_max_backoff: float = 30.0
    retry_multiplier: float = 2.0
    retry_jitter: float = 0.1
    backend_timeout_s: float = 10.0
    generation_timeout_s: float = 60.0

    # Shared HTTP connection pool
    http_max_connections: int = 100
    http_max_keepalive_connections: int = 20

    # Storage paths
    faiss_index_path: str = "data/faiss_index"
    bm25_index_path: str = "data/bm25_index"

    model_config = {"env_file": ".env", "env_prefix": "RAG_"}

    def retry_policy(self, timeout: float | None = None) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            initial_backoff=self.retry_initial_backoff,
            max_backoff=self.retry_max_backoff,
            multiplier=self.retry_multiplier,
            jitter=self.retry_jitter,
            timeout=timeout,
            retryable=frozenset({ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT_NETWORK}),
        )
