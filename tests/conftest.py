"""Shared test fixtures and fakes."""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

import pytest

from rag_orchestrator.config.settings import Settings
from rag_orchestrator.models.domain import (
    Document,
    GenerationRequest,
    GenerationResponse,
    Query,
    RetrievalResult,
)
from rag_orchestrator.retrieval.tokenizer import tokenize


class FakeEmbedder:
    """Bag-of-words vectors over a growing vocabulary; deterministic per instance."""

    def __init__(self, dimensions: int = 64) -> None:
        self._dimensions = dimensions
        self._vocab: dict[str, int] = {}
        self.embed_texts_calls = 0
        self.embed_query_calls = 0

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _vector(self, text: str) -> list[float]:
        vec = [0.0] * self._dimensions
        for token in tokenize(text) or [text]:
            index = self._vocab.setdefault(token, len(self._vocab))
            vec[index % self._dimensions] += 1.0
        return vec

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        self.embed_texts_calls += 1
        return [self._vector(t) for t in texts]

    async def embed_query(self, query: str) -> list[float]:
        self.embed_query_calls += 1
        return self._vector(query)


class FakeBackend:
    """Returns a fixed ranked list, raises, or hangs."""

    def __init__(
        self,
        name: str,
        documents: list[Document] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self._name = name
        self._documents = documents or []
        self._error = error
        self._delay = delay
        self.calls: list[tuple[Query, int]] = []

    @property
    def name(self) -> str:
        return self._name

    async def search(self, query: Query, k: int) -> RetrievalResult:
        self.calls.append((query, k))
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return RetrievalResult.of(self._documents[:k])


class FakeGenerator:
    def __init__(
        self,
        name: str = "fake",
        answer: str = "answer",
        fragments: list[str] | None = None,
        error: Exception | None = None,
        fail_times: int = 0,
    ) -> None:
        self._name = name
        self._answer = answer
        self._fragments = fragments if fragments is not None else ["Hello", ", ", "world", "!"]
        self._error = error
        self._fail_times = fail_times
        self.calls = 0
        self.requests: list[GenerationRequest] = []
        self.delivered = 0
        self.stream_closed = False

    @property
    def name(self) -> str:
        return self._name

    def _maybe_fail(self) -> None:
        self.calls += 1
        if self._error is not None and (self._fail_times == 0 or self.calls <= self._fail_times):
            raise self._error

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        self._maybe_fail()
        return GenerationResponse(text=self._answer, model=self._name)

    async def generate_stream(self, request: GenerationRequest):
        self.requests.append(request)
        self._maybe_fail()
        try:
            for fragment in self._fragments:
                await asyncio.sleep(0)
                self.delivered += 1
                yield fragment
        finally:
            self.stream_closed = True

    def count_tokens(self, text: str) -> int:
        return len(text.split())


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_docs(prefix: str, scores: list[float], content: str = "content") -> list[Document]:
    return [
        Document(content=f"{content} {prefix}{i}", id=f"{prefix}{i}", score=s)
        for i, s in enumerate(scores)
    ]


@pytest.fixture
def settings():
    """Test settings with temp paths."""
    tmp = tempfile.mkdtemp()
    return Settings(
        openai_api_key="test-key",
        google_api_key="test-key",
        retriever_backends=["bm25"],
        embedding_cache_db_path=str(Path(tmp) / "cache.db"),
        faiss_index_path=str(Path(tmp) / "faiss_index"),
        bm25_index_path=str(Path(tmp) / "bm25_index"),
        default_k=3,
        context_max_length=500,
    )


@pytest.fixture
def sample_documents():
    return [
        Document(
            content="Python asyncio provides cooperative multitasking with event loops.",
            id="py-async",
            metadata={"topic": "python", "year": 2021},
        ),
        Document(
            content="FAISS performs efficient similarity search over dense vectors.",
            id="faiss",
            metadata={"topic": "search", "year": 2019},
        ),
        Document(
            content="BM25 ranks documents by keyword frequency and inverse document frequency.",
            id="bm25",
            metadata={"topic": "search", "year": 2009},
        ),
        Document(
            content="Exponential backoff with jitter spreads out retries after failures.",
            id="backoff",
            metadata={"topic": "resilience", "year": 2015},
        ),
        Document(
            content="Maximal marginal relevance balances relevance and diversity in rankings.",
            id="mmr",
            metadata={"topic": "search", "year": 1998},
        ),
    ]


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def tmp_dir():
    return tempfile.mkdtemp()

