"""Tests for the retrieval orchestrator."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeBackend, FakeEmbedder, make_docs
from rag_orchestrator.exceptions import (
    AuthenticationFailed,
    BackendUnavailable,
    ConfigurationError,
    InvalidQuery,
    RateLimited,
    TransientNetworkError,
)
from rag_orchestrator.models.domain import Document, Query
from rag_orchestrator.resilience.policy import RetryPolicy
from rag_orchestrator.resilience.resilient import ResilientRetriever
from rag_orchestrator.retrieval.orchestrator import RetrievalOrchestrator


async def _no_sleep(_: float) -> None:
    return None


async def test_three_backends_one_timing_out():
    a_docs = make_docs("a", [0.95, 0.85, 0.75, 0.65, 0.55])
    # C shares two ids with A: one scored higher, one lower.
    c_docs = [
        Document(content="content a0", id="a0", score=0.99),
        Document(content="content a1", id="a1", score=0.10),
        *make_docs("c", [0.90, 0.80, 0.70]),
    ]
    backend_a = FakeBackend("A", documents=a_docs)
    backend_b = ResilientRetriever(
        FakeBackend("B", documents=make_docs("b", [1.0] * 5), delay=5.0),
        policy=RetryPolicy(max_attempts=1, timeout=0.05),
        sleep=_no_sleep,
    )
    backend_c = FakeBackend("C", documents=c_docs)

    orchestrator = RetrievalOrchestrator([backend_a, backend_b, backend_c])
    result = await orchestrator.retrieve(Query(text="anything"), k=5)

    assert len(result) == 5
    assert len(set(result.ids)) == 5
    assert not any(doc_id.startswith("b") for doc_id in result.ids)
    assert result[0].id == "a0"
    assert result[0].score == 0.99
    assert result.ids == ["a0", "c0", "a1", "c1", "a2"]


@pytest.mark.parametrize("k", [1, 2, 3, 7, 20])
async def test_length_bounded_and_ids_unique(k):
    backends = [
        FakeBackend("x", documents=make_docs("d", [0.9, 0.8, 0.7, 0.6])),
        FakeBackend("y", documents=make_docs("d", [0.5, 0.95, 0.1, 0.2, 0.3, 0.4])),
    ]
    result = await RetrievalOrchestrator(backends).retrieve(Query(text="q"), k=k)
    assert len(result) <= k
    assert len(result.ids) == len(set(result.ids))
    scores = [d.score for d in result]
    assert scores == sorted(scores, reverse=True)


async def test_partial_failure_is_tolerated():
    ok = FakeBackend("ok", documents=make_docs("d", [0.9, 0.8]))
    broken = FakeBackend("broken", error=TransientNetworkError("down"))
    result = await RetrievalOrchestrator([broken, ok]).retrieve(Query(text="q"), k=5)
    assert result.ids == ["d0", "d1"]


async def test_all_backends_failing_raises_backend_unavailable():
    backends = [
        FakeBackend("one", error=TransientNetworkError("down")),
        FakeBackend("two", error=AuthenticationFailed("bad key")),
    ]
    with pytest.raises(BackendUnavailable) as excinfo:
        await RetrievalOrchestrator(backends).retrieve(Query(text="q"), k=3)
    assert set(excinfo.value.errors) == {"one", "two"}
    assert isinstance(excinfo.value.__cause__, AuthenticationFailed)


@pytest.mark.parametrize("k", [0, -1, 2.5, True, "3"])
async def test_invalid_k_rejected_before_backends(k):
    backend = FakeBackend("x", documents=make_docs("d", [0.9]))
    with pytest.raises(InvalidQuery):
        await RetrievalOrchestrator([backend]).retrieve(Query(text="q"), k=k)
    assert backend.calls == []


async def test_empty_text_requires_embedding():
    backend = FakeBackend("x", documents=make_docs("d", [0.9]))
    orchestrator = RetrievalOrchestrator([backend])
    with pytest.raises(InvalidQuery):
        await orchestrator.retrieve(Query(text="   "), k=1)
    result = await orchestrator.retrieve(Query(text="", embedding=(0.1, 0.2)), k=1)
    assert result.ids == ["d0"]


async def test_invalid_mmr_lambda_rejected():
    backend = FakeBackend("x", documents=make_docs("d", [0.9]))
    with pytest.raises(InvalidQuery):
        await RetrievalOrchestrator([backend]).retrieve(
            Query(text="q"), k=1, diversify=True, mmr_lambda=1.5
        )


async def test_filters_applied_after_merge():
    docs = [
        Document(content="a", id="a", metadata={"lang": "en"}, score=0.9),
        Document(content="b", id="b", metadata={"lang": "de"}, score=0.8),
        Document(content="c", id="c", metadata={"lang": "en"}, score=0.7),
    ]
    orchestrator = RetrievalOrchestrator([FakeBackend("x", documents=docs)])
    result = await orchestrator.retrieve(Query(text="q", filters={"lang": "en"}), k=3)
    assert result.ids == ["a", "c"]


async def test_diversify_fetches_more_candidates():
    backend = FakeBackend("x", documents=make_docs("d", [0.9 - i * 0.05 for i in range(12)]))
    orchestrator = RetrievalOrchestrator([backend], fetch_multiplier=3)
    await orchestrator.retrieve(Query(text="q"), k=2)
    await orchestrator.retrieve(Query(text="q"), k=2, diversify=True)
    assert [k for _, k in backend.calls] == [2, 6]


async def test_pure_relevance_mmr_equals_plain_order():
    docs = [
        Document(content="vector search faiss index", id="a", score=0.9),
        Document(content="vector search faiss index tuning", id="b", score=0.8),
        Document(content="retry backoff jitter", id="c", score=0.7),
        Document(content="context budget delimiter", id="d", score=0.6),
    ]
    orchestrator = RetrievalOrchestrator([FakeBackend("x", documents=docs)])
    plain = await orchestrator.retrieve(Query(text="q"), k=3)
    mmr = await orchestrator.retrieve(Query(text="q"), k=3, diversify=True, mmr_lambda=1.0)
    assert mmr.ids == plain.ids


async def test_diversify_with_embedder_prefers_novel_documents():
    docs = [
        Document(content="vector search faiss index", id="a", score=0.9),
        Document(content="vector search faiss index", id="a-copy", score=0.85),
        Document(content="retry backoff jitter policy", id="c", score=0.5),
    ]
    embedder = FakeEmbedder()
    orchestrator = RetrievalOrchestrator([FakeBackend("x", documents=docs)], embedder=embedder)
    result = await orchestrator.retrieve(Query(text="vector"), k=2, diversify=True, mmr_lambda=0.5)
    assert result.ids == ["a", "c"]
    assert embedder.embed_texts_calls == 1


async def test_query_embedded_once_and_shared():
    embedder = FakeEmbedder()
    first = FakeBackend("first", documents=make_docs("d", [0.9]))
    second = FakeBackend("second", documents=make_docs("e", [0.8]))
    orchestrator = RetrievalOrchestrator([first, second], embedder=embedder)
    await orchestrator.retrieve(Query(text="hello world"), k=2)
    assert embedder.embed_query_calls == 1
    assert first.calls[0][0].embedding is not None
    assert first.calls[0][0].embedding == second.calls[0][0].embedding


async def test_supplied_embedding_not_recomputed():
    embedder = FakeEmbedder()
    backend = FakeBackend("x", documents=make_docs("d", [0.9]))
    orchestrator = RetrievalOrchestrator([backend], embedder=embedder)
    await orchestrator.retrieve(Query(text="q", embedding=(1.0, 0.0)), k=1)
    assert embedder.embed_query_calls == 0


async def test_rrf_merge_strategy():
    backends = [
        FakeBackend("x", documents=make_docs("d", [0.9, 0.8])),
        FakeBackend("y", documents=[Document(content="d1", id="d1", score=50.0)]),
    ]
    orchestrator = RetrievalOrchestrator(backends, merge_strategy="rrf")
    result = await orchestrator.retrieve(Query(text="q"), k=2)
    # d1 appears in both lists, so it outranks d0 despite lower rank in x.
    assert result.ids == ["d1", "d0"]


async def test_repeated_retrieval_is_stable():
    backends = [
        FakeBackend("x", documents=make_docs("d", [0.5, 0.5, 0.4, 0.5])),
        FakeBackend("y", documents=make_docs("e", [0.5, 0.3])),
    ]
    orchestrator = RetrievalOrchestrator(backends)
    first = await orchestrator.retrieve(Query(text="q"), k=4)
    second = await orchestrator.retrieve(Query(text="q"), k=4)
    assert first.ids == second.ids


async def test_cancellation_cancels_outstanding_backends():
    slow = FakeBackend("slow", documents=make_docs("d", [0.9]), delay=10.0)
    orchestrator = RetrievalOrchestrator([slow])
    task = asyncio.create_task(orchestrator.retrieve(Query(text="q"), k=1))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


def test_configuration_validated():
    with pytest.raises(ConfigurationError):
        RetrievalOrchestrator([])
    backend = FakeBackend("x")
    with pytest.raises(ConfigurationError):
        RetrievalOrchestrator([backend], fetch_multiplier=0)
    with pytest.raises(ConfigurationError):
        RetrievalOrchestrator([backend], merge_strategy="vote")
    with pytest.raises(ConfigurationError):
        RetrievalOrchestrator([backend], mmr_lambda=-0.1)


class FlakyEmbedder(FakeEmbedder):
    """Raises ``error`` from the first ``failures`` calls of each selected method."""

    def __init__(
        self,
        error: Exception,
        failures: int | None = None,
        fail_query: bool = True,
        fail_texts: bool = False,
    ) -> None:
        super().__init__()
        self._error = error
        self._failures = failures
        self._fail_query = fail_query
        self._fail_texts = fail_texts

    def _should_fail(self, calls: int) -> bool:
        return self._failures is None or calls <= self._failures

    async def embed_query(self, query: str) -> list[float]:
        self.embed_query_calls += 1
        if self._fail_query and self._should_fail(self.embed_query_calls):
            raise self._error
        return self._vector(query)

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        self.embed_texts_calls += 1
        if self._fail_texts and self._should_fail(self.embed_texts_calls):
            raise self._error
        return [self._vector(t) for t in texts]


def _embed_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=2, jitter=0.0)


async def test_embedding_outage_still_serves_sparse_backend():
    embedder = FlakyEmbedder(RateLimited("embeddings throttled"))
    keyword = FakeBackend("bm25", documents=make_docs("d", [0.9, 0.4]))
    orchestrator = RetrievalOrchestrator(
        [keyword], embedder=embedder, embed_policy=_embed_policy(), sleep=_no_sleep
    )
    result = await orchestrator.retrieve(Query(text="hello"), k=1)

    assert result.ids == ["d0"]
    assert embedder.embed_query_calls == 2
    assert keyword.calls[0][0].embedding is None


async def test_query_embedding_retried_until_it_succeeds():
    embedder = FlakyEmbedder(TransientNetworkError("reset"), failures=1)
    backend = FakeBackend("dense", documents=make_docs("d", [0.9]))
    orchestrator = RetrievalOrchestrator(
        [backend], embedder=embedder, embed_policy=_embed_policy(), sleep=_no_sleep
    )
    await orchestrator.retrieve(Query(text="hello"), k=1)

    assert embedder.embed_query_calls == 2
    assert backend.calls[0][0].embedding is not None


async def test_embedding_outage_with_every_backend_down_is_backend_unavailable():
    embedder = FlakyEmbedder(RateLimited("embeddings throttled"))
    dense = FakeBackend("faiss", error=InvalidQuery("no query vector"))
    orchestrator = RetrievalOrchestrator(
        [dense], embedder=embedder, embed_policy=_embed_policy(), sleep=_no_sleep
    )
    with pytest.raises(BackendUnavailable) as excinfo:
        await orchestrator.retrieve(Query(text="hello"), k=1)
    assert set(excinfo.value.errors) == {"faiss", "embedder"}


async def test_diversify_falls_back_to_lexical_similarity():
    docs = [
        Document(content="vector search faiss index", id="a", score=0.9),
        Document(content="vector search faiss index", id="a-copy", score=0.85),
        Document(content="retry backoff jitter policy", id="c", score=0.5),
    ]
    embedder = FlakyEmbedder(RateLimited("throttled"), fail_query=False, fail_texts=True)
    orchestrator = RetrievalOrchestrator(
        [FakeBackend("x", documents=docs)],
        embedder=embedder,
        embed_policy=_embed_policy(),
        sleep=_no_sleep,
    )
    result = await orchestrator.retrieve(Query(text="vector"), k=2, diversify=True, mmr_lambda=0.5)

    assert result.ids == ["a", "c"]
    assert embedder.embed_texts_calls == 2
