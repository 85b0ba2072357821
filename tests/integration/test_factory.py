"""Tests for building pipelines from settings."""

from __future__ import annotations

import pytest

from conftest import FakeGenerator
from rag_orchestrator.exceptions import ConfigurationError
from rag_orchestrator.pipeline.factory import build_backends, build_generator, build_pipeline
from rag_orchestrator.transport.http_pool import HTTPClientPool


async def test_build_pipeline_with_keyword_backend(settings):
    async with await build_pipeline(settings, generator=FakeGenerator(answer="ok")) as pipeline:
        result = await pipeline.run("anything at all")
    assert result.response.text == "ok"
    assert len(result.documents) == 0
    assert result.context == ""


def test_unknown_backend_rejected(settings):
    settings.retriever_backends = ["bm25", "elastic"]
    with pytest.raises(ConfigurationError):
        build_backends(settings, None, HTTPClientPool())


def test_dense_backend_needs_embedder(settings):
    settings.retriever_backends = ["faiss"]
    with pytest.raises(ConfigurationError):
        build_backends(settings, None, HTTPClientPool())


def test_http_backend_needs_url(settings):
    settings.retriever_backends = ["http"]
    with pytest.raises(ConfigurationError):
        build_backends(settings, None, HTTPClientPool())


def test_backends_built_in_configured_order(settings):
    settings.retriever_backends = ["http", "bm25"]
    settings.remote_backend_url = "https://search.example.com/v1/search"
    backends = build_backends(settings, None, HTTPClientPool())
    assert [b.name for b in backends] == ["http", "bm25"]


def test_generator_primary_is_first_provider(settings):
    settings.generation_providers = ["openai", "gemini"]
    assert build_generator(settings).name == f"openai:{settings.openai_chat_model}"


def test_unknown_or_empty_providers_rejected(settings):
    settings.generation_providers = ["claude"]
    with pytest.raises(ConfigurationError):
        build_generator(settings)
    settings.generation_providers = []
    with pytest.raises(ConfigurationError):
        build_generator(settings)
