"""Sparse retriever backend: BM25 keyword search using rank_bm25."""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path

import numpy as np
from rank_bm25 import BM25Okapi

from rag_orchestrator.models.domain import Document, Query, RetrievalResult
from rag_orchestrator.observability.logger import get_logger
from rag_orchestrator.retrieval.tokenizer import tokenize

logger = get_logger("bm25_backend")


class BM25Backend:
    """Keyword backend; never needs a query embedding."""

    def __init__(self, index_path: str | None = None, name: str = "bm25") -> None:
        self._bm25: BM25Okapi | None = None
        self._documents: list[Document] = []
        self._index_path = index_path
        self._name = name
        self._write_lock = asyncio.Lock()

        if index_path:
            self._try_load(index_path)

    @property
    def name(self) -> str:
        return self._name

    @property
    def size(self) -> int:
        return len(self._documents)

    def _try_load(self, path: str) -> None:
        docs_file = os.path.join(path, "documents.json")
        if os.path.exists(docs_file):
            with open(docs_file) as f:
                data = json.load(f)
            self.build(
                [Document(content=d["content"], id=d["id"], metadata=d["metadata"]) for d in data]
            )
            logger.info("bm25_loaded", size=len(self._documents), path=path)

    def build(self, documents: list[Document]) -> None:
        """Build the BM25 index from documents. Replaces the existing index."""
        unique: dict[str, Document] = {}
        for doc in documents:
            unique[doc.id] = doc.with_score(None)
        self._documents = list(unique.values())
        tokenized_corpus = [tokenize(d.content) for d in self._documents]
        self._bm25 = BM25Okapi(tokenized_corpus) if tokenized_corpus else None
        logger.info("bm25_built", size=len(self._documents))

    async def rebuild(self, documents: list[Document]) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self.build, documents)

    async def search(self, query: Query, k: int) -> RetrievalResult:
        hits = await asyncio.to_thread(self._search, query.text, k)
        return RetrievalResult.of(hits)

    def _search(self, text: str, top_k: int) -> list[Document]:
        if self._bm25 is None or not self._documents:
            return []
        tokenized_query = tokenize(text)
        if not tokenized_query:
            return []
        scores = self._bm25.get_scores(tokenized_query)
        top_indices = np.argsort(-scores, kind="stable")[:top_k]
        return [
            self._documents[i].with_score(float(scores[i]))
            for i in top_indices
            if scores[i] > 0
        ]

    def save(self, path: str | None = None) -> None:
        path = path or self._index_path
        if not path:
            return
        Path(path).mkdir(parents=True, exist_ok=True)
        with open(os.path.join(path, "documents.json"), "w") as f:
            json.dump(
                [{"content": d.content, "id": d.id, "metadata": dict(d.metadata)} for d in self._documents],
                f,
            )
        logger.info("bm25_saved", path=path, size=len(self._documents))
