"""Dense retriever backend: FAISS inner-product search over normalised embeddings."""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path

import faiss
import numpy as np

from rag_orchestrator.exceptions import InvalidQuery
from rag_orchestrator.models.domain import Document, Query, RetrievalResult
from rag_orchestrator.observability.logger import get_logger
from rag_orchestrator.protocols.embedder import Embedder

logger = get_logger("faiss_backend")


class FAISSBackend:
    def __init__(
        self,
        embedder: Embedder,
        dimensions: int,
        index_path: str | None = None,
        name: str = "faiss",
    ) -> None:
        self._embedder = embedder
        self._dimensions = dimensions
        self._index_path = index_path
        self._name = name
        self._index = faiss.IndexIDMap(faiss.IndexFlatIP(dimensions))
        self._documents: dict[int, Document] = {}
        self._doc_id_to_int: dict[str, int] = {}
        self._next_id: int = 0
        self._write_lock = asyncio.Lock()

        if index_path:
            self._try_load(index_path)

    @property
    def name(self) -> str:
        return self._name

    @property
    def size(self) -> int:
        return self._index.ntotal

    def _try_load(self, path: str) -> None:
        index_file = os.path.join(path, "index.faiss")
        docs_file = os.path.join(path, "documents.json")
        if os.path.exists(index_file) and os.path.exists(docs_file):
            self._index = faiss.read_index(index_file)
            with open(docs_file) as f:
                data = json.load(f)
            self._documents = {
                int(k): Document(content=v["content"], id=v["id"], metadata=v["metadata"])
                for k, v in data["documents"].items()
            }
            self._doc_id_to_int = {d.id: i for i, d in self._documents.items()}
            self._next_id = data["next_id"]
            logger.info("faiss_loaded", size=self._index.ntotal, path=path)

    async def add_documents(self, documents: list[Document]) -> None:
        if not documents:
            return
        embeddings = await self._embedder.embed_texts([d.content for d in documents])
        async with self._write_lock:
            await asyncio.to_thread(self.add, documents, np.asarray(embeddings, dtype=np.float32))

    def add(self, documents: list[Document], embeddings: np.ndarray) -> None:
        """Insert or replace documents; ids already indexed are re-embedded."""
        if len(documents) == 0:
            return
        embeddings = np.ascontiguousarray(embeddings, dtype=np.float32)
        faiss.normalize_L2(embeddings)

        stale = [self._doc_id_to_int[d.id] for d in documents if d.id in self._doc_id_to_int]
        if stale:
            self._index.remove_ids(np.array(stale, dtype=np.int64))

        int_ids = []
        for doc in documents:
            int_id = self._doc_id_to_int.get(doc.id)
            if int_id is None:
                int_id = self._next_id
                self._next_id += 1
                self._doc_id_to_int[doc.id] = int_id
            self._documents[int_id] = doc.with_score(None)
            int_ids.append(int_id)
        self._index.add_with_ids(embeddings, np.array(int_ids, dtype=np.int64))
        logger.info("faiss_added", count=len(documents), total=self._index.ntotal)

    async def search(self, query: Query, k: int) -> RetrievalResult:
        if query.embedding is not None:
            vector = query.embedding
        else:
            vector = await self._embedder.embed_query(query.text)
        if len(vector) != self._dimensions:
            raise InvalidQuery(
                f"Query embedding has {len(vector)} dimensions, index expects {self._dimensions}"
            )
        hits = await asyncio.to_thread(self._search, np.asarray(vector, dtype=np.float32), k)
        return RetrievalResult.of(hits)

    def _search(self, query_embedding: np.ndarray, top_k: int) -> list[Document]:
        if self._index.ntotal == 0:
            return []
        query_embedding = np.ascontiguousarray(query_embedding.reshape(1, -1))
        faiss.normalize_L2(query_embedding)
        scores, indices = self._index.search(query_embedding, min(top_k, self._index.ntotal))
        results = []
        for idx, score in zip(indices[0], scores[0]):
            doc = self._documents.get(int(idx))
            if doc is not None:
                results.append(doc.with_score(float(score)))
        return results

    def save(self, path: str | None = None) -> None:
        path = path or self._index_path
        if not path:
            return
        Path(path).mkdir(parents=True, exist_ok=True)
        faiss.write_index(self._index, os.path.join(path, "index.faiss"))
        with open(os.path.join(path, "documents.json"), "w") as f:
            json.dump(
                {
                    "documents": {
                        str(i): {"content": d.content, "id": d.id, "metadata": dict(d.metadata)}
                        for i, d in self._documents.items()
                    },
                    "next_id": self._next_id,
                },
                f,
            )
        logger.info("faiss_saved", path=path, size=self._index.ntotal)
