"""Greedy maximal-marginal-relevance selection."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from rag_orchestrator.models.domain import Document
from rag_orchestrator.retrieval.tokenizer import jaccard_similarity


def normalize_scores(documents: Sequence[Document]) -> list[float]:
    """Min-max normalise backend scores to [0, 1]. Missing scores count as 0."""
    raw = [d.score if d.score is not None else float("-inf") for d in documents]
    finite = [s for s in raw if s != float("-inf")]
    if not finite:
        return [0.0] * len(documents)
    lo, hi = min(finite), max(finite)
    if hi == lo:
        return [1.0 if s != float("-inf") else 0.0 for s in raw]
    return [0.0 if s == float("-inf") else (s - lo) / (hi - lo) for s in raw]


def cosine_similarity_matrix(embeddings: Sequence[Sequence[float]]) -> np.ndarray:
    matrix = np.asarray(embeddings, dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    unit = matrix / norms
    return unit @ unit.T


def lexical_similarity_matrix(documents: Sequence[Document]) -> np.ndarray:
    n = len(documents)
    sim = np.eye(n, dtype=np.float32)
    for i in range(n):
        for j in range(i + 1, n):
            sim[i, j] = sim[j, i] = jaccard_similarity(documents[i].content, documents[j].content)
    return sim


def mmr_select(
    documents: Sequence[Document],
    k: int,
    lambda_mult: float = 0.5,
    similarity: np.ndarray | None = None,
    relevance: Sequence[float] | None = None,
) -> list[Document]:
    """Pick up to ``k`` documents trading relevance against redundancy.

    ``documents`` must already be in relevance-descending order; ties are
    broken in favour of the earlier document so ``lambda_mult=1.0`` returns
    the input order truncated to ``k``.
    """
    if not documents or k <= 0:
        return []
    if relevance is None:
        relevance = normalize_scores(documents)
    if similarity is None:
        similarity = lexical_similarity_matrix(documents)

    selected: list[int] = []
    remaining = list(range(len(documents)))
    while remaining and len(selected) < k:
        best_idx = remaining[0]
        best_value = float("-inf")
        for idx in remaining:
            redundancy = max((float(similarity[idx, s]) for s in selected), default=0.0)
            value = lambda_mult * relevance[idx] - (1 - lambda_mult) * redundancy
            if value > best_value:
                best_value = value
                best_idx = idx
        selected.append(best_idx)
        remaining.remove(best_idx)
    return [documents[i] for i in selected]
