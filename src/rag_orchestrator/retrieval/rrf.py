"""Merging of per-backend result lists: max-score dedup and Reciprocal Rank Fusion."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence

from rag_orchestrator.models.domain import Document


def _sort_key(doc: Document) -> float:
    return doc.score if doc.score is not None else float("-inf")


def merge_max_score(result_lists: Sequence[Sequence[Document]]) -> list[Document]:
    """Dedupe by id keeping the highest-scored copy, sorted by score descending.

    Ties keep first-seen order (backend order, then rank within backend).
    """
    best: dict[str, Document] = {}
    for result_list in result_lists:
        for doc in result_list:
            current = best.get(doc.id)
            if current is None or _sort_key(doc) > _sort_key(current):
                best[doc.id] = doc
    first_seen = {doc_id: i for i, doc_id in enumerate(best)}
    return sorted(best.values(), key=lambda d: (-_sort_key(d), first_seen[d.id]))


def reciprocal_rank_fusion(
    result_lists: Sequence[Sequence[Document]],
    k: int = 60,
) -> list[Document]:
    """Merge multiple ranked result lists using RRF.

    Args:
        result_lists: Each list holds documents sorted by relevance descending.
        k: RRF constant (higher = more weight to lower-ranked results).

    Returns:
        One document per id, carrying its RRF score, sorted by that score descending.
    """
    scores: dict[str, float] = defaultdict(float)
    representative: dict[str, Document] = {}
    for result_list in result_lists:
        for rank, doc in enumerate(result_list):
            scores[doc.id] += 1.0 / (k + rank + 1)
            current = representative.get(doc.id)
            if current is None or _sort_key(doc) > _sort_key(current):
                representative[doc.id] = doc
    order = {doc_id: i for i, doc_id in enumerate(scores)}
    fused = sorted(scores.items(), key=lambda x: (-x[1], order[x[0]]))
    return [representative[doc_id].with_score(score) for doc_id, score in fused]
