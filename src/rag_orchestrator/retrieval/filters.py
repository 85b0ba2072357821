"""Post-hoc metadata filtering.

Each filter key maps to one of:

- a scalar: metadata value must equal it
- a callable: ``predicate(value) -> bool``
- an operator mapping, e.g. ``{"$gte": 2020, "$lt": 2024}`` or ``{"$in": [...]}``

A document missing the key fails the filter, except under ``$ne`` / ``$nin``.
"""

from __future__ import annotations

import operator
from collections.abc import Callable, Collection, Iterable, Mapping
from typing import Any

from rag_orchestrator.exceptions import InvalidQuery
from rag_orchestrator.models.domain import Document, FilterSpec

_MISSING = object()

_COMPARISONS: dict[str, Callable[[Any, Any], bool]] = {
    "$eq": operator.eq,
    "$ne": operator.ne,
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
}


def _check_operator(op: str, value: Any, target: Any) -> bool:
    if op == "$in":
        return value is not _MISSING and value in target
    if op == "$nin":
        return value is _MISSING or value not in target
    if value is _MISSING:
        return op == "$ne"
    try:
        return bool(_COMPARISONS[op](value, target))
    except TypeError:
        # Incomparable types (e.g. "2021" >= 2020) never match.
        return False


def validate_filters(filters: Mapping[str, FilterSpec] | None) -> None:
    """Raise InvalidQuery for unknown operators before any backend is called."""
    if not filters:
        return
    for key, spec in filters.items():
        if isinstance(spec, Mapping):
            if not spec:
                raise InvalidQuery(f"Empty operator mapping for filter {key!r}")
            for op, target in spec.items():
                if op not in _COMPARISONS and op not in ("$in", "$nin"):
                    raise InvalidQuery(f"Unknown filter operator {op!r} for {key!r}")
                if op in ("$in", "$nin") and (
                    isinstance(target, (str, bytes)) or not isinstance(target, Collection)
                ):
                    raise InvalidQuery(
                        f"{op} for {key!r} needs a collection, got {type(target).__name__}"
                    )


def matches(document: Document, filters: Mapping[str, FilterSpec] | None) -> bool:
    if not filters:
        return True
    for key, spec in filters.items():
        value = document.metadata.get(key, _MISSING)
        if callable(spec):
            if value is _MISSING or not spec(value):
                return False
        elif isinstance(spec, Mapping):
            if not all(_check_operator(op, value, target) for op, target in spec.items()):
                return False
        elif value is _MISSING or value != spec:
            return False
    return True


def apply_filters(
    documents: Iterable[Document], filters: Mapping[str, FilterSpec] | None
) -> list[Document]:
    return [d for d in documents if matches(d, filters)]
