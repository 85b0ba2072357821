"""Pydantic models for the remote search API wire format."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class SearchRequest(BaseModel):
    query: str
    k: int
    embedding: list[float] | None = None
    filters: dict[str, Any] | None = None


class SearchHit(BaseModel):
    id: str | int
    content: str
    metadata: dict[str, Any] | None = None
    score: float | None = None


class SearchResponse(BaseModel):
    results: list[SearchHit]
