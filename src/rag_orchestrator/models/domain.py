"""Core domain objects used throughout the pipeline."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Union

from rag_orchestrator.generation.prompt_templates import ANSWER_GENERATION_PROMPT

Scalar = Union[str, int, float, bool, None]
FilterSpec = Union[Scalar, Callable[[Any], bool], Mapping[str, Any]]


@dataclass(frozen=True)
class Document:
    content: str
    id: str
    metadata: Mapping[str, Scalar] = field(default_factory=dict)
    score: float | None = None

    def with_score(self, score: float | None) -> Document:
        return replace(self, score=score)


@dataclass(frozen=True)
class Query:
    text: str
    embedding: tuple[float, ...] | None = None
    filters: Mapping[str, FilterSpec] | None = None

    def with_embedding(self, embedding: Sequence[float]) -> Query:
        return replace(self, embedding=tuple(float(x) for x in embedding))


@dataclass(frozen=True)
class RetrievalResult:
    """Ordered documents, highest relevance (or MMR pick) first."""

    documents: tuple[Document, ...] = ()

    def __post_init__(self) -> None:
        ids = [d.id for d in self.documents]
        if len(ids) != len(set(ids)):
            raise ValueError("RetrievalResult cannot hold duplicate document ids")

    @classmethod
    def of(cls, documents: Sequence[Document]) -> RetrievalResult:
        return cls(documents=tuple(documents))

    def __len__(self) -> int:
        return len(self.documents)

    def __iter__(self) -> Iterator[Document]:
        return iter(self.documents)

    def __getitem__(self, index: int) -> Document:
        return self.documents[index]

    @property
    def ids(self) -> list[str]:
        return [d.id for d in self.documents]


@dataclass(frozen=True)
class GenerationRequest:
    system_instructions: str
    context: str
    user_query: str
    streaming: bool = False

    def render_prompt(self) -> str:
        return ANSWER_GENERATION_PROMPT.format(
            query=self.user_query,
            context=self.context or "(no context retrieved)",
        )


@dataclass(frozen=True)
class GenerationResponse:
    text: str
    model: str | None = None
    fragments: int | None = None


@dataclass(frozen=True)
class PipelineResult:
    response: GenerationResponse
    documents: RetrievalResult
    context: str
    trace_id: str
