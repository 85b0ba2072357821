"""Master query pipeline: retrieve, assemble context, generate."""

from __future__ import annotations

from collections.abc import AsyncIterator

from rag_orchestrator.config.settings import Settings
from rag_orchestrator.context.assembler import ContextAssembler
from rag_orchestrator.exceptions import PipelineError
from rag_orchestrator.generation.prompt_templates import ANSWER_GENERATION_SYSTEM
from rag_orchestrator.generation.stream import GenerationStream
from rag_orchestrator.models.domain import (
    GenerationRequest,
    PipelineResult,
    Query,
    RetrievalResult,
)
from rag_orchestrator.observability.logger import get_logger
from rag_orchestrator.observability.metrics import log_generation_metrics
from rag_orchestrator.observability.tracing import TraceContext
from rag_orchestrator.protocols.llm import GenerationClient
from rag_orchestrator.retrieval.orchestrator import RetrievalOrchestrator
from rag_orchestrator.transport.http_pool import HTTPClientPool

logger = get_logger("query_pipeline")


def _kind(error: Exception) -> str:
    return str(getattr(error, "kind", type(error).__name__))


class RAGPipeline:
    """Request-scoped orchestration; holds no per-request state between calls.

    Any failure reaches the caller as one ``PipelineError`` naming the stage
    ("retrieval" or "generation") and the error kind.
    """

    def __init__(
        self,
        orchestrator: RetrievalOrchestrator,
        assembler: ContextAssembler,
        generator: GenerationClient,
        settings: Settings,
        system_instructions: str = ANSWER_GENERATION_SYSTEM,
        http_pool: HTTPClientPool | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._assembler = assembler
        self._generator = generator
        self._settings = settings
        self._system_instructions = system_instructions
        self._http_pool = http_pool

    async def run(
        self, query: str | Query, k: int | None = None, *, diversify: bool = False
    ) -> PipelineResult:
        trace = TraceContext()
        with trace.bound():
            q = self._as_query(query)
            documents, context = await self._retrieve(q, k, diversify, trace)
            request = self._build_request(q, context, streaming=False)

            with trace.span("generation"):
                try:
                    response = await self._generator.generate(request)
                except Exception as e:
                    logger.error("generation_failed", kind=_kind(e), error=str(e))
                    raise PipelineError("generation", e) from e

            log_generation_metrics(
                model=response.model,
                context_len=len(context),
                answer_len=len(response.text),
                streamed=False,
            )
            logger.info(
                "pipeline_complete",
                latency_ms=round(trace.elapsed_ms, 2),
                documents=len(documents),
                spans=trace.summary(),
            )
            return PipelineResult(
                response=response,
                documents=documents,
                context=context,
                trace_id=trace.trace_id,
            )

    async def stream(
        self, query: str | Query, k: int | None = None, *, diversify: bool = False
    ) -> GenerationStream:
        """Retrieve eagerly, then return a lazy stream of answer fragments."""
        trace = TraceContext()
        with trace.bound():
            q = self._as_query(query)
            documents, context = await self._retrieve(q, k, diversify, trace)
            request = self._build_request(q, context, streaming=True)

        def on_complete(stream: GenerationStream) -> None:
            log_generation_metrics(
                model=self._generator.name,
                context_len=len(context),
                answer_len=len(stream.text),
                streamed=True,
                fragments=len(stream.fragments),
            )

        return GenerationStream(
            self._guarded_stream(request),
            on_complete=on_complete,
            documents=documents,
            trace_id=trace.trace_id,
        )

    async def aclose(self) -> None:
        if self._http_pool is not None:
            await self._http_pool.aclose()

    async def __aenter__(self) -> RAGPipeline:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _retrieve(
        self, query: Query, k: int | None, diversify: bool, trace: TraceContext
    ) -> tuple[RetrievalResult, str]:
        k = self._settings.default_k if k is None else k
        with trace.span("retrieval", k=k, diversify=diversify):
            try:
                documents = await self._orchestrator.retrieve(query, k, diversify=diversify)
            except Exception as e:
                logger.error("retrieval_failed", kind=_kind(e), error=str(e))
                raise PipelineError("retrieval", e) from e

        with trace.span("context_assembly"):
            try:
                context = self._assembler.assemble(documents, self._settings.context_max_length)
            except Exception as e:
                logger.error("context_assembly_failed", kind=_kind(e), error=str(e))
                raise PipelineError("retrieval", e) from e
        return documents, context

    async def _guarded_stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        inner = self._generator.generate_stream(request)
        try:
            async for fragment in inner:
                yield fragment
        except Exception as e:
            logger.error("generation_failed", kind=_kind(e), error=str(e), streamed=True)
            raise PipelineError("generation", e) from e
        finally:
            aclose = getattr(inner, "aclose", None)
            if aclose is not None:
                await aclose()

    def _build_request(self, query: Query, context: str, streaming: bool) -> GenerationRequest:
        return GenerationRequest(
            system_instructions=self._system_instructions,
            context=context,
            user_query=query.text,
            streaming=streaming,
        )

    @staticmethod
    def _as_query(query: str | Query) -> Query:
        return Query(text=query) if isinstance(query, str) else query
