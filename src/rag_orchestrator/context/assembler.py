"""Formats retrieved documents into a bounded context block."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from rag_orchestrator.models.domain import Document
from rag_orchestrator.observability.logger import get_logger

logger = get_logger("context_assembler")


class ContextAssembler:
    """Joins whole documents with a delimiter without exceeding a length budget.

    ``length_fn`` measures text; ``len`` gives a character budget, a client's
    ``count_tokens`` gives a token budget. Documents are never split: one that
    does not fit is dropped and the following documents are still tried, so
    the shortest document always fits when the budget allows it.
    """

    def __init__(
        self,
        delimiter: str = "\n\n",
        length_fn: Callable[[str], int] = len,
    ) -> None:
        self._delimiter = delimiter
        self._length_fn = length_fn

    def assemble(self, docs: Iterable[Document], max_length: int) -> str:
        if max_length <= 0:
            raise ValueError(f"max_length must be positive, got {max_length}")

        parts: list[str] = []
        used = 0
        dropped = 0
        delimiter_len = self._length_fn(self._delimiter) if self._delimiter else 0
        for doc in docs:
            size = self._length_fn(doc.content)
            extra = size + (delimiter_len if parts else 0)
            if used + extra > max_length:
                dropped += 1
                continue
            parts.append(doc.content)
            used += extra

        if dropped:
            logger.debug("context_truncated", kept=len(parts), dropped=dropped, length=used)
        return self._delimiter.join(parts)
