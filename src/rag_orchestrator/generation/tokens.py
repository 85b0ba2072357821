"""Token-count estimation shared by generation clients."""

from __future__ import annotations

from functools import lru_cache

import tiktoken

from rag_orchestrator.config.constants import DEFAULT_TOKEN_ENCODING


@lru_cache(maxsize=8)
def _encoding(name: str) -> tiktoken.Encoding:
    return tiktoken.get_encoding(name)


def count_tokens(text: str, encoding: str = DEFAULT_TOKEN_ENCODING) -> int:
    if not text:
        return 0
    return len(_encoding(encoding).encode(text))
