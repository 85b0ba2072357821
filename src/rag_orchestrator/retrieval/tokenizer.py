"""Text preprocessing for keyword search and lexical similarity."""

from __future__ import annotations

import re

from rag_orchestrator.config.constants import STOPWORDS


def tokenize(text: str) -> list[str]:
    """Tokenize text for BM25: lowercase, strip punctuation, remove stopwords."""
    text = text.lower()
    text = re.sub(r"[^\w\s]", " ", text)
    tokens = text.split()
    return [t for t in tokens if t not in STOPWORDS and len(t) > 1]


def jaccard_similarity(a: str, b: str) -> float:
    """Token-set overlap in [0, 1]; 0.0 when either side has no tokens."""
    ta, tb = set(tokenize(a)), set(tokenize(b))
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)
