"""SQLite-backed embedding cache with least-recently-used eviction."""

from __future__ import annotations

import hashlib
import json
import time

import aiosqlite

CREATE_CACHE_TABLE = """
CREATE TABLE IF NOT EXISTS embedding_cache (
    text_hash TEXT PRIMARY KEY,
    embedding TEXT NOT NULL,
    last_used REAL NOT NULL
)
"""

CREATE_LAST_USED_INDEX = """
CREATE INDEX IF NOT EXISTS idx_embedding_cache_last_used ON embedding_cache (last_used)
"""

EVICT_OLDEST = """
DELETE FROM embedding_cache WHERE text_hash IN (
    SELECT text_hash FROM embedding_cache ORDER BY last_used ASC LIMIT ?
)
"""


class EmbeddingCache:
    """Bounded cache; once ``max_entries`` is exceeded the least recently used rows go."""

    def __init__(self, db_path: str, max_entries: int = 10_000) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._db_path = db_path
        self._max_entries = max_entries
        self._clock = 0.0

    async def initialize(self) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(CREATE_CACHE_TABLE)
            await db.execute(CREATE_LAST_USED_INDEX)
            await db.commit()

    async def get(self, text: str) -> list[float] | None:
        result = await self.get_batch([text])
        return result.get(0)

    async def get_batch(self, texts: list[str]) -> dict[int, list[float]]:
        """Return {index: embedding} for texts that are cached, refreshing their recency."""
        if not texts:
            return {}
        hashes = [self._hash(t) for t in texts]
        placeholders = ",".join("?" for _ in hashes)

        by_hash: dict[str, list[float]] = {}
        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute(
                f"SELECT text_hash, embedding FROM embedding_cache WHERE text_hash IN ({placeholders})",
                hashes,
            ) as cursor:
                async for row in cursor:
                    by_hash[row[0]] = json.loads(row[1])
            if by_hash:
                now = self._now()
                await db.executemany(
                    "UPDATE embedding_cache SET last_used = ? WHERE text_hash = ?",
                    [(now, h) for h in by_hash],
                )
                await db.commit()
        return {i: by_hash[h] for i, h in enumerate(hashes) if h in by_hash}

    async def put(self, text: str, embedding: list[float]) -> None:
        await self.put_batch([text], [embedding])

    async def put_batch(self, texts: list[str], embeddings: list[list[float]]) -> None:
        if not texts:
            return
        now = self._now()
        rows = [(self._hash(t), json.dumps(e), now) for t, e in zip(texts, embeddings)]
        async with aiosqlite.connect(self._db_path) as db:
            await db.executemany(
                "INSERT OR REPLACE INTO embedding_cache (text_hash, embedding, last_used) VALUES (?, ?, ?)",
                rows,
            )
            async with db.execute("SELECT COUNT(*) FROM embedding_cache") as cursor:
                (count,) = await cursor.fetchone()
            overflow = count - self._max_entries
            if overflow > 0:
                await db.execute(EVICT_OLDEST, (overflow,))
            await db.commit()

    async def size(self) -> int:
        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM embedding_cache") as cursor:
                (count,) = await cursor.fetchone()
        return count

    def _now(self) -> float:
        # Strictly increasing so recency ties cannot occur within one process.
        self._clock = max(time.time(), self._clock + 1e-6)
        return self._clock

    @staticmethod
    def _hash(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()
