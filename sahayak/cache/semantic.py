"""
Sahayak v1.0 — Semantic Cache
Embedding-similarity cache over previously answered queries.

check(query):  embed, scan the most recent entries (bounded), return the
               first response whose similarity clears the threshold.
store(query, response): evict the oldest entry at capacity, then write.

Advisory only. If the backend is down, check() misses and store() does nothing.
"""

import json
import time
import uuid
import logging
from typing import Optional

import numpy as np

from sahayak.cache.backend import CacheBackend
from sahayak.config import (
    CACHE_NAMESPACE, EMBEDDING_METRIC, SEMANTIC_CACHE_THRESHOLD,
    SEMANTIC_CACHE_TTL, SEMANTIC_CACHE_CAPACITY, SEMANTIC_CACHE_MAX_SCAN,
)
from sahayak.tutor.llm import EmbeddingProvider

logger = logging.getLogger(__name__)


def similarity(a, b, metric: str = "cosine") -> float:
    """Dot product or cosine similarity of two equal-length vectors."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vectors must have same length ({va.shape} vs {vb.shape})")
    dot = float(np.dot(va, vb))
    if metric == "dot":
        return dot
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if not norm:
        return 0.0
    # Float error leaves identical vectors a hair under 1.0
    return round(min(1.0, max(-1.0, dot / norm)), 9)


def _entry_timestamp(key: str) -> int:
    # Keys look like <prefix><µs>:<suffix>
    try:
        return int(key.rsplit(":", 2)[-2])
    except (IndexError, ValueError):
        return 0


class SemanticCache:
    def __init__(
        self,
        backend: CacheBackend,
        embedder: EmbeddingProvider,
        threshold: float = SEMANTIC_CACHE_THRESHOLD,
        ttl: int = SEMANTIC_CACHE_TTL,
        capacity: int = SEMANTIC_CACHE_CAPACITY,
        max_scan: int = SEMANTIC_CACHE_MAX_SCAN,
        metric: str = EMBEDDING_METRIC,
        prefix: str = f"{CACHE_NAMESPACE}:semcache:",
    ):
        self.backend = backend
        self.embedder = embedder
        self.threshold = threshold
        self.ttl = ttl
        self.capacity = capacity
        self.max_scan = max_scan
        self.metric = metric
        self.prefix = prefix
        self._last_stamp = 0

    def _stamp(self) -> int:
        # Strictly increasing per instance so eviction order survives coarse clocks
        self._last_stamp = max(time.time_ns() // 1000, self._last_stamp + 1)
        return self._last_stamp

    async def _keys_newest_first(self) -> list[str]:
        keys = await self.backend.scan_keys(self.prefix)
        return sorted(keys, key=_entry_timestamp, reverse=True)

    async def check(self, query: str) -> Optional[str]:
        if not self.backend.available():
            return None

        start = time.perf_counter()
        try:
            query_embedding = await self.embedder.embed(query)
        except Exception as e:
            logger.warning(f"Semantic cache: embedding failed, treating as miss: {e}")
            return None

        keys = (await self._keys_newest_first())[: self.max_scan]
        if not keys:
            logger.info("Semantic cache: empty")
            return None

        for key in keys:
            entry = await self.backend.hgetall(key)
            if not entry.get("embedding"):
                continue
            try:
                score = similarity(query_embedding, json.loads(entry["embedding"]), self.metric)
            except (ValueError, json.JSONDecodeError) as e:
                logger.warning(f"Semantic cache: skipping bad entry {key}: {e}")
                continue

            if score >= self.threshold:
                await self.backend.expire(key, self.ttl)
                elapsed = int((time.perf_counter() - start) * 1000)
                logger.info(f"Semantic cache HIT: similarity={score:.3f}, {elapsed}ms")
                return entry.get("response")

        elapsed = int((time.perf_counter() - start) * 1000)
        logger.info(f"Semantic cache MISS: checked {len(keys)} entries in {elapsed}ms")
        return None

    async def store(self, query: str, response: str) -> None:
        if not self.backend.available() or not response:
            return

        try:
            embedding = await self.embedder.embed(query)
        except Exception as e:
            logger.warning(f"Semantic cache: embedding failed, not storing: {e}")
            return

        keys = await self._keys_newest_first()
        overflow = len(keys) - self.capacity + 1
        if overflow > 0:
            oldest = keys[-overflow:]
            await self.backend.delete(*oldest)
            logger.info(f"Semantic cache: evicted {len(oldest)} oldest ({len(keys)}/{self.capacity})")

        stamp = self._stamp()
        key = f"{self.prefix}{stamp}:{uuid.uuid4().hex[:8]}"
        await self.backend.hset(key, {
            "query": query,
            "embedding": json.dumps(list(map(float, embedding))),
            "response": response,
            "created_at": str(stamp),
        })
        await self.backend.expire(key, self.ttl)
        logger.info(f"Semantic cache STORE (ttl={self.ttl}s)")

    async def clear(self) -> int:
        keys = await self.backend.scan_keys(self.prefix)
        if keys:
            await self.backend.delete(*keys)
        logger.info(f"Semantic cache cleared {len(keys)} entries")
        return len(keys)

    async def stats(self) -> dict:
        if not self.backend.available():
            return {"size": 0, "status": "disconnected"}
        keys = await self.backend.scan_keys(self.prefix)
        return {
            "size": len(keys),
            "max_size": self.capacity,
            "ttl": self.ttl,
            "threshold": self.threshold,
            "metric": self.metric,
            "status": "connected",
        }
