"""
Sahayak v1.0 — Shared Cache Backends
Capability-checked key/value store behind the semantic cache, the TTS cache
and the session context store.

Callers branch on `available()` instead of catching exceptions. A backend
that loses its connection flips to unavailable, logs once, and turns every
operation into a no-op returning an empty result.
"""

import time
import logging
from typing import Optional, Protocol, Union

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

Value = Union[bytes, str]


class CacheBackend(Protocol):
    def available(self) -> bool: ...
    async def get(self, key: str) -> Optional[bytes]: ...
    async def set(self, key: str, value: Value, ttl: Optional[int] = None) -> None: ...
    async def hset(self, key: str, mapping: dict[str, str]) -> None: ...
    async def hgetall(self, key: str) -> dict[str, str]: ...
    async def expire(self, key: str, ttl: int) -> None: ...
    async def delete(self, *keys: str) -> None: ...
    async def scan_keys(self, prefix: str) -> list[str]: ...


def _to_bytes(value: Value) -> bytes:
    return value.encode() if isinstance(value, str) else value


# ─── Redis ───────────────────────────────────────────────────────────────────

class RedisBackend:
    """redis.asyncio client with silent degradation."""

    def __init__(self, url: str, client: Optional[redis.Redis] = None):
        self._url = url
        self._client = client or redis.from_url(
            url,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=False,
        )
        self._ready = False
        self._error_logged = False

    async def connect(self) -> bool:
        try:
            await self._client.ping()
            self._ready = True
            self._error_logged = False
            logger.info("Cache [redis]: connected")
        except (RedisError, OSError) as e:
            self._mark_down(e)
        return self._ready

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except (RedisError, OSError):
            pass
        self._ready = False

    def available(self) -> bool:
        return self._ready

    def _mark_down(self, error: Exception) -> None:
        self._ready = False
        if not self._error_logged:
            logger.warning(f"Cache [redis] unavailable, degrading to no-cache: {error}")
            self._error_logged = True

    async def get(self, key: str) -> Optional[bytes]:
        if not self._ready:
            return None
        try:
            return await self._client.get(key)
        except (RedisError, OSError) as e:
            self._mark_down(e)
            return None

    async def set(self, key: str, value: Value, ttl: Optional[int] = None) -> None:
        if not self._ready:
            return
        try:
            await self._client.set(key, _to_bytes(value), ex=ttl)
        except (RedisError, OSError) as e:
            self._mark_down(e)

    async def hset(self, key: str, mapping: dict[str, str]) -> None:
        if not self._ready:
            return
        try:
            await self._client.hset(key, mapping=mapping)
        except (RedisError, OSError) as e:
            self._mark_down(e)

    async def hgetall(self, key: str) -> dict[str, str]:
        if not self._ready:
            return {}
        try:
            raw = await self._client.hgetall(key)
        except (RedisError, OSError) as e:
            self._mark_down(e)
            return {}
        return {
            (k.decode() if isinstance(k, bytes) else k): (v.decode() if isinstance(v, bytes) else v)
            for k, v in raw.items()
        }

    async def expire(self, key: str, ttl: int) -> None:
        if not self._ready:
            return
        try:
            await self._client.expire(key, ttl)
        except (RedisError, OSError) as e:
            self._mark_down(e)

    async def delete(self, *keys: str) -> None:
        if not self._ready or not keys:
            return
        try:
            await self._client.delete(*keys)
        except (RedisError, OSError) as e:
            self._mark_down(e)

    async def scan_keys(self, prefix: str) -> list[str]:
        """Non-blocking SCAN over a key prefix."""
        if not self._ready:
            return []
        keys = []
        try:
            async for key in self._client.scan_iter(match=f"{prefix}*", count=100):
                keys.append(key.decode() if isinstance(key, bytes) else key)
        except (RedisError, OSError) as e:
            self._mark_down(e)
            return []
        return keys


# ─── In-process ──────────────────────────────────────────────────────────────

class MemoryBackend:
    """
    Single-process stand-in for Redis (REDIS_DISABLED=true, local dev, tests).
    Same TTL semantics, no cross-process sharing.
    """

    def __init__(self):
        self._values: dict[str, bytes] = {}
        self._hashes: dict[str, dict[str, str]] = {}
        self._expiry: dict[str, float] = {}

    def available(self) -> bool:
        return True

    def _alive(self, key: str) -> bool:
        expires_at = self._expiry.get(key)
        if expires_at is not None and expires_at <= time.monotonic():
            self._values.pop(key, None)
            self._hashes.pop(key, None)
            self._expiry.pop(key, None)
            return False
        return key in self._values or key in self._hashes

    async def get(self, key: str) -> Optional[bytes]:
        return self._values.get(key) if self._alive(key) else None

    async def set(self, key: str, value: Value, ttl: Optional[int] = None) -> None:
        self._values[key] = _to_bytes(value)
        if ttl:
            self._expiry[key] = time.monotonic() + ttl
        else:
            self._expiry.pop(key, None)

    async def hset(self, key: str, mapping: dict[str, str]) -> None:
        self._alive(key)
        self._hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self._hashes.get(key, {})) if self._alive(key) else {}

    async def expire(self, key: str, ttl: int) -> None:
        if self._alive(key):
            self._expiry[key] = time.monotonic() + ttl

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._values.pop(key, None)
            self._hashes.pop(key, None)
            self._expiry.pop(key, None)

    async def scan_keys(self, prefix: str) -> list[str]:
        keys = [k for k in list(self._values) + list(self._hashes) if k.startswith(prefix)]
        return [k for k in keys if self._alive(k)]


class NullBackend:
    """Always unavailable. Every caller degrades to stateless behaviour."""

    def available(self) -> bool:
        return False

    async def get(self, key: str) -> Optional[bytes]:
        return None

    async def set(self, key: str, value: Value, ttl: Optional[int] = None) -> None:
        return None

    async def hset(self, key: str, mapping: dict[str, str]) -> None:
        return None

    async def hgetall(self, key: str) -> dict[str, str]:
        return {}

    async def expire(self, key: str, ttl: int) -> None:
        return None

    async def delete(self, *keys: str) -> None:
        return None

    async def scan_keys(self, prefix: str) -> list[str]:
        return []


# ─── Factory ─────────────────────────────────────────────────────────────────

async def create_backend() -> CacheBackend:
    """Redis when configured and reachable, else the in-process store."""
    from sahayak.config import REDIS_URL, REDIS_DISABLED

    if REDIS_DISABLED:
        logger.info("Cache: REDIS_DISABLED=true, using in-process store")
        return MemoryBackend()

    backend = RedisBackend(REDIS_URL)
    await backend.connect()
    return backend
