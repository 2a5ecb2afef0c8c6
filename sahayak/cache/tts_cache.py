"""
Sahayak v1.0 — TTS Cache (two tiers)

Tier 1: in-process OrderedDict, insertion-order eviction, per-entry TTL.
Tier 2: shared backend (Redis), same key, same TTL.

Key = sha256 of normalized text + language + emotion + persona. A change in
any of the four is a different utterance and must miss.
"""

import time
import hashlib
import asyncio
import logging
from collections import OrderedDict
from typing import Optional, Callable, Awaitable, Dict, Any

from sahayak.cache.backend import CacheBackend
from sahayak.config import CACHE_NAMESPACE, TTS_CACHE_TTL, TTS_MEMORY_CACHE_SIZE
from sahayak.voice.clean_for_tts import clean_for_tts

logger = logging.getLogger(__name__)

# Phrases every lesson says sooner or later; warmed at startup
COMMON_PHRASES = [
    "Let me explain.",
    "For example.",
    "Do you understand?",
    "Let's try.",
    "Very good!",
    "That's correct!",
    "Not quite.",
    "Try again.",
    "चलिए समझते हैं।",
    "उदाहरण के लिए।",
    "समझ आया?",
    "बहुत अच्छे!",
]


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def cache_key(text: str, language: str, emotion: str = "neutral", persona: str = "") -> str:
    """Deterministic key over everything that changes the audio."""
    raw = f"{_normalize(text)}|{language}|{emotion or 'neutral'}|{persona or 'default'}"
    return hashlib.sha256(raw.encode()).hexdigest()


class TTSCache:
    def __init__(
        self,
        backend: CacheBackend,
        ttl: int = TTS_CACHE_TTL,
        memory_size: int = TTS_MEMORY_CACHE_SIZE,
        prefix: str = f"{CACHE_NAMESPACE}:tts:",
    ):
        self.backend = backend
        self.ttl = ttl
        self.memory_size = memory_size
        self.prefix = prefix
        self._memory: "OrderedDict[str, tuple[bytes, float]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    # ─── Memory tier ─────────────────────────────────────────────────────────

    def _memory_get(self, key: str) -> Optional[bytes]:
        item = self._memory.get(key)
        if item is None:
            return None
        audio, expires_at = item
        if expires_at <= time.monotonic():
            del self._memory[key]
            return None
        return audio

    def _memory_set(self, key: str, audio: bytes, ttl: int) -> None:
        # Insertion order, not LRU: a re-set keeps its original slot
        if key not in self._memory and len(self._memory) >= self.memory_size:
            self._memory.popitem(last=False)
        self._memory[key] = (audio, time.monotonic() + ttl)

    # ─── Public API ──────────────────────────────────────────────────────────

    async def get(
        self,
        text: str,
        language: str,
        emotion: str = "neutral",
        persona: str = "",
    ) -> Optional[bytes]:
        key = cache_key(text, language, emotion, persona)

        audio = self._memory_get(key)
        if audio is not None:
            self.hits += 1
            logger.debug(f"TTS cache HIT [memory]: '{text[:40]}'")
            return audio

        if self.backend.available():
            audio = await self.backend.get(self.prefix + key)
            if audio is not None:
                self._memory_set(key, audio, self.ttl)
                self.hits += 1
                logger.debug(f"TTS cache HIT [shared]: '{text[:40]}'")
                return audio

        self.misses += 1
        return None

    async def set(
        self,
        text: str,
        language: str,
        audio: bytes,
        emotion: str = "neutral",
        persona: str = "",
        ttl: Optional[int] = None,
    ) -> None:
        if not audio:
            return
        ttl = ttl or self.ttl
        key = cache_key(text, language, emotion, persona)
        self._memory_set(key, audio, ttl)
        if self.backend.available():
            await self.backend.set(self.prefix + key, audio, ttl=ttl)

    async def clear(self) -> None:
        self._memory.clear()
        keys = await self.backend.scan_keys(self.prefix)
        if keys:
            await self.backend.delete(*keys)
        logger.info(f"TTS cache cleared ({len(keys)} shared entries)")

    def is_common_phrase(self, text: str) -> bool:
        normalized = _normalize(text)
        return any(_normalize(p).rstrip(".!?।") in normalized for p in COMMON_PHRASES)

    def stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "memory_entries": len(self._memory),
            "memory_max": self.memory_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total, 3) if total else 0.0,
            "shared": "connected" if self.backend.available() else "disconnected",
        }

    async def warmup(
        self,
        tts_func: Callable[[str, str], Awaitable[bytes]],
        persona: str = "",
        emotion: str = "neutral",
    ) -> Dict[str, int]:
        """
        Synthesize COMMON_PHRASES that are not cached yet, keyed the way the
        speech dispatcher looks sentences up: cleaned text, turn language,
        emotion and persona. Devanagari phrases are warmed for hindi and
        hinglish turns, Latin ones for english and hinglish.
        Failures are logged per phrase; warmup never raises.
        """
        jobs = []
        for phrase in COMMON_PHRASES:
            devanagari = any("ऀ" <= c <= "ॿ" for c in phrase)
            for language in ("hindi", "hinglish") if devanagari else ("english", "hinglish"):
                jobs.append((clean_for_tts(phrase, language), language))
        stats = {"total": len(jobs), "cached": 0, "generated": 0, "failed": 0}

        async def _warm(text: str, language: str) -> None:
            if await self.get(text, language, emotion, persona) is not None:
                stats["cached"] += 1
                return
            try:
                audio = await tts_func(text, language)
            except Exception as e:
                logger.error(f"TTS warmup failed for '{text}' ({language}): {e}")
                stats["failed"] += 1
                return
            if audio:
                await self.set(text, language, audio, emotion, persona, ttl=self.ttl * 2)
                stats["generated"] += 1
            else:
                stats["failed"] += 1

        await asyncio.gather(*(_warm(text, language) for text, language in jobs))
        logger.info(f"TTS warmup complete: {stats}")
        return stats
