"""
Sahayak v1.0 — STT Abstraction Layer
Swap providers by changing config.STT_PROVIDER.
Default: Sarvam Saarika (Hindi-English code-mixing natively).
Fallback: Groq Whisper (STT_PROVIDER=groq_whisper).
"""

import io
import re
import math
import time
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from sahayak.config import (
    STT_CONFIDENCE_THRESHOLD, GROQ_API_KEY, GROQ_WHISPER_MODEL, GROQ_STT_URL,
    SARVAM_API_KEY, SARVAM_STT_URL, VOICE_HTTP_TIMEOUT_SECONDS, LANGUAGE_CODES,
)
from sahayak.voice.tts import ProviderError

logger = logging.getLogger(__name__)

# European accented chars: Whisper hallucinating on Indian speech
_GARBLE_PATTERN = re.compile(r'[àáâãäåæçèéêëìíîïñòóôõùúûüý]', re.IGNORECASE)


def is_garbled(text: str) -> bool:
    if not text or len(text.strip()) < 2:
        return True
    return bool(_GARBLE_PATTERN.search(text))


@dataclass
class STTResult:
    text: str
    confidence: float
    language_detected: str
    latency_ms: int
    garbled: bool = False


class STTProvider(Protocol):
    async def transcribe(self, audio: bytes, language: str = "hinglish") -> STTResult: ...


# ─── Mock ────────────────────────────────────────────────────────────────────

class MockSTT:
    """Treats the audio bytes as UTF-8 text. For tests and local dev."""

    async def transcribe(self, audio: bytes, language: str = "hinglish") -> STTResult:
        text = audio.decode("utf-8", errors="ignore").strip()
        return STTResult(
            text=text,
            confidence=0.95 if text else 0.0,
            language_detected=LANGUAGE_CODES.get(language, "hi-IN"),
            latency_ms=0,
            garbled=not text,
        )


# ─── Groq Whisper ────────────────────────────────────────────────────────────

class GroqWhisperSTT:
    """Groq-hosted Whisper large-v3-turbo. OpenAI-compatible multipart API."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client or httpx.AsyncClient(timeout=VOICE_HTTP_TIMEOUT_SECONDS)

    async def transcribe(self, audio: bytes, language: str = "hinglish") -> STTResult:
        # Whisper wants ISO-639-1; force it to avoid garbage on Indian accents
        whisper_lang = LANGUAGE_CODES.get(language, "hi-IN").split("-")[0]
        files = {"file": ("audio.webm", io.BytesIO(audio), "audio/webm")}
        data = {
            "model": GROQ_WHISPER_MODEL,
            "response_format": "verbose_json",
            "language": whisper_lang,
        }
        headers = {"Authorization": f"Bearer {GROQ_API_KEY}"}

        start = time.perf_counter()
        try:
            response = await self._client.post(GROQ_STT_URL, files=files, data=data, headers=headers)
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            elapsed = int((time.perf_counter() - start) * 1000)
            logger.error(f"STT [groq] error after {elapsed}ms: {e}")
            raise ProviderError(f"Groq STT failed: {e}") from e

        elapsed = int((time.perf_counter() - start) * 1000)
        text = result.get("text", "").strip()

        # avg_logprob per segment → 0-1 confidence
        segments = result.get("segments", [])
        if segments:
            avg = sum(s.get("avg_logprob", -1.0) for s in segments) / len(segments)
            confidence = math.exp(avg)
        else:
            confidence = 0.5

        garbled = is_garbled(text)
        if garbled:
            confidence = 0.0
            logger.warning(f"STT [groq]: garbled transcription: '{text[:50]}'")

        detected = result.get("language", whisper_lang)
        logger.info(f"STT [groq]: {elapsed}ms, conf={confidence:.2f}, lang={detected}, text='{text[:50]}'")
        return STTResult(
            text=text, confidence=confidence, language_detected=detected,
            latency_ms=elapsed, garbled=garbled,
        )


# ─── Sarvam Saarika ──────────────────────────────────────────────────────────

class SarvamSaarikaSTT:
    """Sarvam Saarika: Indian languages with native code-mixed speech support."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client or httpx.AsyncClient(timeout=VOICE_HTTP_TIMEOUT_SECONDS)

    async def transcribe(self, audio: bytes, language: str = "hinglish") -> STTResult:
        files = {"file": ("audio.webm", io.BytesIO(audio), "audio/webm")}
        data = {
            "model": "saarika:v2.5",
            "language_code": LANGUAGE_CODES.get(language, "hi-IN"),
            "with_timestamps": "false",
        }
        headers = {"api-subscription-key": SARVAM_API_KEY}

        start = time.perf_counter()
        try:
            response = await self._client.post(SARVAM_STT_URL, files=files, data=data, headers=headers)
            if response.status_code != 200:
                logger.error(f"STT [saarika] HTTP {response.status_code}: {response.text[:200]}")
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            elapsed = int((time.perf_counter() - start) * 1000)
            logger.error(f"STT [saarika] error after {elapsed}ms: {e}")
            raise ProviderError(f"Sarvam STT failed: {e}") from e

        elapsed = int((time.perf_counter() - start) * 1000)
        text = result.get("transcript", "").strip()
        detected = result.get("language_code", data["language_code"])
        garbled = is_garbled(text)
        confidence = 0.0 if garbled else 0.8

        logger.info(f"STT [saarika]: {elapsed}ms, lang={detected}, garbled={garbled}, text='{text[:80]}'")
        return STTResult(
            text=text, confidence=confidence, language_detected=detected,
            latency_ms=elapsed, garbled=garbled,
        )


# ─── Factory ─────────────────────────────────────────────────────────────────

_providers = {
    "groq_whisper": GroqWhisperSTT,
    "sarvam_saarika": SarvamSaarikaSTT,
    "mock": MockSTT,
}

_instance: Optional[STTProvider] = None


def get_stt() -> STTProvider:
    global _instance
    if _instance is None:
        from sahayak.config import STT_PROVIDER
        cls = _providers.get(STT_PROVIDER)
        if not cls:
            raise ValueError(f"Unknown STT provider: {STT_PROVIDER}")
        _instance = cls()
    return _instance


def is_low_confidence(result: STTResult) -> bool:
    return result.garbled or result.confidence < STT_CONFIDENCE_THRESHOLD
