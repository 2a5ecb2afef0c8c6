"""
Sahayak v1.0 — TTS Abstraction Layer
Sarvam Bulbul over async httpx. One request per sentence (sentences are short,
so no chunking). Voice = persona speaker + emotion prosody.
Swap providers by changing config.TTS_PROVIDER.
"""

import time
import base64
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from sahayak.config import (
    SARVAM_API_KEY, SARVAM_TTS_URL, TTS_MODEL, TTS_SAMPLE_RATE, TTS_MAX_CHARS,
    VOICE_HTTP_TIMEOUT_SECONDS, LANGUAGE_CODES,
)
from sahayak.tutor.personas import VoiceParams

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    """An upstream speech/LLM provider call failed. Recoverable for the turn."""


@dataclass
class TTSResult:
    audio_bytes: bytes
    latency_ms: int
    provider: str


class TTSProvider(Protocol):
    async def synthesize(self, text: str, language: str, voice: VoiceParams) -> TTSResult: ...


# ─── Mock TTS (tests, local dev without keys) ────────────────────────────────

class MockTTS:
    """Deterministic fake audio: the UTF-8 text itself. Lets tests compare bytes."""

    async def synthesize(self, text: str, language: str = "english", voice: VoiceParams = None) -> TTSResult:
        logger.info(f"TTS [mock]: '{text[:50]}'")
        speaker = voice.speaker if voice else "mock"
        return TTSResult(
            audio_bytes=f"{speaker}|{language}|{text}".encode(),
            latency_ms=0,
            provider="mock",
        )


# ─── Sarvam Bulbul ───────────────────────────────────────────────────────────

class SarvamBulbulTTS:
    """Sarvam Bulbul: Indian voices with pitch / pace / loudness control."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client or httpx.AsyncClient(timeout=VOICE_HTTP_TIMEOUT_SECONDS)

    async def close(self) -> None:
        await self._client.aclose()

    async def synthesize(self, text: str, language: str, voice: VoiceParams) -> TTSResult:
        if len(text) > TTS_MAX_CHARS:
            text = text[:TTS_MAX_CHARS - 3] + "..."
            logger.warning(f"TTS text truncated to {TTS_MAX_CHARS} chars")

        payload = {
            "inputs": [text],
            "target_language_code": LANGUAGE_CODES.get(language, "en-IN"),
            "speaker": voice.speaker,
            "pitch": voice.pitch,
            "pace": voice.pace,
            "loudness": voice.loudness,
            "speech_sample_rate": TTS_SAMPLE_RATE,
            "enable_preprocessing": True,
            "model": TTS_MODEL,
        }
        headers = {
            "api-subscription-key": SARVAM_API_KEY,
            "Content-Type": "application/json",
        }

        start = time.perf_counter()
        try:
            response = await self._client.post(SARVAM_TTS_URL, json=payload, headers=headers)
            if response.status_code != 200:
                logger.error(f"TTS [sarvam] HTTP {response.status_code}: {response.text[:200]}")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            elapsed = int((time.perf_counter() - start) * 1000)
            logger.error(f"TTS [sarvam] error after {elapsed}ms: {e}")
            raise ProviderError(f"Sarvam TTS failed: {e}") from e

        elapsed = int((time.perf_counter() - start) * 1000)
        audio_b64 = (data.get("audios") or [""])[0]
        if not audio_b64:
            raise ProviderError("Empty audio response from Sarvam")
        audio_bytes = base64.b64decode(audio_b64)

        logger.info(
            f"TTS [sarvam]: {elapsed}ms, {len(audio_bytes)} bytes, "
            f"lang={payload['target_language_code']}, speaker={voice.speaker}, emotion={voice.emotion}"
        )
        return TTSResult(audio_bytes=audio_bytes, latency_ms=elapsed, provider="sarvam_bulbul")


# ─── Factory ─────────────────────────────────────────────────────────────────

_providers = {
    "sarvam_bulbul": SarvamBulbulTTS,
    "mock": MockTTS,
}

_instance: Optional[TTSProvider] = None


def get_tts() -> TTSProvider:
    global _instance
    if _instance is None:
        from sahayak.config import TTS_PROVIDER
        cls = _providers.get(TTS_PROVIDER)
        if not cls:
            raise ValueError(f"Unknown TTS provider: {TTS_PROVIDER}")
        _instance = cls()
    return _instance
