"""
Sahayak v1.0 — Speech Synthesis Dispatcher

One task per sentence, started as soon as the sentence exists:
    TTS cache → synthesize on miss → store → gzip if large → TTS_CHUNK

Tasks finish in any order. Each chunk carries its sentence sequence number so
the client can reorder; the dispatcher never waits to send in order.

Interrupt: `is_active()` is polled before synthesis and handed to `send` as a
guard, which re-checks it once the socket is free to write. Once it returns
False no more audio goes out, even for chunks already queued on the socket.
A synthesis call already in flight is not cancelled, its result is dropped.

Every run: exactly one TTS_START, then chunks / per-sentence errors, then
exactly one TTS_END carrying the number of chunks actually sent.
"""

import gzip
import base64
import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from sahayak.cache.tts_cache import TTSCache
from sahayak.config import TTS_COMPRESS_THRESHOLD
from sahayak.tutor.personas import VoiceParams
from sahayak.tutor.streaming import SentenceEvent
from sahayak.voice.clean_for_tts import clean_for_tts
from sahayak.voice.protocol import TTSStart, TTSChunk, TTSEnd, ErrorMessage, TTS_SENTENCE_FAILED
from sahayak.voice.tts import TTSProvider

logger = logging.getLogger(__name__)

# send(message, guard=None) -> written. A guard returning False skips the write.
SendFn = Callable[..., Awaitable[bool]]


async def drain(queue: asyncio.Queue) -> AsyncIterator:
    """Yield queue items until a None sentinel."""
    while True:
        item = await queue.get()
        if item is None:
            return
        yield item


class SpeechDispatcher:
    def __init__(
        self,
        tts: TTSProvider,
        cache: Optional[TTSCache] = None,
        compress_threshold: int = TTS_COMPRESS_THRESHOLD,
    ):
        self.tts = tts
        self.cache = cache
        self.compress_threshold = compress_threshold

    async def _audio_for(
        self, text: str, language: str, voice: VoiceParams, persona_id: str
    ) -> bytes:
        if self.cache:
            cached = await self.cache.get(text, language, voice.emotion, persona_id)
            if cached is not None:
                return cached

        result = await self.tts.synthesize(text, language, voice)
        if not result.audio_bytes:
            raise ValueError("TTS returned no audio")

        if self.cache:
            await self.cache.set(text, language, result.audio_bytes, voice.emotion, persona_id)
        return result.audio_bytes

    def _encode(self, audio: bytes) -> tuple[str, bool]:
        if len(audio) > self.compress_threshold:
            return base64.b64encode(gzip.compress(audio)).decode(), True
        return base64.b64encode(audio).decode(), False

    async def run(
        self,
        sentences: AsyncIterator[SentenceEvent],
        language: str,
        voice: VoiceParams,
        persona_id: str,
        send: SendFn,
        is_active: Callable[[], bool],
    ) -> int:
        """Speak every sentence from `sentences`. Returns the number of chunks sent."""
        sent = 0
        final_sequence: Optional[int] = None
        tasks: list[asyncio.Task] = []

        await send(TTSStart().wire())

        async def speak(sentence: SentenceEvent) -> None:
            nonlocal sent
            if not is_active():
                return
            text = clean_for_tts(sentence.spoken, language)
            if not text:
                return
            try:
                audio = await self._audio_for(text, language, voice, persona_id)
            except Exception as e:
                logger.warning(f"TTS sentence {sentence.sequence} failed: {e}")
                await send(ErrorMessage(
                    code=TTS_SENTENCE_FAILED,
                    message=f"Could not synthesize sentence {sentence.sequence}",
                    recoverable=True,
                    sequence=sentence.sequence,
                ).wire(), is_active)
                return

            if not is_active():
                return
            data, compressed = self._encode(audio)
            total = None
            if final_sequence is not None and sentence.sequence == final_sequence:
                total = final_sequence + 1
            written = await send(TTSChunk(
                data=data,
                chunk_index=sentence.sequence,
                total_chunks=total,
                compressed=compressed,
                text=sentence.spoken,
            ).wire(), is_active)
            if written:
                sent += 1

        last_seen: Optional[int] = None
        async for sentence in sentences:
            if not is_active():
                # Keep draining so the producer never blocks
                continue
            tasks.append(asyncio.create_task(speak(sentence)))
            last_seen = sentence.sequence

        # From here on the last sequence is known; chunks still in flight can carry the total
        final_sequence = last_seen
        results = await asyncio.gather(*tasks, return_exceptions=True)

        await send(TTSEnd(total_chunks=sent).wire())
        logger.info(f"TTS dispatch: {sent}/{len(tasks)} chunks sent, active={is_active()}")

        for result in results:
            if isinstance(result, Exception):
                raise result
        return sent
