"""Tests for sentence-parallel speech dispatch."""

import gzip
import base64
import asyncio

import pytest

from sahayak.cache.backend import NullBackend
from sahayak.cache.tts_cache import TTSCache
from sahayak.tutor.personas import voice_for
from sahayak.tutor.streaming import split_sentences
from sahayak.voice.dispatcher import SpeechDispatcher, drain
from sahayak.voice.tts import MockTTS
from tests.conftest import FailingTTS, SlowTTS


async def _sentences(text):
    for sentence in split_sentences(text):
        yield sentence


class Recorder:
    def __init__(self):
        self.messages = []

    async def __call__(self, message, guard=None):
        if guard is not None and not guard():
            return False
        self.messages.append(message)
        return True

    def of(self, kind):
        return [m for m in self.messages if m["type"] == kind]


@pytest.fixture
def voice():
    return voice_for("priya", "neutral")


async def _run(dispatcher, text, voice, is_active=lambda: True):
    send = Recorder()
    sent = await dispatcher.run(_sentences(text), "hinglish", voice, "priya", send, is_active)
    return sent, send


class TestDispatch:
    async def test_start_chunks_end(self, voice):
        dispatcher = SpeechDispatcher(MockTTS())
        sent, send = await _run(dispatcher, "Pehla. Doosra! Teesra?", voice)

        assert sent == 3
        assert send.messages[0]["type"] == "TTS_START"
        assert send.messages[-1]["type"] == "TTS_END"
        assert send.messages[-1]["total_chunks"] == 3
        assert len(send.of("TTS_START")) == 1
        assert len(send.of("TTS_END")) == 1
        assert sorted(c["chunk_index"] for c in send.of("TTS_CHUNK")) == [0, 1, 2]

    async def test_chunk_carries_spoken_text_and_audio(self, voice):
        dispatcher = SpeechDispatcher(MockTTS())
        _, send = await _run(dispatcher, "F = ma.", voice)
        chunk = send.of("TTS_CHUNK")[0]
        assert chunk["text"] == "F = ma."
        audio = base64.b64decode(chunk["data"])
        assert audio == b"anushka|hinglish|F equals ma."
        assert chunk["compressed"] is False

    async def test_out_of_order_completion(self, voice):
        tts = SlowTTS({"Pehla": 0.05})
        dispatcher = SpeechDispatcher(tts)
        _, send = await _run(dispatcher, "Pehla. Doosra.", voice)
        order = [c["chunk_index"] for c in send.of("TTS_CHUNK")]
        assert order == [1, 0]

    async def test_total_on_final_chunk_when_known(self, voice):
        tts = SlowTTS({"Teesra": 0.05})
        dispatcher = SpeechDispatcher(tts)
        _, send = await _run(dispatcher, "Pehla. Doosra. Teesra.", voice)
        final = next(c for c in send.of("TTS_CHUNK") if c["chunk_index"] == 2)
        assert final["total_chunks"] == 3
        others = [c for c in send.of("TTS_CHUNK") if c["chunk_index"] != 2]
        assert all("total_chunks" not in c for c in others)

    async def test_large_audio_is_gzipped(self, voice):
        dispatcher = SpeechDispatcher(MockTTS(), compress_threshold=10)
        _, send = await _run(dispatcher, "This sentence is long enough to compress.", voice)
        chunk = send.of("TTS_CHUNK")[0]
        assert chunk["compressed"] is True
        audio = gzip.decompress(base64.b64decode(chunk["data"]))
        assert audio.startswith(b"anushka|hinglish|")

    async def test_empty_stream(self, voice):
        sent, send = await _run(SpeechDispatcher(MockTTS()), "", voice)
        assert sent == 0
        assert [m["type"] for m in send.messages] == ["TTS_START", "TTS_END"]
        assert send.messages[-1]["total_chunks"] == 0


class TestFailures:
    async def test_failed_sentence_does_not_stop_others(self, voice):
        dispatcher = SpeechDispatcher(FailingTTS("Doosra"))
        sent, send = await _run(dispatcher, "Pehla. Doosra. Teesra.", voice)

        assert sent == 2
        errors = send.of("ERROR")
        assert len(errors) == 1
        assert errors[0]["code"] == "TTS_SENTENCE_FAILED"
        assert errors[0]["sequence"] == 1
        assert errors[0]["recoverable"] is True
        assert sorted(c["chunk_index"] for c in send.of("TTS_CHUNK")) == [0, 2]
        assert send.messages[-1]["total_chunks"] == 2


class TestInterrupt:
    async def test_nothing_sent_after_interrupt(self, voice):
        active = {"value": True}
        tts = SlowTTS({"Doosra": 0.05, "Teesra": 0.05})
        dispatcher = SpeechDispatcher(tts)
        send = Recorder()

        async def sentences():
            for sentence in split_sentences("Pehla. Doosra. Teesra."):
                yield sentence
                await asyncio.sleep(0.01)

        async def interrupt_soon():
            await asyncio.sleep(0.02)
            active["value"] = False

        sent, _ = await asyncio.gather(
            dispatcher.run(sentences(), "hinglish", voice, "priya", send, lambda: active["value"]),
            interrupt_soon(),
        )
        assert sent == 1
        assert [c["chunk_index"] for c in send.of("TTS_CHUNK")] == [0]
        assert send.messages[-1]["type"] == "TTS_END"

    async def test_queued_chunks_dropped_after_interrupt(self, voice):
        """Chunks waiting on a busy socket are not written once the turn is interrupted."""
        active = {"value": True}
        lock = asyncio.Lock()
        written = []

        async def socket_send(message, guard=None):
            async with lock:
                if guard is not None and not guard():
                    return False
                written.append((message["type"], message.get("chunk_index"), active["value"]))
                await asyncio.sleep(0.02)
            return True

        async def interrupt_soon():
            await asyncio.sleep(0.03)
            active["value"] = False

        sent, _ = await asyncio.gather(
            SpeechDispatcher(MockTTS()).run(
                _sentences("Pehla. Doosra. Teesra."), "hinglish", voice, "priya",
                socket_send, lambda: active["value"],
            ),
            interrupt_soon(),
        )

        chunks = [w for w in written if w[0] == "TTS_CHUNK"]
        assert all(was_active for _, _, was_active in chunks)
        assert sent == len(chunks) < 3
        assert written[-1][0] == "TTS_END"

    async def test_inactive_from_start(self, voice):
        tts = SlowTTS({})
        sent, send = await _run(SpeechDispatcher(tts), "Pehla. Doosra.", voice, is_active=lambda: False)
        assert sent == 0
        assert tts.calls == 0
        assert send.of("TTS_CHUNK") == []


class TestCaching:
    async def test_repeat_sentence_served_from_cache(self, voice):
        tts = SlowTTS({})
        cache = TTSCache(NullBackend())
        dispatcher = SpeechDispatcher(tts, cache)
        await _run(dispatcher, "Bahut badhiya!", voice)
        await _run(dispatcher, "Bahut badhiya!", voice)
        assert tts.calls == 1

    async def test_emotion_change_resynthesizes(self):
        tts = SlowTTS({})
        dispatcher = SpeechDispatcher(tts, TTSCache(NullBackend()))
        await _run(dispatcher, "Koi baat nahi.", voice_for("priya", "neutral"))
        await _run(dispatcher, "Koi baat nahi.", voice_for("priya", "frustrated"))
        assert tts.calls == 2


class TestDrain:
    async def test_drain_stops_at_sentinel(self):
        queue = asyncio.Queue()
        for item in (1, 2, None, 3):
            queue.put_nowait(item)
        assert [i async for i in drain(queue)] == [1, 2]
