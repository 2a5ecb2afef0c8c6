"""
Shared test doubles: in-memory SQLite, in-process cache backend, and
deterministic fake LLM / embedder / TTS / STT.
"""

import hashlib
import asyncio

import pytest

from sahayak.cache.backend import MemoryBackend, NullBackend
from sahayak.cache.semantic import SemanticCache
from sahayak.cache.tts_cache import TTSCache
from sahayak.database import make_engine, make_session_factory, init_db
from sahayak.models import User, Chat
from sahayak.storage import TutorRepository
from sahayak.tutor.context import SessionContextStore
from sahayak.tutor.llm import StreamChunk
from sahayak.tutor.pipeline import TutorPipeline
from sahayak.tutor import streaming
from sahayak.tutor.streaming import StreamingGenerator
from sahayak.voice.dispatcher import SpeechDispatcher
from sahayak.voice.stt import MockSTT
from sahayak.voice.tts import MockTTS, TTSResult


# ─── Fakes ───────────────────────────────────────────────────────────────────

class FakeEmbedder:
    """Bag-of-words hashed into 1024 dims: identical text → identical vector."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("embedding service down")
        vector = [0.0] * 1024
        for word in text.lower().split():
            slot = int(hashlib.md5(word.encode()).hexdigest(), 16) % 1024
            vector[slot] += 1.0
        return vector


class FakeLLM:
    """Streams a fixed answer in fragments; can blow up after N fragments."""

    def __init__(self, fragments=None, usage=None, fail_after=None):
        self.fragments = fragments if fragments is not None else [
            "Chalo samajhte hain. ", "Force barabar mass ", "into acceleration hota hai. ",
            "Samajh aa gaya?",
        ]
        self.usage = usage if usage is not None else {"prompt_tokens": 120, "completion_tokens": 30}
        self.fail_after = fail_after
        self.calls = []

    async def stream(self, system_prompt, user_text, model, **kwargs):
        self.calls.append({"system_prompt": system_prompt, "user_text": user_text, "model": model})
        for i, fragment in enumerate(self.fragments):
            if self.fail_after is not None and i >= self.fail_after:
                raise ConnectionError("upstream reset")
            yield StreamChunk(content=fragment)
            await asyncio.sleep(0)
        if self.usage:
            yield StreamChunk(content=None, usage=self.usage)


class FailingTTS:
    """Fails for any text containing `marker`, otherwise behaves like MockTTS."""

    def __init__(self, marker: str):
        self.marker = marker
        self.inner = MockTTS()

    async def synthesize(self, text, language, voice=None) -> TTSResult:
        if self.marker in text:
            raise RuntimeError("synthesis failed")
        return await self.inner.synthesize(text, language, voice)


class SlowTTS:
    """Per-text delays so completion order differs from sentence order."""

    def __init__(self, delays: dict):
        self.delays = delays
        self.inner = MockTTS()
        self.calls = 0

    async def synthesize(self, text, language, voice=None) -> TTSResult:
        self.calls += 1
        for marker, delay in self.delays.items():
            if marker in text:
                await asyncio.sleep(delay)
        return await self.inner.synthesize(text, language, voice)


class CharEncoding:
    """Tokenizer stand-in: one token per non-space character."""

    def encode(self, text, disallowed_special=()):
        return [c for c in text if not c.isspace()]


# ─── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def offline_tokenizer(monkeypatch):
    """tiktoken downloads encodings on first use; tests never touch the network."""
    monkeypatch.setattr(streaming, "_encoding", lambda model=None: CharEncoding())


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def null_backend():
    return NullBackend()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite:///:memory:")
    init_db(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def repo(session_factory):
    return TutorRepository(session_factory)


@pytest.fixture
def seeded(session_factory):
    """One learner with one Hinglish physics chat."""
    with session_factory() as db:
        user = User(
            id="user-1", email="riya@example.com", first_name="Riya", last_name="Sharma",
            current_class="11", exam_target="JEE", education_board="CBSE", preferred_language="hi",
        )
        chat = Chat(
            id="chat-1", user_id="user-1", title="Newton's laws", language="hi",
            subject="physics", topic="Newton's laws of motion", level="beginner",
        )
        other = User(id="user-2", email="arjun@example.com", first_name="Arjun")
        db.add_all([user, chat, other])
        db.commit()
    return {"user_id": "user-1", "chat_id": "chat-1", "other_user_id": "user-2"}


@pytest.fixture
def semantic_cache(backend, embedder):
    return SemanticCache(backend, embedder, threshold=0.95, ttl=3600, capacity=1000)


@pytest.fixture
def context_store(backend):
    return SessionContextStore(backend)


@pytest.fixture
def tts_cache(backend):
    return TTSCache(backend, ttl=3600, memory_size=100)


@pytest.fixture
def pipeline(repo, llm, semantic_cache, context_store):
    return TutorPipeline(
        repo=repo,
        generator=StreamingGenerator(llm),
        semantic_cache=semantic_cache,
        context_store=context_store,
    )


@pytest.fixture
def services(repo, pipeline, semantic_cache, tts_cache, context_store):
    return {
        "repo": repo,
        "pipeline": pipeline,
        "semantic_cache": semantic_cache,
        "tts_cache": tts_cache,
        "context_store": context_store,
        "dispatcher": SpeechDispatcher(MockTTS(), tts_cache),
        "stt": MockSTT(),
        "default_persona": "priya",
    }
