"""Tests for the end-to-end turn pipeline against in-memory storage and fakes."""

import pytest

from sahayak.cache.backend import NullBackend
from sahayak.cache.semantic import SemanticCache
from sahayak.storage import ChatNotFoundError
from sahayak.tutor.context import SessionContext, SessionContextStore
from sahayak.tutor.detectors import LanguageDetection
from sahayak.tutor.pipeline import (
    TutorPipeline, TurnRequest, EmotionDetected, PhaseChanged, TurnPrepared, choose_language,
)
from sahayak.tutor.streaming import (
    StreamingGenerator, TokenEvent, SentenceEvent, CompleteEvent, ErrorEvent,
)
from tests.conftest import FakeEmbedder, FakeLLM

QUESTION = "Newton ka second law kya hai?"


async def _turn(pipeline, message=QUESTION, **kwargs):
    kwargs.setdefault("user_id", "user-1")
    req = TurnRequest(chat_id="chat-1", message=message, **kwargs)
    return [event async for event in pipeline.run_turn(req)]


def _of(events, kind):
    return [e for e in events if isinstance(e, kind)]


class TestFirstTurn:
    """A fresh chat: no session, no context, empty caches."""

    async def test_event_order(self, pipeline, seeded):
        events = await _turn(pipeline)

        assert isinstance(events[0], EmotionDetected)
        prepared = _of(events, TurnPrepared)[0]
        assert events.index(prepared) < events.index(_of(events, TokenEvent)[0])
        assert isinstance(events[-1], CompleteEvent)
        assert _of(events, PhaseChanged) == []

    async def test_turn_prepared(self, pipeline, seeded):
        prepared = _of(await _turn(pipeline), TurnPrepared)[0]
        assert prepared.language == "hinglish"
        assert prepared.intent == "explain"
        assert prepared.emotion == "neutral"
        assert prepared.phase == "greeting"
        assert prepared.persona_id == "priya"
        assert prepared.cached is False
        assert prepared.model == "gpt-4.1-nano"

    async def test_sentences_streamed_in_order(self, pipeline, seeded):
        sentences = _of(await _turn(pipeline), SentenceEvent)
        assert [s.sequence for s in sentences] == [0, 1, 2]
        assert sentences[0].spoken == "Chalo samajhte hain."
        assert sentences[2].spoken == "Samajh aa gaya?"

    async def test_prompt_reflects_language_and_intent(self, pipeline, llm, seeded):
        await _turn(pipeline)
        prompt = llm.calls[0]["system_prompt"]
        assert "natural Hinglish" in prompt
        assert "THIS TURN: Start with \"Chalo samajhte hain...\"" in prompt
        assert "Topic: Newton's laws of motion" in prompt
        assert "Student Name: Riya Sharma" in prompt

    async def test_ledger_and_session(self, pipeline, repo, seeded):
        await _turn(pipeline)

        messages = await repo.get_chat_messages("chat-1")
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[0].meta["intent"] == "explain"
        assert messages[0].meta["detected_language"] == "hinglish"
        assert messages[1].content == (
            "Chalo samajhte hain. Force barabar mass into acceleration hota hai. Samajh aa gaya?"
        )
        assert messages[1].meta["cached"] is False
        assert messages[1].meta["cost"] > 0
        assert messages[1].meta["validation"]["passed"] is True

        session = await repo.get_tutor_session("chat-1")
        assert session.current_phase == "greeting"
        assert session.profile_snapshot["exam_target"] == "JEE"

    async def test_context_updated(self, pipeline, context_store, seeded):
        await _turn(pipeline)
        context = await context_store.get_context("user-1", "chat-1")
        assert context.message_count == 1
        assert context.current_language == "hinglish"
        assert context.current_emotion == "neutral"

    async def test_persona_and_voice_flag(self, pipeline, repo, seeded):
        prepared = _of(await _turn(pipeline, persona_id="amit", voice=True), TurnPrepared)[0]
        assert prepared.persona_id == "amit"
        session = await repo.get_tutor_session("chat-1")
        assert session.voice_enabled is True


class TestSecondTurn:
    """Cache replay, phase auto-advance and context rebuild across turns."""

    async def test_repeat_question_served_from_cache(self, pipeline, llm, seeded):
        await _turn(pipeline)
        events = await _turn(pipeline)

        complete = events[-1]
        assert isinstance(complete, CompleteEvent)
        assert complete.cached is True
        assert complete.model == "cache"
        assert complete.cost == 0.0
        assert len(llm.calls) == 1
        assert _of(events, TurnPrepared)[0].cached is True
        assert len(_of(events, SentenceEvent)) == 3

    async def test_phase_advances_on_threshold(self, pipeline, repo, seeded):
        await _turn(pipeline)
        events = await _turn(pipeline, message="Acceleration ka unit kya hai?")

        changed = _of(events, PhaseChanged)
        assert len(changed) == 1
        assert changed[0].phase == "rapport"
        assert changed[0].progress == 17
        assert _of(events, TurnPrepared)[0].phase == "rapport"
        assert (await repo.get_tutor_session("chat-1")).current_phase == "rapport"

    async def test_evicted_context_rebuilt_from_ledger(self, pipeline, context_store, seeded):
        await _turn(pipeline)
        await context_store.clear_context("user-1", "chat-1")
        await _turn(pipeline, message="Acceleration ka unit kya hai?")

        context = await context_store.get_context("user-1", "chat-1")
        assert len(context.language_history) == 2
        assert context.message_count == 2


class TestFailures:
    async def test_unknown_chat(self, pipeline, seeded):
        req = TurnRequest(chat_id="missing", message="hello")
        with pytest.raises(ChatNotFoundError):
            [event async for event in pipeline.run_turn(req)]

    async def test_foreign_chat_looks_missing(self, pipeline, seeded):
        with pytest.raises(ChatNotFoundError):
            await _turn(pipeline, user_id="user-2")

    async def test_partial_answer_persisted(self, repo, semantic_cache, context_store, seeded):
        llm = FakeLLM(fail_after=2)
        pipeline = TutorPipeline(repo, StreamingGenerator(llm), semantic_cache, context_store)
        events = await _turn(pipeline)

        error = events[-1]
        assert isinstance(error, ErrorEvent)
        assert error.partial_text == "Chalo samajhte hain. Force barabar mass "
        assert [s.spoken for s in _of(events, SentenceEvent)] == [
            "Chalo samajhte hain.", "Force barabar mass",
        ]

        messages = await repo.get_chat_messages("chat-1")
        assert messages[-1].role == "assistant"
        assert messages[-1].meta["partial"] is True
        assert messages[-1].meta["error"] == "upstream reset"
        # Partial answers never enter the cache
        assert await semantic_cache.check(QUESTION) is None

    async def test_failure_before_any_text(self, repo, semantic_cache, context_store, seeded):
        pipeline = TutorPipeline(
            repo, StreamingGenerator(FakeLLM(fail_after=0)), semantic_cache, context_store,
        )
        events = await _turn(pipeline)

        assert isinstance(events[-1], ErrorEvent)
        assert events[-1].partial_text == ""
        messages = await repo.get_chat_messages("chat-1")
        assert [m.role for m in messages] == ["user"]

    async def test_runs_without_shared_cache(self, repo, seeded):
        llm = FakeLLM()
        pipeline = TutorPipeline(
            repo, StreamingGenerator(llm),
            SemanticCache(NullBackend(), FakeEmbedder()),
            SessionContextStore(NullBackend()),
        )
        await _turn(pipeline)
        events = await _turn(pipeline)

        assert isinstance(events[-1], CompleteEvent)
        assert events[-1].cached is False
        assert len(llm.calls) == 2


class TestChooseLanguage:
    def test_confident_detection_wins(self):
        detection = LanguageDetection(label="english", confidence=0.9, confidence_level="high")
        context = SessionContext("u", "c", preferred_language="hinglish")
        assert choose_language(detection, context, "hi") == "english"

    def test_low_confidence_uses_history(self):
        detection = LanguageDetection(label="english", confidence=0.3, confidence_level="low")
        context = SessionContext("u", "c", preferred_language="hinglish")
        assert choose_language(detection, context, "en") == "hinglish"

    def test_low_confidence_without_history_uses_chat(self):
        detection = LanguageDetection(label="english", confidence=0.3, confidence_level="low")
        assert choose_language(detection, None, "hi") == "hinglish"
        assert choose_language(detection, None, None) == "english"
