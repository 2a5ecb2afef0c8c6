"""Tests for the per-chat session context store."""

from datetime import datetime, timezone, timedelta
from types import SimpleNamespace

import pytest

from sahayak.tutor.context import (
    SessionContext, SessionContextStore, preferred_language,
    language_consistency, emotional_stability,
)


def _langs(*labels):
    return [{"language": label, "confidence": 0.8, "timestamp": float(i)} for i, label in enumerate(labels)]


class TestHelpers:
    def test_preferred_needs_three_entries(self):
        assert preferred_language(_langs("hindi", "hindi")) is None

    def test_preferred_is_majority_of_recent(self):
        assert preferred_language(_langs("english", "hinglish", "hinglish")) == "hinglish"

    def test_preferred_uses_last_ten(self):
        history = _langs(*(["english"] * 10 + ["hindi"] * 6))
        assert preferred_language(history) == "hindi"

    def test_consistency(self):
        assert language_consistency(_langs("hindi", "hindi")) == 0.5
        assert language_consistency(_langs("hindi", "hindi", "hindi", "english")) == 0.75

    def test_emotional_stability(self):
        history = [{"emotion": e} for e in ("neutral", "neutral", "confused", "neutral")]
        assert emotional_stability(history) == 0.75
        assert emotional_stability(history[:2]) == 0.5


class TestSerialization:
    def test_hash_round_trip(self):
        context = SessionContext(
            user_id="u", chat_id="c", language_history=_langs("hindi"),
            misconceptions=["inertia"], message_count=4, avg_response_time=812.5,
        )
        restored = SessionContext.from_hash(context.to_hash())
        assert restored == context

    def test_unknown_fields_ignored(self):
        data = SessionContext("u", "c").to_hash()
        data["legacy_field"] = "1"
        assert SessionContext.from_hash(data).chat_id == "c"


class TestStore:
    async def test_missing_context_is_none(self, context_store):
        assert await context_store.get_context("u", "c") is None

    async def test_language_history(self, context_store):
        for label in ("hinglish", "hinglish", "english"):
            await context_store.add_language_detection("u", "c", label, 0.8)
        context = await context_store.get_context("u", "c")
        assert [h["language"] for h in context.language_history] == ["hinglish", "hinglish", "english"]
        assert context.current_language == "english"
        assert context.preferred_language == "hinglish"
        assert context.language_consistency_score == pytest.approx(2 / 3)

    async def test_history_is_bounded(self, backend):
        store = SessionContextStore(backend, history_size=5)
        for i in range(8):
            await store.add_emotion_detection("u", "c", "neutral" if i % 2 else "confused", 0.7)
        context = await store.get_context("u", "c")
        assert len(context.emotional_history) == 5
        assert context.current_emotion == "neutral"

    async def test_update_metrics_rolls_average(self, context_store):
        await context_store.update_metrics("u", "c", response_time_ms=1000, response_quality=0.9)
        await context_store.update_metrics("u", "c", response_time_ms=2000)
        context = await context_store.get_context("u", "c")
        assert context.message_count == 2
        assert context.avg_response_time == pytest.approx(1500)
        assert context.response_quality_score == 0.9

    async def test_learning_context_keeps_unset_fields(self, context_store):
        await context_store.update_learning_context("u", "c", phase="teaching", topic="friction")
        await context_store.update_learning_context("u", "c", misconceptions=["static vs kinetic"])
        context = await context_store.get_context("u", "c")
        assert context.current_phase == "teaching"
        assert context.current_topic == "friction"
        assert context.misconceptions == ["static vs kinetic"]

    async def test_update_context_ignores_unknown_fields(self, context_store):
        context = await context_store.update_context("u", "c", current_topic="work", bogus=1)
        assert context.current_topic == "work"
        assert not hasattr(context, "bogus")

    async def test_ttl_applied(self, backend):
        store = SessionContextStore(backend, ttl=120)
        await store.update_context("u", "c", current_topic="work")
        assert store._key("u", "c") in backend._expiry

    async def test_clear_and_user_sessions(self, context_store):
        await context_store.update_context("u", "c1", current_topic="a")
        await context_store.update_context("u", "c2", current_topic="b")
        await context_store.update_context("v", "c3", current_topic="c")
        assert sorted(await context_store.user_sessions("u")) == ["c1", "c2"]

        await context_store.clear_context("u", "c1")
        assert await context_store.get_context("u", "c1") is None
        assert (await context_store.stats())["total_sessions"] == 2


class TestUnavailable:
    async def test_reads_none_writes_noop(self, null_backend):
        store = SessionContextStore(null_backend)
        assert not store.available()
        assert await store.get_context("u", "c") is None
        assert await store.add_language_detection("u", "c", "hindi", 0.9) is None
        assert await store.add_emotion_detection("u", "c", "neutral", 0.9) is None
        assert await store.update_metrics("u", "c", response_time_ms=10) is None
        assert await store.update_learning_context("u", "c", phase="teaching") is None
        assert (await store.stats())["status"] == "disconnected"


class TestReconstruct:
    async def test_rebuild_from_ledger(self, context_store):
        start = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)
        messages = [
            SimpleNamespace(role="user", created_at=start, meta={
                "detected_language": "hinglish", "language_confidence": 0.7,
                "emotion": "confused", "emotion_confidence": 0.75,
            }),
            SimpleNamespace(role="assistant", created_at=start + timedelta(seconds=2),
                            meta={"latency_ms": 1200}),
            SimpleNamespace(role="user", created_at=start + timedelta(minutes=1), meta={
                "detected_language": "hinglish", "emotion": "neutral",
            }),
            SimpleNamespace(role="assistant", created_at=start + timedelta(minutes=1, seconds=3),
                            meta={"latency_ms": 800}),
        ]
        session = SimpleNamespace(
            user_id="u", chat_id="c", current_phase="teaching", topic="friction",
            subject="physics", adaptive_metrics={"misconceptions": ["mu"], "strong_concepts": []},
        )

        context = await context_store.reconstruct(session, messages)

        assert context.message_count == 2
        assert [h["language"] for h in context.language_history] == ["hinglish", "hinglish"]
        assert context.current_emotion == "neutral"
        assert context.avg_response_time == pytest.approx(1000)
        assert context.current_phase == "teaching"
        assert context.misconceptions == ["mu"]
        assert (await context_store.get_context("u", "c")) == context
