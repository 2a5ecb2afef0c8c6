"""Tests for sentence segmentation and the streaming generator."""

import pytest

from sahayak.tutor.llm import StreamChunk
from sahayak.tutor.router import ModelRouter
from sahayak.tutor.streaming import (
    SentenceSegmenter, StreamingGenerator, TokenEvent, SentenceEvent,
    CompleteEvent, ErrorEvent, split_sentences, calculate_cost, estimate_tokens,
    count_tokens, CACHE_MODEL,
)
from sahayak.tutor import streaming
from tests.conftest import FakeLLM, CharEncoding

# The real lookup, before the autouse fixture swaps it out
REAL_ENCODING_LOOKUP = streaming._encoding


async def _collect(events):
    return [event async for event in events]


@pytest.fixture
def route():
    return ModelRouter().route("Explain Newton's second law")


class TestSegmenter:
    def test_sentences_split_on_boundary(self):
        sentences = split_sentences("Force is mass times acceleration. Samjhe? Bahut badhiya!")
        assert [s.text for s in sentences] == [
            "Force is mass times acceleration", "Samjhe", "Bahut badhiya",
        ]
        assert [s.terminator for s in sentences] == [".", "?", "!"]
        assert [s.sequence for s in sentences] == [0, 1, 2]

    def test_danda_is_a_boundary(self):
        sentences = split_sentences("बल द्रव्यमान गुणा त्वरण है। समझ आया?")
        assert [s.spoken for s in sentences] == ["बल द्रव्यमान गुणा त्वरण है।", "समझ आया?"]

    def test_decimal_is_not_a_boundary(self):
        sentences = split_sentences("g is 9.8 m/s^2 on Earth. Yes.")
        assert sentences[0].text == "g is 9.8 m/s^2 on Earth"

    def test_fragments_across_boundaries(self):
        segmenter = SentenceSegmenter()
        emitted = []
        for fragment in ["Chalo ", "samajhte", " hain", ". Pehle", " force", "! Phir"]:
            emitted.extend(segmenter.feed(fragment))
        assert [s.text for s in emitted] == ["Chalo samajhte hain", "Pehle force"]
        tail = segmenter.flush()
        assert tail.text == "Phir"
        assert tail.terminator == ""
        assert tail.sequence == 2

    def test_boundary_needs_following_whitespace(self):
        segmenter = SentenceSegmenter()
        assert segmenter.feed("Wait...") == []
        assert [s.text for s in segmenter.feed(" ok")] == ["Wait"]

    def test_blank_sentences_are_dropped(self):
        sentences = split_sentences("Hello.  .  World.")
        assert [s.text for s in sentences] == ["Hello", "World"]
        assert [s.sequence for s in sentences] == [0, 1]

    def test_flush_on_empty_buffer(self):
        assert SentenceSegmenter().flush() is None


class TestCost:
    def test_cost_formula(self):
        usage = {"prompt_tokens": 500_000, "completion_tokens": 500_000}
        assert calculate_cost(usage, 2.0) == pytest.approx(2.0)

    def test_cost_never_negative(self):
        assert calculate_cost({"prompt_tokens": -50, "completion_tokens": 10}, 1.0) >= 0
        assert calculate_cost({}, 1.0) == 0.0

    def test_estimate_tokens(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2


class BrokenEncoding:
    def encode(self, text, disallowed_special=()):
        raise ValueError("bad input")


class TestTokenCounting:
    def test_counts_with_tokenizer(self):
        text = "न्यूटन का दूसरा नियम"
        assert count_tokens(text, "gpt-4.1-nano") == len(text.replace(" ", ""))
        assert count_tokens(text, "gpt-4.1-nano") > estimate_tokens(text)

    def test_empty_text(self):
        assert count_tokens("", "gpt-4.1-nano") == 0

    def test_estimate_when_no_encoding(self, monkeypatch):
        monkeypatch.setattr(streaming, "_encoding", lambda model=None: None)
        assert count_tokens("abcdefgh", "gpt-4.1-nano") == 2

    def test_estimate_when_encoding_fails(self, monkeypatch):
        monkeypatch.setattr(streaming, "_encoding", lambda model=None: BrokenEncoding())
        assert count_tokens("abcdefgh", "gpt-4.1-nano") == 2

    def test_unknown_model_uses_fallback_encoding(self, monkeypatch):
        def unknown(model):
            raise KeyError(model)

        monkeypatch.setattr(streaming, "_ENCODINGS", {})
        monkeypatch.setattr(streaming.tiktoken, "encoding_for_model", unknown)
        monkeypatch.setattr(streaming.tiktoken, "get_encoding", lambda name: CharEncoding())
        assert isinstance(REAL_ENCODING_LOOKUP("my-finetune"), CharEncoding)

    def test_load_failure_remembered(self, monkeypatch):
        calls = []

        def offline(name):
            calls.append(name)
            raise ConnectionError("no network")

        monkeypatch.setattr(streaming, "_ENCODINGS", {})
        monkeypatch.setattr(streaming.tiktoken, "encoding_for_model", offline)
        assert REAL_ENCODING_LOOKUP("gpt-4.1-nano") is None
        assert REAL_ENCODING_LOOKUP("gpt-4.1-nano") is None
        assert calls == ["gpt-4.1-nano"]


class TestGenerate:
    async def test_event_order(self, route):
        generator = StreamingGenerator(FakeLLM())
        events = await _collect(generator.generate("system", "Explain", route))

        assert isinstance(events[-1], CompleteEvent)
        tokens = [e for e in events if isinstance(e, TokenEvent)]
        sentences = [e for e in events if isinstance(e, SentenceEvent)]
        assert "".join(t.content for t in tokens).strip() == events[-1].text
        assert [s.sequence for s in sentences] == list(range(len(sentences)))
        assert events[-1].sentences == len(sentences) == 3

    async def test_first_sentence_before_stream_ends(self, route):
        generator = StreamingGenerator(FakeLLM())
        events = await _collect(generator.generate("system", "Explain", route))
        first_sentence = next(i for i, e in enumerate(events) if isinstance(e, SentenceEvent))
        last_token = max(i for i, e in enumerate(events) if isinstance(e, TokenEvent))
        assert first_sentence < last_token

    async def test_cost_from_reported_usage(self, route):
        llm = FakeLLM(usage={"prompt_tokens": 1000, "completion_tokens": 1000})
        events = await _collect(StreamingGenerator(llm).generate("system", "q", route))
        complete = events[-1]
        assert complete.usage == {"prompt_tokens": 1000, "completion_tokens": 1000}
        assert complete.cost == pytest.approx(2000 / 1_000_000 * route.cost_per_million)
        assert complete.model == route.model
        assert complete.cached is False

    async def test_cost_estimated_without_usage(self, route):
        llm = FakeLLM(fragments=["Short answer."], usage={})
        events = await _collect(StreamingGenerator(llm).generate("system", "q", route))
        assert events[-1].usage["completion_tokens"] == count_tokens("Short answer.", route.model)
        assert events[-1].cost > 0

    async def test_failure_keeps_partial_and_cost(self, route):
        llm = FakeLLM(fragments=["Pehla sentence. ", "Doosra adh", "ura"], fail_after=2)
        events = await _collect(StreamingGenerator(llm).generate("system", "q", route))

        error = events[-1]
        assert isinstance(error, ErrorEvent)
        assert error.partial_text == "Pehla sentence. Doosra adh"
        assert error.recoverable is True
        assert error.cost > 0
        assert not any(isinstance(e, CompleteEvent) for e in events)
        # Tail is flushed so it can still be spoken
        sentences = [e for e in events if isinstance(e, SentenceEvent)]
        assert [s.text for s in sentences] == ["Pehla sentence", "Doosra adh"]

    async def test_failure_before_first_token(self, route):
        llm = FakeLLM(fail_after=0)
        events = await _collect(StreamingGenerator(llm).generate("system", "q", route))
        assert len(events) == 1
        assert events[0].partial_text == ""

    async def test_malformed_fragments_skipped(self, route):
        class OddLLM:
            async def stream(self, *args, **kwargs):
                yield StreamChunk(content="Theek hai. ")
                yield StreamChunk(content=42)
                yield StreamChunk(content=None)
                yield StreamChunk(content="Aage chalein?")

        events = await _collect(StreamingGenerator(OddLLM()).generate("system", "q", route))
        assert events[-1].text == "Theek hai. Aage chalein?"


class TestReplay:
    async def test_replay_is_free_and_cached(self):
        generator = StreamingGenerator(FakeLLM())
        text = "Newton ka doosra niyam F = ma hai. Samjhe?"
        events = await _collect(generator.replay(text))

        complete = events[-1]
        assert complete.cached is True
        assert complete.cost == 0.0
        assert complete.model == CACHE_MODEL
        assert complete.text == text
        assert [s.spoken for s in events if isinstance(s, SentenceEvent)] == [
            "Newton ka doosra niyam F = ma hai.", "Samjhe?",
        ]
        assert "".join(e.content for e in events if isinstance(e, TokenEvent)) == text

    async def test_replay_never_calls_provider(self):
        llm = FakeLLM()
        await _collect(StreamingGenerator(llm).replay("Cached answer."))
        assert llm.calls == []
