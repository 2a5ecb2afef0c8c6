"""
Sahayak v1.0 — Streaming Response Generator

Streams the LLM answer token by token and cuts it into sentences as they
complete, so TTS can start on sentence 0 while sentence 1 is still being
generated.

Event order for one turn:
    TokenEvent*  interleaved with  SentenceEvent*  then  CompleteEvent | ErrorEvent

Sentence sequence numbers are zero-based and assigned in arrival order.
"""

import re
import time
import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional, Union

import tiktoken

from sahayak.config import LLM_MAX_TOKENS, LLM_TEMPERATURE
from sahayak.tutor.llm import CompletionProvider
from sahayak.tutor.router import RouteDecision

logger = logging.getLogger(__name__)

# Sentence boundary: . ! ? or Hindi danda, followed by whitespace
SENTENCE_BOUNDARY = re.compile(r'([.!?।]+)\s+')
_TRAILING_MARK = re.compile(r'([.!?।]+)$')
_WORD = re.compile(r'\S+\s*')

CACHE_MODEL = "cache"


# ─── Events ──────────────────────────────────────────────────────────────────

@dataclass
class TokenEvent:
    content: str


@dataclass
class SentenceEvent:
    text: str           # without the boundary mark
    terminator: str     # ".", "?", "।", "" for an unterminated tail
    sequence: int

    @property
    def spoken(self) -> str:
        return self.text + self.terminator


@dataclass
class CompleteEvent:
    text: str
    model: str
    cost: float
    usage: dict = field(default_factory=dict)
    cached: bool = False
    sentences: int = 0
    latency_ms: int = 0


@dataclass
class ErrorEvent:
    message: str
    partial_text: str
    cost: float
    model: str
    recoverable: bool = True
    sentences: int = 0


StreamEvent = Union[TokenEvent, SentenceEvent, CompleteEvent, ErrorEvent]


# ─── Cost ────────────────────────────────────────────────────────────────────

FALLBACK_ENCODING = "cl100k_base"

# model -> tiktoken encoding, or None once loading it has failed
_ENCODINGS: dict = {}


def _encoding(model: Optional[str] = None):
    key = model or FALLBACK_ENCODING
    if key not in _ENCODINGS:
        try:
            try:
                encoding = tiktoken.encoding_for_model(key)
            except KeyError:
                encoding = tiktoken.get_encoding(FALLBACK_ENCODING)
        except Exception as e:
            logger.warning(f"Token counting: no tiktoken encoding for {key}, estimating: {e}")
            encoding = None
        _ENCODINGS[key] = encoding
    return _ENCODINGS[key]


def estimate_tokens(text: str) -> int:
    """~4 characters per token, for when no tokenizer can be loaded."""
    return (len(text or "") + 3) // 4


def count_tokens(text: str, model: Optional[str] = None) -> int:
    """Tokens under the model's tiktoken encoding. Used only when the provider reports no usage."""
    if not text:
        return 0
    encoding = _encoding(model)
    if encoding is None:
        return estimate_tokens(text)
    try:
        return len(encoding.encode(text, disallowed_special=()))
    except Exception as e:
        logger.warning(f"Token counting failed, estimating: {e}")
        return estimate_tokens(text)


def calculate_cost(usage: dict, cost_per_million: float) -> float:
    tokens = max(0, usage.get("prompt_tokens", 0)) + max(0, usage.get("completion_tokens", 0))
    return max(0.0, tokens / 1_000_000 * max(0.0, cost_per_million))


# ─── Segmentation ────────────────────────────────────────────────────────────

class SentenceSegmenter:
    """Incremental splitter. Keeps token arrival order; never reorders."""

    def __init__(self):
        self._buffer = ""
        self._next_sequence = 0

    @property
    def count(self) -> int:
        return self._next_sequence

    def _emit(self, text: str, terminator: str) -> Optional[SentenceEvent]:
        text = text.strip()
        if not text:
            return None
        event = SentenceEvent(text=text, terminator=terminator, sequence=self._next_sequence)
        self._next_sequence += 1
        return event

    def feed(self, fragment: str) -> list[SentenceEvent]:
        self._buffer += fragment
        sentences = []
        while True:
            match = SENTENCE_BOUNDARY.search(self._buffer)
            if not match:
                break
            event = self._emit(self._buffer[:match.start()], match.group(1))
            self._buffer = self._buffer[match.end():]
            if event:
                sentences.append(event)
        return sentences

    def flush(self) -> Optional[SentenceEvent]:
        """Emit whatever is left once the stream ends."""
        tail = self._buffer.strip()
        self._buffer = ""
        match = _TRAILING_MARK.search(tail)
        if match:
            return self._emit(tail[:match.start()], match.group(1))
        return self._emit(tail, "")


def split_sentences(text: str) -> list[SentenceEvent]:
    segmenter = SentenceSegmenter()
    sentences = segmenter.feed(text)
    tail = segmenter.flush()
    if tail:
        sentences.append(tail)
    return sentences


# ─── Generator ───────────────────────────────────────────────────────────────

class StreamingGenerator:
    def __init__(
        self,
        provider: CompletionProvider,
        max_tokens: int = LLM_MAX_TOKENS,
        temperature: float = LLM_TEMPERATURE,
    ):
        self.provider = provider
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def generate(
        self,
        system_prompt: str,
        user_text: str,
        route: RouteDecision,
    ) -> AsyncIterator[StreamEvent]:
        segmenter = SentenceSegmenter()
        parts: list[str] = []
        usage: dict = {}
        start = time.perf_counter()

        try:
            stream = self.provider.stream(
                system_prompt, user_text, route.model,
                max_tokens=self.max_tokens, temperature=self.temperature,
            )
            async for chunk in stream:
                chunk_usage = getattr(chunk, "usage", None)
                if chunk_usage:
                    usage = chunk_usage

                content = getattr(chunk, "content", None)
                if content is None:
                    continue
                if not isinstance(content, str):
                    logger.warning(f"Stream [{route.model}]: skipping malformed fragment {type(content).__name__}")
                    continue

                parts.append(content)
                yield TokenEvent(content=content)
                for sentence in segmenter.feed(content):
                    yield sentence

        except Exception as e:
            elapsed = int((time.perf_counter() - start) * 1000)
            partial = "".join(parts)
            estimated = {
                "prompt_tokens": count_tokens(system_prompt, route.model) + count_tokens(user_text, route.model),
                "completion_tokens": count_tokens(partial, route.model),
            }
            cost = calculate_cost(estimated, route.cost_per_million)
            logger.error(
                f"Stream [{route.model}] failed after {elapsed}ms, "
                f"{len(partial)} chars produced, est cost ${cost:.6f}: {e}"
            )
            tail = segmenter.flush()
            if tail:
                yield tail
            yield ErrorEvent(
                message=str(e) or type(e).__name__,
                partial_text=partial,
                cost=cost,
                model=route.model,
                sentences=segmenter.count,
            )
            return

        tail = segmenter.flush()
        if tail:
            yield tail

        text = "".join(parts).strip()
        if not usage:
            usage = {
                "prompt_tokens": count_tokens(system_prompt, route.model) + count_tokens(user_text, route.model),
                "completion_tokens": count_tokens(text, route.model),
            }
        elapsed = int((time.perf_counter() - start) * 1000)
        cost = calculate_cost(usage, route.cost_per_million)
        logger.info(
            f"Stream [{route.model}]: {elapsed}ms, {segmenter.count} sentences, "
            f"usage={usage}, cost=${cost:.6f}"
        )
        yield CompleteEvent(
            text=text,
            model=route.model,
            cost=cost,
            usage=usage,
            cached=False,
            sentences=segmenter.count,
            latency_ms=elapsed,
        )

    async def replay(self, text: str) -> AsyncIterator[StreamEvent]:
        """Cached answer as the same event stream a live one produces. Zero cost."""
        segmenter = SentenceSegmenter()
        for word in _WORD.findall(text):
            yield TokenEvent(content=word)
            for sentence in segmenter.feed(word):
                yield sentence
            await asyncio.sleep(0)

        tail = segmenter.flush()
        if tail:
            yield tail
        yield CompleteEvent(
            text=text.strip(),
            model=CACHE_MODEL,
            cost=0.0,
            usage={},
            cached=True,
            sentences=segmenter.count,
        )
