"""
Sahayak v1.0 — LLM + Embedding Abstraction Layer
Streaming completions and embeddings over the OpenAI SDK.
Any OpenAI-compatible endpoint works via OPENAI_BASE_URL.
"""

import time
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol

from openai import AsyncOpenAI

from sahayak.config import (
    OPENAI_API_KEY, OPENAI_BASE_URL, LLM_MAX_TOKENS, LLM_TEMPERATURE,
    LLM_TIMEOUT_SECONDS, EMBEDDING_MODEL,
)

logger = logging.getLogger(__name__)


@dataclass
class StreamChunk:
    """One fragment from a streaming completion. The last one usually carries usage."""
    content: Optional[str] = None
    usage: Optional[dict] = None


class CompletionProvider(Protocol):
    def stream(self, system_prompt: str, user_text: str, model: str, **kwargs) -> AsyncIterator[StreamChunk]: ...


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> list[float]: ...


def _messages(system_prompt: str, user_text: str) -> list[dict]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_text},
    ]


def _usage_dict(usage) -> dict:
    if usage is None:
        return {}
    return {
        "prompt_tokens": usage.prompt_tokens or 0,
        "completion_tokens": usage.completion_tokens or 0,
    }


_shared_client: Optional[AsyncOpenAI] = None


def get_openai_client() -> AsyncOpenAI:
    """One client per process; it pools connections."""
    global _shared_client
    if _shared_client is None:
        _shared_client = AsyncOpenAI(
            api_key=OPENAI_API_KEY,
            base_url=OPENAI_BASE_URL,
            timeout=LLM_TIMEOUT_SECONDS,
        )
    return _shared_client


# ─── OpenAI Chat ─────────────────────────────────────────────────────────────

class OpenAIChat:
    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self._client = client or get_openai_client()

    async def stream(
        self,
        system_prompt: str,
        user_text: str,
        model: str,
        max_tokens: int = LLM_MAX_TOKENS,
        temperature: float = LLM_TEMPERATURE,
    ) -> AsyncIterator[StreamChunk]:
        """Yield raw fragments in arrival order. Exceptions propagate to the caller."""
        stream = await self._client.chat.completions.create(
            model=model,
            messages=_messages(system_prompt, user_text),
            max_tokens=max_tokens,
            temperature=temperature,
            stream=True,
            stream_options={"include_usage": True},
        )
        async for chunk in stream:
            content = None
            if chunk.choices:
                content = chunk.choices[0].delta.content
            yield StreamChunk(content=content, usage=_usage_dict(chunk.usage) or None)


# ─── OpenAI Embeddings ───────────────────────────────────────────────────────

class OpenAIEmbedder:
    def __init__(self, client: Optional[AsyncOpenAI] = None, model: str = EMBEDDING_MODEL):
        self._client = client or get_openai_client()
        self._model = model

    async def embed(self, text: str) -> list[float]:
        start = time.perf_counter()
        response = await self._client.embeddings.create(model=self._model, input=text)
        elapsed = int((time.perf_counter() - start) * 1000)
        logger.debug(f"Embedding [{self._model}]: {elapsed}ms")
        return list(response.data[0].embedding)
