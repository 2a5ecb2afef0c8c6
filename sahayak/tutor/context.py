"""
Sahayak v1.0 — Session Context Store
Rolling per-(user, chat) language and emotion history in the shared cache.

Best-effort everywhere: backend down ⇒ reads return None, writes do nothing.
Nothing here is the source of truth. The message ledger is, and reconstruct()
rebuilds a context from it after eviction.
"""

import json
import time
import logging
from collections import Counter
from dataclasses import dataclass, field, asdict, fields
from typing import Optional

from sahayak.cache.backend import CacheBackend
from sahayak.config import CACHE_NAMESPACE, CONTEXT_TTL, CONTEXT_HISTORY_SIZE

logger = logging.getLogger(__name__)

_WINDOW = 10
_MIN_ENTRIES = 3


@dataclass
class SessionContext:
    user_id: str
    chat_id: str
    # [{"language": "hinglish", "confidence": 0.8, "timestamp": 1712345678.9}, ...]
    language_history: list[dict] = field(default_factory=list)
    emotional_history: list[dict] = field(default_factory=list)
    preferred_language: Optional[str] = None
    current_language: Optional[str] = None
    current_emotion: Optional[str] = None
    message_count: int = 0
    last_message_time: float = 0.0
    avg_response_time: float = 0.0  # ms
    current_phase: Optional[str] = None
    current_topic: Optional[str] = None
    current_subject: Optional[str] = None
    misconceptions: list[str] = field(default_factory=list)
    strong_concepts: list[str] = field(default_factory=list)
    response_quality_score: float = 0.5
    language_consistency_score: float = 0.5

    def to_hash(self) -> dict[str, str]:
        return {k: json.dumps(v) for k, v in asdict(self).items()}

    @classmethod
    def from_hash(cls, data: dict[str, str]) -> "SessionContext":
        known = {f.name for f in fields(cls)}
        values = {k: json.loads(v) for k, v in data.items() if k in known}
        return cls(**values)


# ─── Pure helpers ────────────────────────────────────────────────────────────

def _mode_share(values: list[str]) -> float:
    if len(values) < _MIN_ENTRIES:
        return 0.5
    recent = values[-_WINDOW:]
    return Counter(recent).most_common(1)[0][1] / len(recent)


def preferred_language(history: list[dict]) -> Optional[str]:
    """Majority language of the last 10 detections; None below 3 entries."""
    if len(history) < _MIN_ENTRIES:
        return None
    recent = [h["language"] for h in history[-_WINDOW:]]
    return Counter(recent).most_common(1)[0][0]


def language_consistency(history: list[dict]) -> float:
    return _mode_share([h["language"] for h in history])


def emotional_stability(history: list[dict]) -> float:
    return _mode_share([h["emotion"] for h in history])


def _timestamp(dt) -> float:
    return dt.timestamp() if dt is not None else time.time()


# ─── Store ───────────────────────────────────────────────────────────────────

class SessionContextStore:
    def __init__(
        self,
        backend: CacheBackend,
        ttl: int = CONTEXT_TTL,
        history_size: int = CONTEXT_HISTORY_SIZE,
        prefix: str = f"{CACHE_NAMESPACE}:session:",
    ):
        self.backend = backend
        self.ttl = ttl
        self.history_size = history_size
        self.prefix = prefix

    def available(self) -> bool:
        return self.backend.available()

    def _key(self, user_id: str, chat_id: str) -> str:
        return f"{self.prefix}{user_id}:{chat_id}"

    async def get_context(self, user_id: str, chat_id: str) -> Optional[SessionContext]:
        if not self.backend.available():
            return None
        data = await self.backend.hgetall(self._key(user_id, chat_id))
        if not data:
            return None
        try:
            return SessionContext.from_hash(data)
        except (ValueError, TypeError) as e:
            logger.warning(f"Context [{chat_id}]: unreadable entry, ignoring: {e}")
            return None

    async def save(self, context: SessionContext) -> None:
        if not self.backend.available():
            return
        context.language_history = context.language_history[-self.history_size:]
        context.emotional_history = context.emotional_history[-self.history_size:]
        key = self._key(context.user_id, context.chat_id)
        await self.backend.hset(key, context.to_hash())
        await self.backend.expire(key, self.ttl)

    async def update_context(self, user_id: str, chat_id: str, **updates) -> Optional[SessionContext]:
        """Read-merge-write. Unknown fields are ignored."""
        if not self.backend.available():
            return None
        context = await self.get_context(user_id, chat_id) or SessionContext(user_id, chat_id)
        for name, value in updates.items():
            if hasattr(context, name):
                setattr(context, name, value)
        await self.save(context)
        return context

    async def add_language_detection(
        self, user_id: str, chat_id: str, language: str, confidence: float
    ) -> Optional[SessionContext]:
        if not self.backend.available():
            return None
        context = await self.get_context(user_id, chat_id) or SessionContext(user_id, chat_id)
        history = context.language_history + [
            {"language": language, "confidence": confidence, "timestamp": time.time()}
        ]
        return await self.update_context(
            user_id, chat_id,
            language_history=history[-self.history_size:],
            current_language=language,
            preferred_language=preferred_language(history) or context.preferred_language,
            language_consistency_score=language_consistency(history),
        )

    async def add_emotion_detection(
        self, user_id: str, chat_id: str, emotion: str, confidence: float
    ) -> Optional[SessionContext]:
        if not self.backend.available():
            return None
        context = await self.get_context(user_id, chat_id) or SessionContext(user_id, chat_id)
        history = context.emotional_history + [
            {"emotion": emotion, "confidence": confidence, "timestamp": time.time()}
        ]
        return await self.update_context(
            user_id, chat_id,
            emotional_history=history[-self.history_size:],
            current_emotion=emotion,
        )

    async def update_learning_context(
        self,
        user_id: str,
        chat_id: str,
        phase: Optional[str] = None,
        topic: Optional[str] = None,
        subject: Optional[str] = None,
        misconceptions: Optional[list[str]] = None,
        strong_concepts: Optional[list[str]] = None,
    ) -> Optional[SessionContext]:
        updates = {
            "current_phase": phase,
            "current_topic": topic,
            "current_subject": subject,
            "misconceptions": misconceptions,
            "strong_concepts": strong_concepts,
        }
        return await self.update_context(
            user_id, chat_id, **{k: v for k, v in updates.items() if v is not None}
        )

    async def update_metrics(
        self,
        user_id: str,
        chat_id: str,
        response_time_ms: Optional[float] = None,
        response_quality: Optional[float] = None,
    ) -> Optional[SessionContext]:
        """One call per completed turn: bumps message_count, rolls the response-time average."""
        if not self.backend.available():
            return None
        context = await self.get_context(user_id, chat_id) or SessionContext(user_id, chat_id)
        updates = {
            "message_count": context.message_count + 1,
            "last_message_time": time.time(),
        }
        if response_quality is not None:
            updates["response_quality_score"] = response_quality
        if response_time_ms is not None:
            count = context.message_count
            updates["avg_response_time"] = (
                context.avg_response_time * count + response_time_ms
            ) / (count + 1)
        return await self.update_context(user_id, chat_id, **updates)

    async def clear_context(self, user_id: str, chat_id: str) -> None:
        await self.backend.delete(self._key(user_id, chat_id))
        logger.info(f"Context [{chat_id}]: cleared")

    async def user_sessions(self, user_id: str) -> list[str]:
        """Chat ids with a live context for this user."""
        prefix = f"{self.prefix}{user_id}:"
        return [key[len(prefix):] for key in await self.backend.scan_keys(prefix)]

    async def stats(self) -> dict:
        if not self.backend.available():
            return {"total_sessions": 0, "status": "disconnected", "ttl": 0}
        keys = await self.backend.scan_keys(self.prefix)
        return {"total_sessions": len(keys), "status": "connected", "ttl": self.ttl}

    async def reconstruct(self, tutor_session, messages: list) -> SessionContext:
        """
        Rebuild an evicted context from the TutorSession and the message ledger.
        Saved back when the backend is up; always returned.
        """
        context = SessionContext(user_id=tutor_session.user_id, chat_id=tutor_session.chat_id)
        response_times = []

        for message in messages:
            meta = message.meta or {}
            if message.role == "user":
                at = _timestamp(message.created_at)
                context.message_count += 1
                context.last_message_time = at
                if meta.get("detected_language"):
                    context.language_history.append({
                        "language": meta["detected_language"],
                        "confidence": meta.get("language_confidence", 0.5),
                        "timestamp": at,
                    })
                if meta.get("emotion"):
                    context.emotional_history.append({
                        "emotion": meta["emotion"],
                        "confidence": meta.get("emotion_confidence", 0.5),
                        "timestamp": at,
                    })
            elif message.role == "assistant" and meta.get("latency_ms") is not None:
                response_times.append(float(meta["latency_ms"]))

        context.language_history = context.language_history[-self.history_size:]
        context.emotional_history = context.emotional_history[-self.history_size:]
        if context.language_history:
            context.current_language = context.language_history[-1]["language"]
        if context.emotional_history:
            context.current_emotion = context.emotional_history[-1]["emotion"]
        context.preferred_language = preferred_language(context.language_history)
        context.language_consistency_score = language_consistency(context.language_history)
        if response_times:
            context.avg_response_time = sum(response_times) / len(response_times)

        metrics = tutor_session.adaptive_metrics or {}
        context.current_phase = tutor_session.current_phase
        context.current_topic = tutor_session.topic
        context.current_subject = tutor_session.subject
        context.misconceptions = list(metrics.get("misconceptions", []))
        context.strong_concepts = list(metrics.get("strong_concepts", []))

        await self.save(context)
        logger.info(
            f"Context [{tutor_session.chat_id}]: reconstructed from {len(messages)} messages"
        )
        return context
