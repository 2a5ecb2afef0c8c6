"""
Sahayak v1.0 — Turn Pipeline
One learner message in, one stream of events out. Transport-agnostic: the SSE
endpoint and the voice WebSocket both consume run_turn().

    1. load chat / user / tutor session (created lazily)
    2. read context, run extractors concurrently (all done before the prompt)
    3. persist learner message, update context histories
    4. auto-advance phase
    5. build system prompt
    6. semantic cache → replay on hit, route + stream on miss
    7. persist answer (or partial), validate, cache, update metrics
"""

import time
import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional, Union

from sahayak.cache.semantic import SemanticCache
from sahayak.config import DEFAULT_PERSONA, CONTEXT_HISTORY_SIZE
from sahayak.storage import TutorRepository, ChatNotFoundError
from sahayak.tutor.context import SessionContextStore
from sahayak.tutor.detectors import LanguageDetector, EmotionDetector, IntentClassifier
from sahayak.tutor.phases import (
    PhaseThresholds, advance_phase, should_auto_advance, phase_description,
)
from sahayak.tutor.prompt_builder import PromptBuilder
from sahayak.tutor.router import ModelRouter
from sahayak.tutor.streaming import (
    StreamingGenerator, TokenEvent, SentenceEvent, CompleteEvent, ErrorEvent,
)
from sahayak.tutor.validator import ResponseValidator

logger = logging.getLogger(__name__)

_CHAT_LANGUAGE = {"hi": "hinglish", "en": "english"}


@dataclass
class TurnRequest:
    chat_id: str
    message: str
    user_id: Optional[str] = None
    persona_id: Optional[str] = None
    voice: bool = False


# ─── Pipeline events (in addition to the streaming events) ───────────────────

@dataclass
class EmotionDetected:
    emotion: str
    confidence: float
    method: str


@dataclass
class PhaseChanged:
    phase: str
    phase_step: int
    progress: int
    description: str


@dataclass
class TurnPrepared:
    """Everything the transport needs before the first token."""
    language: str
    emotion: str
    intent: str
    persona_id: str
    phase: str
    cached: bool
    model: Optional[str] = None
    tier: Optional[str] = None
    entities: dict = field(default_factory=dict)


PipelineEvent = Union[
    EmotionDetected, PhaseChanged, TurnPrepared,
    TokenEvent, SentenceEvent, CompleteEvent, ErrorEvent,
]


def choose_language(detection, context, chat_language: Optional[str]) -> str:
    """Low-confidence detections defer to session history, then to the chat setting."""
    if detection.confidence_level != "low":
        return detection.label
    if context is not None and context.preferred_language:
        return context.preferred_language
    return _CHAT_LANGUAGE.get(chat_language or "", detection.label)


class TutorPipeline:
    def __init__(
        self,
        repo: TutorRepository,
        generator: StreamingGenerator,
        semantic_cache: SemanticCache,
        context_store: SessionContextStore,
        router: Optional[ModelRouter] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        validator: Optional[ResponseValidator] = None,
        language_detector: Optional[LanguageDetector] = None,
        emotion_detector: Optional[EmotionDetector] = None,
        intent_classifier: Optional[IntentClassifier] = None,
        thresholds: Optional[PhaseThresholds] = None,
    ):
        self.repo = repo
        self.generator = generator
        self.semantic_cache = semantic_cache
        self.context_store = context_store
        self.router = router or ModelRouter()
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.validator = validator or ResponseValidator()
        self.language_detector = language_detector or LanguageDetector()
        self.emotion_detector = emotion_detector or EmotionDetector()
        self.intent_classifier = intent_classifier or IntentClassifier()
        self.thresholds = thresholds

    async def _load_context(self, session):
        context = await self.context_store.get_context(session.user_id, session.chat_id)
        if context is None and self.context_store.available():
            history = await self.repo.get_chat_messages(session.chat_id, limit=CONTEXT_HISTORY_SIZE * 2)
            if history:
                context = await self.context_store.reconstruct(session, history)
        return context

    async def run_turn(self, req: TurnRequest) -> AsyncIterator[PipelineEvent]:
        start = time.perf_counter()
        text = req.message.strip()

        # ─── 1. Session ──────────────────────────────────────────────────
        chat = await self.repo.get_chat(req.chat_id)
        # Someone else's chat looks exactly like a missing one
        if chat is None or (req.user_id and chat.user_id != req.user_id):
            raise ChatNotFoundError(req.chat_id)
        user = await self.repo.get_user(chat.user_id)
        session = await self.repo.get_or_create_tutor_session(
            chat, user, req.persona_id or DEFAULT_PERSONA
        )

        # ─── 2. Extractors ───────────────────────────────────────────────
        context = await self._load_context(session)
        lang_result, emotion_result, intent_result = await asyncio.gather(
            self.language_detector.safe_classify(text, context),
            self.emotion_detector.safe_classify(text, context),
            self.intent_classifier.safe_classify(text, context),
        )
        language = choose_language(lang_result, context, chat.language)
        emotion = emotion_result.label
        intent = intent_result.label
        logger.info(
            f"Turn [{chat.id}]: lang={language} ({lang_result.confidence_level}), "
            f"emotion={emotion}, intent={intent}"
        )
        yield EmotionDetected(
            emotion=emotion,
            confidence=emotion_result.confidence,
            method=emotion_result.detection_method,
        )

        # ─── 3. Learner message + context ────────────────────────────────
        await self.repo.add_message(chat.id, "user", text, {
            "intent": intent,
            "entities": intent_result.entities,
            "emotion": emotion,
            "emotion_confidence": emotion_result.confidence,
            "detected_language": lang_result.label,
            "language_confidence": lang_result.confidence,
            "phase": session.current_phase,
        })
        await self.context_store.add_language_detection(
            session.user_id, chat.id, lang_result.label, lang_result.confidence
        )
        await self.context_store.add_emotion_detection(
            session.user_id, chat.id, emotion, emotion_result.confidence
        )

        # ─── 4. Phase ────────────────────────────────────────────────────
        advanced = False
        learner_messages = await self.repo.count_user_messages(chat.id)
        if should_auto_advance(session.current_phase, learner_messages, self.thresholds):
            advanced = advance_phase(session)
        voice_switched = req.voice and not session.voice_enabled
        if voice_switched:
            session.voice_enabled = True
        if advanced or voice_switched:
            session = await self.repo.save_tutor_session(session)
        if advanced:
            yield PhaseChanged(
                phase=session.current_phase,
                phase_step=session.phase_step,
                progress=session.progress,
                description=phase_description(session.current_phase),
            )
            await self.context_store.update_learning_context(
                session.user_id, chat.id, phase=session.current_phase
            )

        # ─── 5. Prompt ───────────────────────────────────────────────────
        system_prompt = self.prompt_builder.build_system_prompt(
            language=language,
            subject=session.subject,
            topic=session.topic,
            level=session.level,
            phase=session.current_phase,
            persona_id=session.persona_id,
            intent=intent,
            emotion=emotion,
            profile=session.profile_snapshot,
            adaptive_metrics=session.adaptive_metrics,
        )

        # ─── 6. Cache or generate ────────────────────────────────────────
        cached = await self.semantic_cache.check(text)
        route = None
        if cached is not None:
            events = self.generator.replay(cached)
        else:
            route = self.router.route(text)
            events = self.generator.generate(system_prompt, text, route)

        yield TurnPrepared(
            language=language,
            emotion=emotion,
            intent=intent,
            persona_id=session.persona_id,
            phase=session.current_phase,
            cached=cached is not None,
            model=route.model if route else None,
            tier=route.tier.value if route else None,
            entities=intent_result.entities,
        )

        # ─── 7. Stream + persist ─────────────────────────────────────────
        meta = {
            "intent": intent,
            "emotion": emotion,
            "detected_language": language,
            "phase": session.current_phase,
            "tier": route.tier.value if route else None,
        }
        async for event in events:
            if isinstance(event, CompleteEvent):
                await self._finish(chat.id, session, text, event, meta, language, emotion, start)
            elif isinstance(event, ErrorEvent):
                await self._fail(chat.id, event, meta)
            yield event

    async def _finish(self, chat_id, session, query, event, meta, language, emotion, start) -> None:
        if not event.cached:
            await self.semantic_cache.store(query, event.text)

        validation = self.validator.validate(event.text, language, emotion, session.current_phase)
        if not validation.passed:
            logger.warning(
                f"Validation failed [{chat_id}]: overall={validation.overall}, "
                f"scores={validation.scores}, issues={validation.issues}"
            )

        latency_ms = int((time.perf_counter() - start) * 1000)
        await self.repo.add_message(chat_id, "assistant", event.text, {
            **meta,
            "model": event.model,
            "cost": event.cost,
            "usage": event.usage,
            "cached": event.cached,
            "validation": validation.to_dict(),
            "latency_ms": latency_ms,
        })
        await self.context_store.update_metrics(
            session.user_id, chat_id,
            response_time_ms=latency_ms,
            response_quality=validation.overall,
        )
        logger.info(
            f"Turn [{chat_id}] done: {latency_ms}ms, model={event.model}, "
            f"cost=${event.cost:.6f}, cached={event.cached}"
        )

    async def _fail(self, chat_id, event, meta) -> None:
        # Partial text stays in the ledger; nothing is retracted
        if event.partial_text.strip():
            await self.repo.add_message(chat_id, "assistant", event.partial_text, {
                **meta,
                "model": event.model,
                "cost": event.cost,
                "cached": False,
                "partial": True,
                "error": event.message,
            })
        logger.error(f"Turn [{chat_id}] generation failed: {event.message}")
