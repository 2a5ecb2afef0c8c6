"""
Sahayak v1.0 — Tutor Router
Text surface over the turn pipeline.

    POST /api/tutor/ask-stream            SSE: chunk … complete | error
    POST /api/tutor/ask                   whole answer in one response
    GET  /api/tutor/session/{chat_id}     lesson state (404 when none yet)
    POST /api/tutor/session/{chat_id}/advance
    POST /api/tutor/session/{chat_id}/checkpoint
    GET  /api/tutor/stats                 cache + context store stats
    POST /api/tutor/cache/clear

Services live on app.state (built in the lifespan).
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from sahayak.routers.auth import get_current_user
from sahayak.storage import ChatNotFoundError
from sahayak.tutor.phases import advance_phase, phase_description, record_checkpoint
from sahayak.tutor.pipeline import TurnRequest
from sahayak.tutor.streaming import TokenEvent, CompleteEvent, ErrorEvent

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/tutor", tags=["tutor"])


# ─── Request/Response Models ─────────────────────────────────────────────────

class AskRequest(BaseModel):
    chat_id: str
    message: str = Field(min_length=1, max_length=4000)
    persona_id: Optional[str] = None

class AskResponse(BaseModel):
    response: str
    model: str
    cost: float
    cached: bool
    sentences: int
    partial: bool = False
    error: Optional[str] = None

class SessionStatus(BaseModel):
    chat_id: str
    current_phase: str
    phase_step: int
    progress: int
    description: str
    persona_id: str
    level: str
    subject: Optional[str] = None
    topic: Optional[str] = None
    voice_enabled: bool = False
    adaptive_metrics: dict = {}
    context: Optional[dict] = None

class AdvanceResponse(BaseModel):
    advanced: bool
    current_phase: str
    phase_step: int
    progress: int
    description: str

class CheckpointRequest(BaseModel):
    passed: bool
    concept: Optional[str] = None


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def _owned_chat(request: Request, chat_id: str, user: dict):
    chat = await request.app.state.repo.get_chat(chat_id)
    if chat is None or chat.user_id != user["sub"]:
        raise HTTPException(404, "Chat not found")
    return chat


# ─── Ask (streaming) ─────────────────────────────────────────────────────────

@router.post("/ask-stream")
async def ask_stream(req: AskRequest, request: Request, user: dict = Depends(get_current_user)):
    await _owned_chat(request, req.chat_id, user)
    pipeline = request.app.state.pipeline
    turn = TurnRequest(
        chat_id=req.chat_id, message=req.message,
        user_id=user["sub"], persona_id=req.persona_id,
    )

    async def stream_response():
        try:
            async for event in pipeline.run_turn(turn):
                if isinstance(event, TokenEvent):
                    yield _sse({"type": "chunk", "content": event.content})
                elif isinstance(event, CompleteEvent):
                    yield _sse({
                        "type": "complete",
                        "content": event.text,
                        "model": event.model,
                        "cost": event.cost,
                        "cached": event.cached,
                    })
                elif isinstance(event, ErrorEvent):
                    yield _sse({
                        "type": "error",
                        "content": event.message,
                        "partial": event.partial_text,
                        "recoverable": event.recoverable,
                    })
        except ChatNotFoundError:
            yield _sse({"type": "error", "content": "Chat not found", "recoverable": False})
        except Exception as e:
            logger.error(f"Ask stream [{req.chat_id}] failed: {e}", exc_info=True)
            yield _sse({
                "type": "error",
                "content": "Tutor is unavailable right now",
                "partial": "",
                "recoverable": True,
            })

    return StreamingResponse(stream_response(), media_type="text/event-stream")


# ─── Ask (whole response) ────────────────────────────────────────────────────

@router.post("/ask", response_model=AskResponse)
async def ask(req: AskRequest, request: Request, user: dict = Depends(get_current_user)):
    await _owned_chat(request, req.chat_id, user)
    turn = TurnRequest(
        chat_id=req.chat_id, message=req.message,
        user_id=user["sub"], persona_id=req.persona_id,
    )
    try:
        async for event in request.app.state.pipeline.run_turn(turn):
            if isinstance(event, CompleteEvent):
                return AskResponse(
                    response=event.text, model=event.model, cost=event.cost,
                    cached=event.cached, sentences=event.sentences,
                )
            if isinstance(event, ErrorEvent):
                if not event.partial_text:
                    raise HTTPException(502, "Tutor is unavailable right now")
                return AskResponse(
                    response=event.partial_text, model=event.model, cost=event.cost,
                    cached=False, sentences=event.sentences,
                    partial=True, error=event.message,
                )
    except ChatNotFoundError:
        raise HTTPException(404, "Chat not found")
    raise HTTPException(500, "Turn ended without a response")


# ─── Session ─────────────────────────────────────────────────────────────────

@router.get("/session/{chat_id}", response_model=SessionStatus)
async def session_status(chat_id: str, request: Request, user: dict = Depends(get_current_user)):
    state = request.app.state
    session = await state.repo.get_tutor_session(chat_id)
    if session is None or session.user_id != user["sub"]:
        raise HTTPException(404, "No tutor session for this chat")

    context = await state.context_store.get_context(session.user_id, chat_id)
    return SessionStatus(
        chat_id=chat_id,
        current_phase=session.current_phase,
        phase_step=session.phase_step,
        progress=session.progress,
        description=phase_description(session.current_phase),
        persona_id=session.persona_id,
        level=session.level,
        subject=session.subject,
        topic=session.topic,
        voice_enabled=session.voice_enabled,
        adaptive_metrics=session.adaptive_metrics or {},
        context={
            "preferred_language": context.preferred_language,
            "current_emotion": context.current_emotion,
            "message_count": context.message_count,
            "avg_response_time": context.avg_response_time,
            "language_consistency_score": context.language_consistency_score,
        } if context else None,
    )


@router.post("/session/{chat_id}/advance", response_model=AdvanceResponse)
async def advance_session(chat_id: str, request: Request, user: dict = Depends(get_current_user)):
    state = request.app.state
    chat = await _owned_chat(request, chat_id, user)
    account = await state.repo.get_user(chat.user_id)
    session = await state.repo.get_or_create_tutor_session(chat, account, state.default_persona)

    advanced = advance_phase(session)
    if advanced:
        session = await state.repo.save_tutor_session(session)
        await state.context_store.update_learning_context(
            session.user_id, chat_id, phase=session.current_phase
        )
    return AdvanceResponse(
        advanced=advanced,
        current_phase=session.current_phase,
        phase_step=session.phase_step,
        progress=session.progress,
        description=phase_description(session.current_phase),
    )


@router.post("/session/{chat_id}/checkpoint")
async def checkpoint(
    chat_id: str,
    req: CheckpointRequest,
    request: Request,
    user: dict = Depends(get_current_user),
):
    state = request.app.state
    chat = await _owned_chat(request, chat_id, user)
    account = await state.repo.get_user(chat.user_id)
    session = await state.repo.get_or_create_tutor_session(chat, account, state.default_persona)

    metrics = record_checkpoint(session, req.passed, req.concept)
    session = await state.repo.save_tutor_session(session)
    await state.context_store.update_learning_context(
        session.user_id, chat_id,
        misconceptions=metrics["misconceptions"],
        strong_concepts=metrics["strong_concepts"],
    )
    return {
        "phase_step": session.phase_step,
        "adaptive_metrics": metrics,
        "last_checkpoint": session.last_checkpoint,
    }


# ─── Cache admin ─────────────────────────────────────────────────────────────

@router.get("/stats")
async def stats(request: Request, user: dict = Depends(get_current_user)):
    state = request.app.state
    return {
        "semantic_cache": await state.semantic_cache.stats(),
        "tts_cache": state.tts_cache.stats(),
        "context_store": await state.context_store.stats(),
    }


@router.post("/cache/clear")
async def clear_cache(request: Request, user: dict = Depends(get_current_user)):
    state = request.app.state
    cleared = await state.semantic_cache.clear()
    await state.tts_cache.clear()
    logger.info(f"Caches cleared by {user['sub']}: {cleared} semantic entries")
    return {"semantic_entries_cleared": cleared, "tts_cache_cleared": True}
