"""
Sahayak v1.0 — Voice WebSocket
/ws/voice/{chat_id}?token=<jwt>

Per connection:
    receive loop (never blocks on a turn)
        AUDIO_CHUNK → buffer; is_last → start a turn task
        INTERRUPT   → stop audio for the running turn
        PING        → PONG
    turn task
        STT → TRANSCRIPTION → pipeline → sentences → SpeechDispatcher → TTS_*

A new utterance while a turn is still speaking interrupts the old turn's
audio (barge-in). Text already generated is still persisted.
"""

import base64
import asyncio
import binascii
import logging
from typing import Callable, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from sahayak.routers.auth import user_from_query_token
from sahayak.storage import ChatNotFoundError
from sahayak.tutor.personas import voice_for
from sahayak.tutor.pipeline import (
    TurnRequest, EmotionDetected, PhaseChanged, TurnPrepared,
)
from sahayak.tutor.streaming import SentenceEvent, ErrorEvent
from sahayak.voice import protocol
from sahayak.voice.dispatcher import drain
from sahayak.voice.stt import is_low_confidence
from sahayak.voice.tts import ProviderError

logger = logging.getLogger(__name__)
router = APIRouter(tags=["voice"])

_CHAT_LANGUAGE = {"hi": "hinglish", "en": "english"}

# Close codes (4000-4999 are application defined)
CLOSE_UNAUTHORIZED = 4401
CLOSE_NOT_FOUND = 4404


class TurnControl:
    """Interrupt flag for one turn. Each turn gets a fresh one."""

    def __init__(self):
        self._interrupted = asyncio.Event()

    def interrupt(self) -> None:
        self._interrupted.set()

    def is_active(self) -> bool:
        return not self._interrupted.is_set()


class VoiceConnection:
    def __init__(self, websocket: WebSocket, chat, user_id: str):
        self.ws = websocket
        self.chat = chat
        self.user_id = user_id
        self.state = websocket.app.state
        self.language_hint = _CHAT_LANGUAGE.get(chat.language, "hinglish")
        self.audio = bytearray()
        self.control: Optional[TurnControl] = None
        self.turn_task: Optional[asyncio.Task] = None
        self.closed = False
        self._send_lock = asyncio.Lock()

    async def send(self, message: dict, guard: Optional[Callable[[], bool]] = None) -> bool:
        """Write one frame. `guard` is checked after the lock, right before the write."""
        if self.closed:
            return False
        async with self._send_lock:
            # An interrupt can land while this frame waits behind another write
            if guard is not None and not guard():
                return False
            await self.ws.send_json(message)
        return True

    async def error(self, code: str, message: str, recoverable: bool = True) -> None:
        await self.send(protocol.ErrorMessage(code=code, message=message, recoverable=recoverable).wire())

    # ─── Receive loop ────────────────────────────────────────────────────────

    async def serve(self) -> None:
        try:
            while True:
                frame = await self.ws.receive()
                if frame["type"] == "websocket.disconnect":
                    break
                raw = frame.get("text")
                if raw is None:
                    await self.error(protocol.INVALID_MESSAGE, "Frames must be JSON text")
                    continue
                try:
                    message = protocol.parse_client_message(raw)
                except ValidationError as e:
                    logger.warning(f"Voice [{self.chat.id}]: invalid frame: {e.errors()[:1]}")
                    await self.error(protocol.INVALID_MESSAGE, "Unrecognized message")
                    continue
                await self.handle(message)
        except WebSocketDisconnect:
            pass
        finally:
            self.closed = True
            if self.control:
                self.control.interrupt()
            if self.turn_task and not self.turn_task.done():
                self.turn_task.cancel()
            logger.info(f"Voice [{self.chat.id}]: disconnected")

    async def handle(self, message) -> None:
        if isinstance(message, protocol.AudioChunk):
            try:
                self.audio.extend(base64.b64decode(message.data, validate=True))
            except (binascii.Error, ValueError):
                await self.error(protocol.INVALID_MESSAGE, "Audio data is not valid base64")
                return
            if message.is_last:
                audio = bytes(self.audio)
                self.audio.clear()
                self.start_turn(audio)
        elif isinstance(message, protocol.Interrupt):
            if self.control:
                self.control.interrupt()
            logger.info(f"Voice [{self.chat.id}]: interrupted ({message.reason})")
        elif isinstance(message, protocol.Ping):
            await self.send(protocol.Pong().wire())

    def start_turn(self, audio: bytes) -> None:
        # Barge-in: the previous turn keeps persisting but stops speaking
        if self.control:
            self.control.interrupt()
        self.control = TurnControl()
        self.turn_task = asyncio.create_task(self.run_turn(audio, self.control))

    # ─── Turn ────────────────────────────────────────────────────────────────

    async def run_turn(self, audio: bytes, control: TurnControl) -> None:
        try:
            result = await self.state.stt.transcribe(audio, self.language_hint)
        except ProviderError as e:
            logger.error(f"Voice [{self.chat.id}]: STT failed: {e}")
            await self.error(protocol.STT_FAILED, "Could not transcribe audio")
            return

        await self.send(protocol.Transcription(
            text=result.text,
            confidence=round(result.confidence, 3),
            language=result.language_detected,
        ).wire())
        if is_low_confidence(result):
            await self.error(protocol.LOW_CONFIDENCE, "Couldn't hear that clearly, please say it again")
            return

        sentences: asyncio.Queue = asyncio.Queue()
        speech_task: Optional[asyncio.Task] = None
        request = TurnRequest(
            chat_id=self.chat.id, message=result.text, user_id=self.user_id, voice=True,
        )
        try:
            async for event in self.state.pipeline.run_turn(request):
                if isinstance(event, SentenceEvent):
                    await sentences.put(event)
                elif isinstance(event, TurnPrepared):
                    speech_task = asyncio.create_task(self.state.dispatcher.run(
                        drain(sentences),
                        event.language,
                        voice_for(event.persona_id, event.emotion),
                        event.persona_id,
                        self.send,
                        control.is_active,
                    ))
                elif isinstance(event, EmotionDetected):
                    await self.send(protocol.EmotionDetected(
                        emotion=event.emotion, confidence=event.confidence, source="text",
                    ).wire())
                elif isinstance(event, PhaseChanged):
                    await self.send(protocol.PhaseChange(
                        phase=event.phase,
                        phase_step=event.phase_step,
                        progress=event.progress,
                        description=event.description,
                    ).wire())
                elif isinstance(event, ErrorEvent) and not event.partial_text:
                    await self.error(protocol.GENERATION_FAILED, "Tutor is unavailable right now")
        except ChatNotFoundError:
            await self.error(protocol.CHAT_NOT_FOUND, "Chat not found", recoverable=False)
        except Exception as e:
            logger.error(f"Voice [{self.chat.id}]: turn failed: {e}", exc_info=True)
            await self.error(protocol.GENERATION_FAILED, "Tutor is unavailable right now")
        finally:
            sentences.put_nowait(None)
            if speech_task:
                try:
                    await speech_task
                except Exception as e:
                    logger.error(f"Voice [{self.chat.id}]: speech dispatch failed: {e}")


# ─── Endpoint ────────────────────────────────────────────────────────────────

@router.websocket("/ws/voice/{chat_id}")
async def voice_socket(websocket: WebSocket, chat_id: str, token: Optional[str] = None):
    user = user_from_query_token(token)
    if user is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return

    state = websocket.app.state
    chat = await state.repo.get_chat(chat_id)
    await websocket.accept()
    if chat is None or chat.user_id != user["sub"]:
        await websocket.send_json(protocol.ErrorMessage(
            code=protocol.CHAT_NOT_FOUND, message="Chat not found", recoverable=False,
        ).wire())
        await websocket.close(code=CLOSE_NOT_FOUND)
        return

    session = await state.repo.get_tutor_session(chat_id)
    connection = VoiceConnection(websocket, chat, user["sub"])
    await connection.send(protocol.SessionState(
        chat_id=chat_id,
        current_phase=session.current_phase if session else "greeting",
        progress=session.progress if session else 0,
        persona_id=session.persona_id if session else state.default_persona,
        language=connection.language_hint,
    ).wire())
    logger.info(f"Voice [{chat_id}]: connected (user={user['sub']})")
    await connection.serve()
