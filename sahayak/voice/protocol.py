"""
Sahayak v1.0 — Voice WebSocket Protocol
Every frame is one JSON object with a `type` field.

Client → Server: AUDIO_CHUNK, INTERRUPT, PING, PONG
Server → Client: TRANSCRIPTION, TTS_START, TTS_CHUNK, TTS_END, PHASE_CHANGE,
                 EMOTION_DETECTED, SESSION_STATE, ERROR, PING, PONG

TTS_CHUNK.chunk_index is the sentence sequence number. Chunks may arrive out
of order; the client reassembles by index. total_chunks appears only on the
chunk that is known to be the last one.
"""

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class VoiceMessage(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)

    def wire(self) -> dict:
        return self.model_dump(exclude_none=True)


# ─── Client → Server ─────────────────────────────────────────────────────────

class AudioChunk(VoiceMessage):
    type: Literal["AUDIO_CHUNK"] = "AUDIO_CHUNK"
    data: str  # base64
    format: Literal["webm", "opus", "wav"] = "webm"
    is_last: bool = False


class Interrupt(VoiceMessage):
    type: Literal["INTERRUPT"] = "INTERRUPT"
    reason: Optional[Literal["user_speaking", "user_clicked", "error"]] = None


class Ping(VoiceMessage):
    type: Literal["PING"] = "PING"


class Pong(VoiceMessage):
    type: Literal["PONG"] = "PONG"


ClientMessage = Annotated[
    Union[AudioChunk, Interrupt, Ping, Pong],
    Field(discriminator="type"),
]
_client_adapter = TypeAdapter(ClientMessage)


def parse_client_message(raw: str) -> ClientMessage:
    """Raises pydantic.ValidationError on anything that is not a known client frame."""
    return _client_adapter.validate_json(raw)


# ─── Server → Client ─────────────────────────────────────────────────────────

class Transcription(VoiceMessage):
    type: Literal["TRANSCRIPTION"] = "TRANSCRIPTION"
    text: str
    confidence: float
    language: str
    is_final: bool = True


class TTSStart(VoiceMessage):
    type: Literal["TTS_START"] = "TTS_START"
    text: str = ""


class TTSChunk(VoiceMessage):
    type: Literal["TTS_CHUNK"] = "TTS_CHUNK"
    data: str  # base64 audio, gzip'd first when compressed=True
    chunk_index: int
    total_chunks: Optional[int] = None
    compressed: bool = False
    text: Optional[str] = None


class TTSEnd(VoiceMessage):
    type: Literal["TTS_END"] = "TTS_END"
    total_chunks: int


class PhaseChange(VoiceMessage):
    type: Literal["PHASE_CHANGE"] = "PHASE_CHANGE"
    phase: str
    phase_step: int
    progress: int
    description: Optional[str] = None


class EmotionDetected(VoiceMessage):
    type: Literal["EMOTION_DETECTED"] = "EMOTION_DETECTED"
    emotion: str
    confidence: float
    source: Literal["text", "voice", "combined"] = "text"


class SessionState(VoiceMessage):
    type: Literal["SESSION_STATE"] = "SESSION_STATE"
    chat_id: str
    current_phase: str
    progress: int
    persona_id: str
    language: str
    is_voice_active: bool = True


class ErrorMessage(VoiceMessage):
    type: Literal["ERROR"] = "ERROR"
    code: str
    message: str
    recoverable: bool = True
    sequence: Optional[int] = None


# Error codes
INVALID_MESSAGE = "INVALID_MESSAGE"
STT_FAILED = "STT_FAILED"
LOW_CONFIDENCE = "LOW_CONFIDENCE"
TTS_SENTENCE_FAILED = "TTS_SENTENCE_FAILED"
GENERATION_FAILED = "GENERATION_FAILED"
CHAT_NOT_FOUND = "CHAT_NOT_FOUND"
