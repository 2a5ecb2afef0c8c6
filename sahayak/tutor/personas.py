"""
Sahayak v1.0 — Tutor Personas
Who is speaking: tone for the prompt, voice for TTS.
Prosody is persona baseline adjusted by the learner's detected emotion.
"""

from dataclasses import dataclass, field, replace

from sahayak.config import DEFAULT_PERSONA


@dataclass(frozen=True)
class VoiceParams:
    speaker: str
    pitch: float = 0.0      # -1.0 to 1.0
    pace: float = 1.0       # 0.5 to 2.0
    loudness: float = 1.0
    emotion: str = "neutral"


@dataclass(frozen=True)
class Persona:
    id: str
    name: str
    tone: str
    catchphrases: list[str] = field(default_factory=list)
    voice: VoiceParams = VoiceParams(speaker="anushka")


PERSONAS = {
    "priya": Persona(
        id="priya",
        name="Priya",
        tone="Warm, patient elder sister (didi). Encouraging, never condescending.",
        catchphrases=["Chalo samajhte hain!", "Bahut badhiya!", "Koi baat nahi, hota hai!"],
        voice=VoiceParams(speaker="anushka", pitch=0.05, pace=1.0, loudness=1.2),
    ),
    "amit": Persona(
        id="amit",
        name="Amit",
        tone="Energetic elder brother (bhaiya). Crisp, practical, loves cricket analogies.",
        catchphrases=["Dekho, simple hai!", "Shabash!", "Ek baar aur try karo!"],
        voice=VoiceParams(speaker="abhilash", pitch=-0.05, pace=1.05, loudness=1.2),
    ),
}

# Learner emotion → (pitch delta, pace multiplier, loudness)
_PROSODY = {
    "frustrated": (-0.05, 0.9, 1.0),
    "anxious": (-0.03, 0.9, 1.0),
    "confused": (0.0, 0.9, 1.1),
    "bored": (0.08, 1.1, 1.3),
    "excited": (0.12, 1.1, 1.3),
    "confident": (0.05, 1.05, 1.2),
    "neutral": (0.0, 1.0, 1.2),
}


def get_persona(persona_id: str = None) -> Persona:
    return PERSONAS.get(persona_id or DEFAULT_PERSONA, PERSONAS[DEFAULT_PERSONA])


def voice_for(persona_id: str, emotion: str = "neutral") -> VoiceParams:
    base = get_persona(persona_id).voice
    pitch_delta, pace_mult, loudness = _PROSODY.get(emotion, _PROSODY["neutral"])
    return replace(
        base,
        pitch=max(-1.0, min(1.0, round(base.pitch + pitch_delta, 2))),
        pace=max(0.5, min(2.0, round(base.pace * pace_mult, 2))),
        loudness=loudness,
        emotion=emotion,
    )
