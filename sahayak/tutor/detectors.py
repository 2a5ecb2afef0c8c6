"""
Sahayak v1.0 — Feature Extractors (Language / Emotion / Intent)

Stateless classifiers over learner text. All three sit on the critical path
before generation, so none of them is allowed to block a turn:
safe_classify() turns any exception or timeout into the neutral default.

Defaults:
    language → english / low
    emotion  → neutral
    intent   → general
"""

import re
import json
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from openai import AsyncOpenAI

from sahayak.config import CLASSIFIER_MODEL, EXTRACTOR_TIMEOUT_SECONDS
from sahayak.tutor.context import preferred_language, language_consistency
from sahayak.tutor.router import script_language

logger = logging.getLogger(__name__)


# ─── Results ─────────────────────────────────────────────────────────────────

@dataclass
class Classification:
    label: str
    confidence: float


@dataclass
class LanguageDetection(Classification):
    confidence_level: str = "low"  # low | medium | high
    signals: dict = field(default_factory=dict)
    detection_method: str = "default"  # statistical | fused | default


@dataclass
class EmotionDetection(Classification):
    detection_method: str = "default"  # pattern | punctuation | default


@dataclass
class IntentDetection(Classification):
    entities: dict = field(default_factory=dict)
    detection_method: str = "default"  # keyword | llm | default


# ─── Base ────────────────────────────────────────────────────────────────────

class FeatureExtractor:
    name = "extractor"

    async def classify(self, text: str, context=None) -> Classification:
        raise NotImplementedError

    def default(self) -> Classification:
        raise NotImplementedError

    async def safe_classify(
        self,
        text: str,
        context=None,
        timeout: float = EXTRACTOR_TIMEOUT_SECONDS,
    ) -> Classification:
        """Never raises. Falls back to default() on error or timeout."""
        try:
            return await asyncio.wait_for(self.classify(text, context), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Extractor [{self.name}] timed out after {timeout}s, using default")
        except Exception as e:
            logger.warning(f"Extractor [{self.name}] failed, using default: {e}")
        return self.default()


# ─── Language ────────────────────────────────────────────────────────────────

# Romanized and Devanagari Hindi function words
_HINDI_WORDS = {
    "hai", "hain", "tha", "thi", "ho", "hoon", "kya", "kaise", "kyun", "kyon",
    "ka", "ki", "ke", "ko", "mein", "se", "ne", "par", "aur", "nahi", "nahin",
    "yeh", "ye", "woh", "wo", "mujhe", "aap", "tum", "bhi", "toh",
    "samjha", "samjhao", "batao", "karo", "kar", "chalo", "dekho", "accha",
    "acha", "theek", "matlab", "kaun", "kab", "kitna",
    "है", "हैं", "था", "थी", "हो", "हूं", "क्या", "कैसे", "क्यों", "का", "की", "के",
    "को", "में", "से", "ने", "पर", "और", "नहीं", "यह", "वह", "मुझे", "आप", "तुम",
}
_ENGLISH_WORDS = {
    "the", "is", "are", "was", "what", "how", "why", "when", "which", "a", "an",
    "of", "to", "in", "on", "and", "or", "explain", "please", "can", "could",
    "you", "me", "i", "my", "this", "that", "does", "do", "it", "with", "for",
    "tell", "about", "give", "help",
}
# Verb-final auxiliaries: Hindi is SOV
_HINDI_FINAL = re.compile(
    r"\b(hai|hain|tha|thi|ho|hoon|karo|batao|samjhao|chahiye)\s*[?.!।]*\s*$|"
    r"(है|हैं|था|थी|हो|करो|बताओ|समझाओ|चाहिए)\s*[?.!।]*\s*$",
    re.IGNORECASE,
)
_TOKEN = re.compile(r"[\wऀ-ॿ]+", re.UNICODE)
_DEVANAGARI = re.compile(r"[ऀ-ॿ]")

_WEIGHTS = {"script_ratio": 0.35, "word_order": 0.15, "statistical": 0.35, "history_consistency": 0.15}


def _confidence_level(confidence: float) -> str:
    if confidence >= 0.75:
        return "high"
    if confidence >= 0.5:
        return "medium"
    return "low"


class LanguageDetector(FeatureExtractor):
    """
    Fuses up to four signals by weighted vote:
        script_ratio        Devanagari share of letters
        word_order          verb-final (SOV) sentence shape
        statistical         Hindi vs English function-word share
        history_consistency preferred language from session history (optional)
    """

    name = "language"

    def default(self) -> LanguageDetection:
        return LanguageDetection(label="english", confidence=0.0, confidence_level="low")

    def _script_signal(self, text: str) -> dict:
        letters = [c for c in text if c.isalpha()]
        ratio = (
            sum(1 for c in letters if _DEVANAGARI.match(c)) / len(letters) if letters else 0.0
        )
        label = script_language(text)
        # Latin script alone cannot tell English from Romanized Hindi
        score = 0.9 if ratio >= 0.5 else (0.7 if ratio >= 0.1 else 0.5)
        return {"label": label, "score": score, "ratio": round(ratio, 3)}

    def _word_order_signal(self, text: str, tokens: list[str]) -> dict:
        verb_final = bool(_HINDI_FINAL.search(text.strip()))
        has_english = any(t in _ENGLISH_WORDS for t in tokens)
        if verb_final:
            label = "hinglish" if has_english or not _DEVANAGARI.search(text) else "hindi"
            return {"label": label, "score": 0.7, "verb_final": True}
        return {"label": "english", "score": 0.4, "verb_final": False}

    def _statistical_signal(self, tokens: list[str]) -> dict:
        hindi = [t for t in tokens if t in _HINDI_WORDS]
        english = [t for t in tokens if t in _ENGLISH_WORDS]
        marked = len(hindi) + len(english)
        if not marked:
            return {"label": "english", "score": 0.3, "hindi_share": 0.0}

        share = len(hindi) / marked
        devanagari = sum(1 for t in hindi if _DEVANAGARI.search(t))
        if share >= 0.8:
            # Romanized Hindi is answered in Hinglish
            label = "hindi" if devanagari >= len(hindi) / 2 else "hinglish"
        elif share >= 0.2:
            label = "hinglish"
        else:
            label = "english"
        score = min(0.95, 0.5 + 0.1 * marked) * max(share, 1 - share)
        return {"label": label, "score": round(score, 3), "hindi_share": round(share, 3)}

    def _history_signal(self, context) -> Optional[dict]:
        history = getattr(context, "language_history", None) or []
        preferred = preferred_language(history)
        if not preferred:
            return None
        return {"label": preferred, "score": round(language_consistency(history), 3)}

    async def classify(self, text: str, context=None) -> LanguageDetection:
        if not text or not text.strip():
            return self.default()

        tokens = [t.lower() for t in _TOKEN.findall(text)]
        signals = {
            "script_ratio": self._script_signal(text),
            "word_order": self._word_order_signal(text, tokens),
            "statistical": self._statistical_signal(tokens),
        }
        history = self._history_signal(context)
        if history:
            signals["history_consistency"] = history

        total_weight = sum(_WEIGHTS[name] for name in signals)
        votes: dict[str, float] = {}
        for name, signal in signals.items():
            weight = _WEIGHTS[name] / total_weight
            votes[signal["label"]] = votes.get(signal["label"], 0.0) + weight * signal["score"]

        label = max(votes, key=votes.get)
        confidence = round(votes[label] / sum(votes.values()) * max(s["score"] for s in signals.values()), 3)

        return LanguageDetection(
            label=label,
            confidence=confidence,
            confidence_level=_confidence_level(confidence),
            signals=signals,
            detection_method="fused" if history else "statistical",
        )


# ─── Emotion ─────────────────────────────────────────────────────────────────

EMOTIONS = ("neutral", "confident", "confused", "frustrated", "anxious", "bored", "excited")

# Checked in order; first label with a hit wins
EMOTION_PATTERNS = [
    ("frustrated", [
        "i give up", "too hard", "so hard", "i hate", "not getting it", "makes no sense",
        "bahut mushkil", "nahi ho raha", "pagal", "bekaar", "chhodo", "thak gaya", "thak gayi",
        "बहुत मुश्किल", "नहीं हो रहा", "छोड़ो",
    ]),
    ("anxious", [
        "worried", "nervous", "scared", "afraid", "exam is", "fail", "panic", "tension",
        "dar lag", "ghabra", "डर", "घबरा",
    ]),
    ("confused", [
        "confused", "don't understand", "dont understand", "didn't get", "what do you mean",
        "samajh nahi", "samjha nahi", "samjhi nahi", "kuch samajh", "matlab kya",
        "समझ नहीं", "क्या मतलब",
    ]),
    ("bored", [
        "boring", "bored", "whatever", "so what", "kab khatam", "bore ho", "बोर",
    ]),
    ("excited", [
        "wow", "awesome", "amazing", "yay", "so cool", "love this", "maza aa",
        "mast", "waah", "वाह", "मज़ा",
    ]),
    ("confident", [
        "got it", "easy", "i know", "that's simple", "i understand", "samajh gaya",
        "samajh gayi", "samajh aa gaya", "aasaan", "pata hai", "समझ गया", "आसान",
    ]),
]


class EmotionDetector(FeatureExtractor):
    name = "emotion"

    def default(self) -> EmotionDetection:
        return EmotionDetection(label="neutral", confidence=0.0)

    async def classify(self, text: str, context=None) -> EmotionDetection:
        if not text or not text.strip():
            return self.default()
        lowered = text.lower()

        for label, phrases in EMOTION_PATTERNS:
            hits = sum(1 for p in phrases if p in lowered)
            if hits:
                return EmotionDetection(
                    label=label,
                    confidence=min(0.95, 0.75 + 0.1 * (hits - 1)),
                    detection_method="pattern",
                )

        stripped = text.strip()
        if "!!" in stripped or (stripped.endswith("!") and stripped.isupper()):
            return EmotionDetection(label="excited", confidence=0.55, detection_method="punctuation")
        if "??" in stripped or stripped.endswith("..."):
            return EmotionDetection(label="confused", confidence=0.55, detection_method="punctuation")

        return EmotionDetection(label="neutral", confidence=0.6, detection_method="default")


# ─── Intent ──────────────────────────────────────────────────────────────────

INTENTS = ("explain", "hint", "submit_answer", "simplify", "frustration", "celebration", "general")

# Checked in order: negative intents before positive ones
INTENT_PATTERNS = [
    ("frustration", [
        "i give up", "too hard", "i hate", "bahut mushkil", "nahi ho raha", "chhodo",
        "बहुत मुश्किल", "नहीं हो रहा",
    ]),
    ("simplify", [
        "didn't understand", "did not understand", "don't understand", "simpler", "simple way",
        "explain again", "once more", "samajh nahi", "samjha nahi", "phir se samjhao",
        "aasan bhasha", "समझ नहीं", "फिर से",
    ]),
    ("hint", [
        "hint", "stuck", "clue", "guide me", "where to start", "help me start",
        "sanket", "kaise shuru", "संकेत",
    ]),
    ("submit_answer", [
        "answer is", "my answer", "i got", "i think it is", "it comes out", "it is",
        "uttar hai", "jawab hai", "answer hai", "उत्तर", "जवाब",
    ]),
    ("celebration", [
        "got it", "i did it", "yay", "finally", "correct!", "samajh gaya", "samajh gayi",
        "samajh aa gaya", "ho gaya", "समझ गया", "हो गया",
    ]),
    ("explain", [
        "explain", "what is", "what are", "why", "how does", "how do", "define",
        "meaning of", "tell me about", "samjhao", "kya hai", "kya hota", "kaise",
        "समझाओ", "क्या है", "क्यों", "कैसे",
    ]),
]

_UNIT_TOKENS = {
    "m", "s", "kg", "g", "mg", "n", "j", "kj", "w", "kw", "km", "cm", "mm", "nm",
    "hz", "pa", "v", "a", "c", "k", "mol", "l", "ml", "h", "hr", "min", "ev",
    "rad", "ohm", "ω", "°", "°c", "%", "m/s", "atm",
}
_NUMBER_UNIT = re.compile(
    r"(?<![\w.])(-?\d+(?:\.\d+)?)(?:\s*([a-zA-Z°%Ωω]+(?:\^-?\d+|[²³])?"
    r"(?:\s*/\s*[a-zA-Z]+(?:\^-?\d+|[²³])?)*))?"
)
_BARE_ANSWER = re.compile(r"^\s*(?:=\s*)?-?\d+(?:\.\d+)?\s*[\w°%/^²³ ]{0,12}$")

CLASSIFIER_SYSTEM = """You classify a student's message for an Indian tutoring system.
Subject: {subject}. Current lesson phase: {phase}.

Intents (pick EXACTLY ONE):
- explain: asks for an explanation of a concept
- hint: wants a hint or is stuck on a problem
- submit_answer: is giving an answer to a problem
- simplify: did not understand, wants it simpler
- frustration: frustrated, wants to give up
- celebration: happy about understanding or getting it right
- general: anything else

For submit_answer also return entities.answer (number) and entities.unit (string or null).

Respond ONLY with JSON: {{"intent":"...","confidence":0.0-1.0,"entities":{{...}}}}"""


def extract_answer(text: str) -> dict:
    """First number in the text plus its unit, if the unit is recognisable."""
    match = _NUMBER_UNIT.search(text)
    if not match:
        return {}
    raw = match.group(1)
    entities = {"answer": float(raw) if "." in raw else int(raw)}
    unit = (match.group(2) or "").replace(" ", "")
    base = re.split(r"[/^²³]", unit, maxsplit=1)[0].lower() if unit else ""
    if base in _UNIT_TOKENS:
        entities["unit"] = unit
    return entities


class IntentClassifier(FeatureExtractor):
    """Keyword fast path first, then an optional LLM for everything else."""

    name = "intent"

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: str = CLASSIFIER_MODEL):
        self.client = client
        self.model = model

    def default(self) -> IntentDetection:
        return IntentDetection(label="general", confidence=0.0)

    async def classify(self, text: str, context=None) -> IntentDetection:
        if not text or not text.strip():
            return self.default()
        lowered = text.strip().lower()

        # ─── Fast path ────────────────────────────────────────────────────
        if _BARE_ANSWER.match(lowered):
            return IntentDetection(
                label="submit_answer", confidence=0.95,
                entities=extract_answer(text), detection_method="keyword",
            )

        for label, phrases in INTENT_PATTERNS:
            if any(p in lowered for p in phrases):
                if label == "submit_answer" and not re.search(r"\d", text):
                    continue
                entities = extract_answer(text) if label == "submit_answer" else {}
                return IntentDetection(
                    label=label, confidence=0.9,
                    entities=entities, detection_method="keyword",
                )

        # ─── LLM ──────────────────────────────────────────────────────────
        if self.client is None:
            return IntentDetection(label="general", confidence=0.5, detection_method="default")

        prompt = CLASSIFIER_SYSTEM.format(
            subject=getattr(context, "current_subject", None) or "general",
            phase=getattr(context, "current_phase", None) or "unknown",
        )
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": prompt},
                    {"role": "user", "content": text},
                ],
                temperature=0,
                max_tokens=80,
                response_format={"type": "json_object"},
            )
            result = json.loads(response.choices[0].message.content)
        except (json.JSONDecodeError, IndexError, TypeError) as e:
            logger.warning(f"Intent LLM returned unusable output: {e}")
            return self.default()

        label = result.get("intent", "general")
        if label not in INTENTS:
            label = "general"
        entities = result.get("entities") or {}
        if label == "submit_answer" and "answer" not in entities:
            entities.update(extract_answer(text))

        return IntentDetection(
            label=label,
            confidence=float(result.get("confidence", 0.5)),
            entities=entities if isinstance(entities, dict) else {},
            detection_method="llm",
        )
