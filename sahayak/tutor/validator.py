"""
Sahayak v1.0 — Response Validator
Post-hoc scoring of a finished answer. Soft gate: failures are logged and
recorded in message metadata, never regenerated.

Rubrics (each 0.0-1.0):
    language  answer matches the learner's language
    tone      warmth matches the learner's emotion and phase
    safety    no unsafe or dismissive content
    quality   length, completeness, spoken-friendly format
"""

import re
import logging
from dataclasses import dataclass, field, asdict

from sahayak.tutor.router import script_language

logger = logging.getLogger(__name__)

PASS_THRESHOLD = 0.6

_WEIGHTS = {"language": 0.3, "tone": 0.2, "safety": 0.3, "quality": 0.2}

_ROMAN_HINDI = re.compile(
    r"\b(hai|hain|kya|aap|tum|chalo|dekho|samjhe|samajh|nahi|accha|acha|theek|"
    r"matlab|yeh|woh|bahut|shabash|koi|baat|kaise|kyun|mein|ka|ki|ke|ko)\b",
    re.IGNORECASE,
)
_WARM = re.compile(
    r"\b(great|good|well done|excellent|let's|don't worry|no problem|it's okay|"
    r"shabash|badhiya|koi baat nahi|chalo|bilkul|accha)\b|शाबाश|बढ़िया|चलिए|कोई बात नहीं",
    re.IGNORECASE,
)
_HARSH = re.compile(
    r"\b(stupid|dumb|idiot|obviously|clearly you|wrong again|pathetic|useless|bewakoof|pagal)\b",
    re.IGNORECASE,
)
_UNSAFE = re.compile(
    r"\b(kill yourself|suicide method|self[- ]harm|buy drugs|make a bomb|cheat in (the )?exam|"
    r"leaked paper)\b",
    re.IGNORECASE,
)
_MARKDOWN = re.compile(r"(^|\n)\s*(#{1,6}\s|[-*]\s|\d+\.\s)|\*\*|```")


@dataclass
class ValidationResult:
    scores: dict
    overall: float
    passed: bool
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class ResponseValidator:
    def __init__(self, threshold: float = PASS_THRESHOLD):
        self.threshold = threshold

    def _language_score(self, response: str, expected: str, issues: list) -> float:
        actual = script_language(response)
        roman_hindi = len(_ROMAN_HINDI.findall(response))
        words = max(1, len(response.split()))

        if expected == "english":
            if actual != "english":
                issues.append(f"language: expected english, got {actual}")
                return 0.2
            if roman_hindi / words > 0.15:
                issues.append("language: Hindi words in an English answer")
                return 0.5
            return 1.0

        if expected == "hindi":
            if actual == "hindi":
                return 1.0
            if actual == "hinglish" or roman_hindi:
                return 0.7
            issues.append("language: expected hindi, got english")
            return 0.2

        # hinglish: Romanized Hindi or mixed script both count
        if actual in ("hinglish", "hindi") or roman_hindi / words >= 0.05:
            return 1.0
        issues.append("language: expected hinglish, got pure english")
        return 0.4

    def _tone_score(self, response: str, emotion: str, phase: str, issues: list) -> float:
        score = 0.8
        warm = bool(_WARM.search(response))
        if _HARSH.search(response):
            issues.append("tone: harsh or dismissive wording")
            return 0.2
        if emotion in ("frustrated", "anxious", "confused") and not warm:
            issues.append(f"tone: no reassurance for a {emotion} learner")
            score = 0.5
        elif warm:
            score = 1.0
        if phase in ("greeting", "closure") and not warm:
            score = min(score, 0.6)
        return score

    def _safety_score(self, response: str, issues: list) -> float:
        if _UNSAFE.search(response):
            issues.append("safety: unsafe content")
            return 0.0
        return 1.0

    def _quality_score(self, response: str, issues: list) -> float:
        text = response.strip()
        if not text:
            issues.append("quality: empty response")
            return 0.0
        score = 1.0
        words = len(text.split())
        if words < 3:
            issues.append("quality: too short")
            score -= 0.4
        elif words > 250:
            issues.append("quality: too long for speech")
            score -= 0.3
        if _MARKDOWN.search(text):
            issues.append("quality: markdown in a spoken answer")
            score -= 0.2
        if not re.search(r"[.!?।]\s*$", text):
            issues.append("quality: ends mid-sentence")
            score -= 0.2
        return max(0.0, score)

    def validate(
        self,
        response: str,
        expected_language: str,
        emotion: str = "neutral",
        phase: str = "teaching",
    ) -> ValidationResult:
        issues: list[str] = []
        scores = {
            "language": self._language_score(response, expected_language, issues),
            "tone": self._tone_score(response, emotion, phase, issues),
            "safety": self._safety_score(response, issues),
            "quality": self._quality_score(response, issues),
        }
        overall = round(sum(scores[k] * w for k, w in _WEIGHTS.items()), 3)
        passed = overall >= self.threshold and scores["safety"] > 0
        return ValidationResult(scores=scores, overall=overall, passed=passed, issues=issues)
