"""
Sahayak v1.0 — Model Router
Static cost-tiered routing. Pure keyword rules, no network, ~0ms.

    complexity ≤ 2 and not numerical   → ECONOMY
    complexity 3, math, or numerical   → STANDARD
    everything else (derive / prove)   → ADVANCED
"""

import re
import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional

from sahayak.config import LLM_TIERS

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    ECONOMY = "economy"
    STANDARD = "standard"
    ADVANCED = "advanced"


# ─── Rules ───────────────────────────────────────────────────────────────────
# First matching group wins, so order matters.

INTENT_KEYWORDS = {
    "concept_explanation": ["explain", "what is", "define", "help me understand", "meaning of",
                            "समझाओ", "क्या है", "अर्थ"],
    "numerical_solving": ["solve", "calculate", "find answer", "compute", "numerical",
                          "हल करो", "गणना", "उत्तर"],
    "hint_request": ["hint", "stuck", "guide me", "point me", "suggest", "संकेत", "मदद"],
    "quiz_generation": ["quiz", "mcq", "questions", "test", "प्रश्न"],
    "summarization": ["summarize", "summary", "key points", "tldr", "सारांश"],
}

_COMPLEXITY_RULES = [
    (4, ["derive", "prove", "सिद्ध"]),
    (3, ["solve numerically", "calculate", "compute", "गणना"]),
    (2, ["explain", "why", "समझाओ"]),
]

_SUBJECT_PATTERNS = [
    ("physics", re.compile(r"force|velocity|acceleration|energy|momentum|motion|गति|बल|ऊर्जा")),
    ("chemistry", re.compile(r"reaction|element|compound|acid|base|bond|प्रतिक्रिया|तत्व")),
    ("math", re.compile(r"integrate|differentiate|polynomial|matrix|calculus|समाकलन|अवकलन")),
    ("biology", re.compile(r"cell|dna|enzyme|photosynthesis|कोशिका|जीव")),
]

_DEVANAGARI = re.compile(r"[ऀ-ॿ]")


@dataclass(frozen=True)
class QueryAnalysis:
    intent: str
    complexity: int  # 1-4
    subject: str     # physics | chemistry | math | biology | general
    language: str    # hindi | english | hinglish


@dataclass(frozen=True)
class RouteDecision:
    tier: Tier
    model: str
    cost_per_million: float
    analysis: QueryAnalysis

    def to_dict(self) -> dict:
        return {
            "tier": self.tier.value,
            "model": self.model,
            "cost_per_million": self.cost_per_million,
            "analysis": asdict(self.analysis),
        }


def script_language(text: str) -> str:
    """Devanagari share of letters: ≥0.5 hindi, ≥0.1 hinglish, else english."""
    letters = [c for c in text if c.isalpha()]
    if not letters:
        return "english"
    ratio = sum(1 for c in letters if _DEVANAGARI.match(c)) / len(letters)
    if ratio >= 0.5:
        return "hindi"
    if ratio >= 0.1:
        return "hinglish"
    return "english"


class ModelRouter:
    def __init__(self, tiers: Optional[dict] = None):
        self.tiers = tiers or LLM_TIERS

    def analyze(self, query: str) -> QueryAnalysis:
        lowered = query.lower()

        intent = "general"
        for name, keywords in INTENT_KEYWORDS.items():
            if any(kw in lowered for kw in keywords):
                intent = name
                break

        complexity = 1
        for score, keywords in _COMPLEXITY_RULES:
            if any(kw in lowered for kw in keywords):
                complexity = score
                break

        subject = "general"
        for name, pattern in _SUBJECT_PATTERNS:
            if pattern.search(lowered):
                subject = name
                break

        return QueryAnalysis(
            intent=intent,
            complexity=complexity,
            subject=subject,
            language=script_language(query),
        )

    def route(self, query: str, context: Optional[str] = None) -> RouteDecision:
        """Deterministic: identical query → identical tier. `context` is not used for routing."""
        analysis = self.analyze(query)

        if analysis.complexity <= 2 and analysis.intent != "numerical_solving":
            tier = Tier.ECONOMY
        elif (
            analysis.complexity == 3
            or analysis.subject == "math"
            or analysis.intent == "numerical_solving"
        ):
            tier = Tier.STANDARD
        else:
            tier = Tier.ADVANCED

        tier_config = self.tiers[tier.value]
        logger.info(
            f"Router: {tier.value} [{tier_config['model']}] intent={analysis.intent}, "
            f"complexity={analysis.complexity}, subject={analysis.subject}, lang={analysis.language}"
        )
        return RouteDecision(
            tier=tier,
            model=tier_config["model"],
            cost_per_million=float(tier_config["cost_per_million"]),
            analysis=analysis,
        )
