"""
Sahayak v1.0 — Lesson Phase State Machine

Seven phases, forward only:
    GREETING → RAPPORT → ASSESSMENT → TEACHING → PRACTICE → FEEDBACK → CLOSURE

CLOSURE is absorbing: advancing from it is a no-op that returns False.
Auto-advance is driven by the number of learner messages in the chat.
"""

import logging
from enum import Enum
from typing import Optional

from sahayak.config import PHASE_THRESHOLDS

logger = logging.getLogger(__name__)


class TutorPhase(str, Enum):
    GREETING = "greeting"
    RAPPORT = "rapport"
    ASSESSMENT = "assessment"
    TEACHING = "teaching"
    PRACTICE = "practice"
    FEEDBACK = "feedback"
    CLOSURE = "closure"


PHASE_ORDER = list(TutorPhase)

# Learner-message count needed before leaving a phase
PhaseThresholds = dict[str, int]
DEFAULT_THRESHOLDS: PhaseThresholds = dict(PHASE_THRESHOLDS)

_DESCRIPTIONS = {
    TutorPhase.GREETING: "Welcoming the student and setting the tone",
    TutorPhase.RAPPORT: "Getting to know the student's goals and comfort level",
    TutorPhase.ASSESSMENT: "Checking what the student already knows",
    TutorPhase.TEACHING: "Explaining the concept step by step",
    TutorPhase.PRACTICE: "Working through practice problems together",
    TutorPhase.FEEDBACK: "Reviewing what went well and what needs work",
    TutorPhase.CLOSURE: "Wrapping up the session",
}


def parse_phase(value: Optional[str]) -> TutorPhase:
    """Unknown or missing values start at GREETING."""
    try:
        return TutorPhase(value)
    except ValueError:
        return TutorPhase.GREETING


def next_phase(phase: TutorPhase) -> Optional[TutorPhase]:
    idx = PHASE_ORDER.index(phase)
    if idx + 1 >= len(PHASE_ORDER):
        return None
    return PHASE_ORDER[idx + 1]


def phase_progress(phase: TutorPhase) -> int:
    return round(PHASE_ORDER.index(phase) / (len(PHASE_ORDER) - 1) * 100)


def phase_description(phase) -> str:
    return _DESCRIPTIONS[parse_phase(phase.value if isinstance(phase, TutorPhase) else phase)]


def should_auto_advance(
    phase,
    message_count: int,
    thresholds: Optional[PhaseThresholds] = None,
) -> bool:
    """Pure. True once the learner has sent enough messages to leave `phase`."""
    phase = parse_phase(phase.value if isinstance(phase, TutorPhase) else phase)
    if phase == TutorPhase.CLOSURE:
        return False
    limit = (thresholds or DEFAULT_THRESHOLDS).get(phase.value)
    if limit is None:
        return False
    return message_count >= limit


def advance_phase(session) -> bool:
    """
    Move a TutorSession one phase forward.
    Resets phase_step and recomputes progress. Returns False at CLOSURE.
    """
    current = parse_phase(session.current_phase)
    target = next_phase(current)
    if target is None:
        return False

    session.current_phase = target.value
    session.phase_step = 0
    session.progress = phase_progress(target)
    logger.info(f"Phase advance [{session.chat_id}]: {current.value} → {target.value}")
    return True


def record_checkpoint(session, passed: bool, concept: Optional[str] = None) -> dict:
    """Fold one checkpoint result into adaptive_metrics. Returns the new metrics."""
    metrics = dict(session.adaptive_metrics or {})
    strong = list(metrics.get("strong_concepts", []))
    weak = list(metrics.get("misconceptions", []))

    if passed:
        metrics["checkpoints_passed"] = metrics.get("checkpoints_passed", 0) + 1
        if concept and concept not in strong:
            strong.append(concept)
        if concept in weak:
            weak.remove(concept)
    elif concept and concept not in weak:
        weak.append(concept)

    metrics["strong_concepts"] = strong
    metrics["misconceptions"] = weak
    metrics.setdefault("hints_used", 0)
    metrics.setdefault("checkpoints_passed", 0)

    # Reassign so SQLAlchemy sees the JSON column change
    session.adaptive_metrics = metrics
    session.last_checkpoint = {"passed": passed, "concept": concept, "phase": session.current_phase}
    session.phase_step = (session.phase_step or 0) + 1
    return metrics
