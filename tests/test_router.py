"""Tests for cost-tiered model routing."""

import pytest

from sahayak.config import LLM_TIERS
from sahayak.tutor.router import ModelRouter, Tier, script_language


@pytest.fixture
def router():
    return ModelRouter()


class TestScenarios:
    def test_explanation_goes_economy(self, router):
        decision = router.route("Explain Newton's second law")
        assert decision.tier == Tier.ECONOMY
        assert decision.model == LLM_TIERS["economy"]["model"]
        assert decision.analysis.intent == "concept_explanation"
        assert decision.analysis.complexity == 2

    def test_derivation_goes_advanced(self, router):
        decision = router.route("Derive the work-energy theorem")
        assert decision.tier == Tier.ADVANCED
        assert decision.analysis.complexity == 4
        assert decision.analysis.subject == "physics"

    def test_numerical_goes_standard(self, router):
        decision = router.route("Calculate the velocity after 3 seconds")
        assert decision.tier == Tier.STANDARD
        assert decision.analysis.intent == "numerical_solving"

    def test_math_subject_goes_standard(self, router):
        decision = router.route("Prove this polynomial identity")
        assert decision.analysis.subject == "math"
        assert decision.tier == Tier.STANDARD

    def test_plain_question_goes_economy(self, router):
        assert router.route("hello didi").tier == Tier.ECONOMY


class TestRouting:
    def test_deterministic(self, router):
        query = "Solve for acceleration when force is 10 N"
        assert router.route(query) == router.route(query)

    def test_cost_matches_tier(self, router):
        decision = router.route("Derive the equation of motion")
        assert decision.cost_per_million == LLM_TIERS["advanced"]["cost_per_million"]

    def test_custom_tiers(self):
        tiers = {
            "economy": {"model": "tiny", "cost_per_million": 0.01},
            "standard": {"model": "mid", "cost_per_million": 0.1},
            "advanced": {"model": "big", "cost_per_million": 1.0},
        }
        assert ModelRouter(tiers).route("Explain inertia").model == "tiny"

    def test_to_dict(self, router):
        data = router.route("Explain inertia").to_dict()
        assert data["tier"] == "economy"
        assert data["analysis"]["intent"] == "concept_explanation"

    def test_hindi_keywords(self, router):
        decision = router.route("गति को समझाओ")
        assert decision.analysis.intent == "concept_explanation"
        assert decision.analysis.language == "hindi"


class TestScriptLanguage:
    def test_english(self):
        assert script_language("What is momentum?") == "english"

    def test_hindi(self):
        assert script_language("संवेग क्या है?") == "hindi"

    def test_mixed(self):
        assert script_language("momentum ka matlab क्या होता है") == "hinglish"

    def test_empty_is_english(self):
        assert script_language("123 ?") == "english"
