"""Tests for system prompt assembly."""

from sahayak.tutor.prompt_builder import PromptBuilder, INTENT_OVERRIDES, EMOTION_NOTES


def _build(**overrides):
    kwargs = dict(
        language="hinglish", subject="physics", topic="Newton's laws of motion",
        level="beginner", phase="teaching",
    )
    kwargs.update(overrides)
    return PromptBuilder().build_system_prompt(**kwargs)


class TestCore:
    def test_hinglish_core_with_default_persona(self):
        prompt = _build()
        assert prompt.startswith("You are Priya")
        assert "natural Hinglish" in prompt
        assert "PERSONA: Warm, patient elder sister" in prompt

    def test_english_core(self):
        prompt = _build(language="english")
        assert "clear, simple English" in prompt

    def test_hindi_core_uses_devanagari(self):
        prompt = _build(language="hindi", intent="explain")
        assert "Devanagari" in prompt
        assert INTENT_OVERRIDES["hinglish"]["explain"] in prompt

    def test_other_persona(self):
        assert _build(persona_id="amit").startswith("You are Amit")

    def test_unknown_persona_falls_back(self):
        assert _build(persona_id="nobody").startswith("You are Priya")

    def test_spoken_format_always_present(self):
        for language in ("hinglish", "english", "hindi"):
            assert "No markdown" in _build(language=language)


class TestSections:
    def test_intent_override(self):
        prompt = _build(language="english", intent="hint")
        assert f"THIS TURN: {INTENT_OVERRIDES['english']['hint']}" in prompt

    def test_general_intent_has_no_override(self):
        assert "THIS TURN:" not in _build(intent="general")

    def test_context_block(self):
        prompt = _build(phase="practice")
        assert "CURRENT CONTEXT:" in prompt
        assert "Topic: Newton's laws of motion" in prompt
        assert "Session Phase: practice (Working through practice problems together)" in prompt

    def test_missing_subject_and_topic(self):
        prompt = _build(subject=None, topic=None)
        assert "Subject: General" in prompt
        assert "Topic: Not set" in prompt

    def test_profile_and_metrics(self):
        prompt = _build(
            profile={"first_name": "Riya", "last_name": "Sharma", "exam_target": "JEE"},
            adaptive_metrics={"misconceptions": ["heavier falls faster"], "strong_concepts": ["inertia"]},
        )
        assert "Student Name: Riya Sharma" in prompt
        assert "Preparing For: JEE" in prompt
        assert "Known Misconceptions: heavier falls faster" in prompt
        assert "Strong Concepts: inertia" in prompt

    def test_emotion_note(self):
        prompt = _build(emotion="frustrated")
        assert prompt.endswith(f"IMPORTANT: {EMOTION_NOTES['frustrated']}")

    def test_neutral_has_no_note(self):
        assert "IMPORTANT:" not in _build(emotion="neutral")


class TestDeterminism:
    def test_same_inputs_same_prompt(self):
        args = dict(intent="explain", emotion="confused", profile={"first_name": "Riya"})
        assert _build(**args) == _build(**args)
