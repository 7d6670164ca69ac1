from __future__ import annotations

from medqa.models import StructuredResult
from medqa.repair import (
    ADVICE_DISCLAIMER,
    FINAL_REMINDER,
    FALLBACK_QUESTIONS,
    URGENT_REPLY,
    enforce_one_question,
    ensure_advice_defaults,
    ensure_reply,
    ensure_urgent_notice,
    fallback_question,
    sanitize_advice,
    synthesize_fallback,
)


def _intake(reply: str, **extra) -> StructuredResult:
    return StructuredResult(stage="intake", chat_reply=reply, **extra)


def _advice(**extra) -> StructuredResult:
    return StructuredResult(stage="advice", chat_reply="Here is some general information.", **extra)


def test_fallback_question_banks() -> None:
    assert fallback_question(0, "symptom_headache") == FALLBACK_QUESTIONS["symptom_headache"][0]
    assert fallback_question(1, "lab_test") == FALLBACK_QUESTIONS["lab_test"][1]
    assert fallback_question(9, "symptom_rash") == FALLBACK_QUESTIONS["symptom_rash"][-1]
    assert fallback_question(-3, "symptom_rash") == FALLBACK_QUESTIONS["symptom_rash"][0]
    assert fallback_question(0, "not_a_topic") == FALLBACK_QUESTIONS["other"][0]
    for bank in FALLBACK_QUESTIONS.values():
        assert all(question.endswith("?") for question in bank)


def test_enforce_one_question_keeps_first_question() -> None:
    result = enforce_one_question(
        _intake("When did it start? Is it worse at night?", ask_back="Any fever?"), 0, "symptom_headache"
    )
    assert result.chat_reply == "When did it start?"
    assert result.ask_back == ""


def test_enforce_one_question_replaces_statement() -> None:
    result = enforce_one_question(_intake("Thanks for sharing that."), 1, "symptom_abdominal")
    assert result.chat_reply == fallback_question(1, "symptom_abdominal")


def test_enforce_one_question_replaces_empty_reply() -> None:
    result = enforce_one_question(_intake("   "), 0, "other")
    assert result.chat_reply == fallback_question(0, "other")


def test_enforce_one_question_pain_scale_by_topic() -> None:
    scale = "On a scale of 0-10, how bad is it?"
    assert enforce_one_question(_intake(scale), 0, "symptom_headache").chat_reply == scale
    replaced = enforce_one_question(_intake(scale), 0, "vitamin_or_med").chat_reply
    assert replaced == fallback_question(0, "vitamin_or_med")


def test_sanitize_advice_removes_dose_and_regimen() -> None:
    text = sanitize_advice("Take 400 mg ibuprofen twice a day.")
    assert "400" not in text
    assert "twice a day" not in text
    assert text.startswith("• It may be worth discussing with your doctor whether to take")


def test_sanitize_advice_strength_and_duration() -> None:
    text = sanitize_advice("A 1% hydrocortisone cream may help.\nIce the area for 10-15 minutes.")
    assert "1%" not in text
    assert "10-15 minutes" not in text
    assert "a doctor-directed strength" in text
    assert "a short time" in text


def test_sanitize_advice_softens_directives() -> None:
    text = sanitize_advice("You should drink more water.")
    assert "should" not in text
    assert "it may be worth discussing with your doctor whether you could drink more water" in text


def test_sanitize_advice_leaves_plain_text_alone() -> None:
    text = "Tension headaches are common and often linked to stress or poor sleep."
    assert sanitize_advice(text) == text


def test_ensure_advice_defaults_fills_missing_fields() -> None:
    result = ensure_advice_defaults(
        _advice(advice_text="Short.", possible_causes=["Tension headache", "Dehydration"])
    )
    assert result.disclaimer == ADVICE_DISCLAIMER
    assert result.final_reminder == FINAL_REMINDER
    assert "Tension headache; Dehydration" in result.advice_text
    assert result.advice_text.rstrip().endswith(FINAL_REMINDER)


def test_ensure_advice_defaults_keeps_existing_disclaimer() -> None:
    result = ensure_advice_defaults(_advice(disclaimer="Education only.", advice_text="x" * 80))
    assert result.disclaimer == "Education only."
    assert result.advice_text == "x" * 80


def test_ensure_advice_defaults_without_sanitizing() -> None:
    advice = "Some people find 200 mg of magnesium helpful; discuss this with your doctor first."
    result = ensure_advice_defaults(_advice(advice_text=advice), sanitize=False)
    assert result.advice_text == advice


def test_ensure_urgent_notice_prefixes_reply() -> None:
    result = ensure_urgent_notice(_advice())
    assert result.chat_reply.startswith(URGENT_REPLY)
    assert result.urgent_triggers


def test_ensure_urgent_notice_respects_existing_language() -> None:
    reply = "Please call an ambulance now."
    result = ensure_urgent_notice(_advice(urgent_triggers=["Chest pain"]).model_copy(update={"chat_reply": reply}))
    assert result.chat_reply == reply
    assert result.urgent_triggers == ["Chest pain"]


def test_synthesize_fallback_urgent() -> None:
    result = synthesize_fallback(True, "symptom_cardioresp", 0)
    assert result.stage == "advice"
    assert "urgent" in result.chat_reply.lower()
    assert result.advice_text
    assert result.disclaimer


def test_synthesize_fallback_intake() -> None:
    result = synthesize_fallback(False, "symptom_rash", 1)
    assert result.stage == "intake"
    assert result.chat_reply == fallback_question(1, "symptom_rash")
    assert result.topic_type == "symptom_rash"


def test_ensure_reply_rescues_empty_reply() -> None:
    result = ensure_reply(_advice().model_copy(update={"chat_reply": ""}), 0, "lab_test")
    assert result.stage == "intake"
    assert result.chat_reply == fallback_question(0, "lab_test")
