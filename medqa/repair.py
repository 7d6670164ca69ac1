"""Post-processing passes over a parsed StructuredResult.

Each pass takes a result and returns it, so the controller can apply them in a
fixed order and tests can exercise them one at a time:

    enforce_one_question   intake: single question ending in "?", no stray scales
    ensure_advice_defaults advice: disclaimer, final reminder, non-empty advice text
    sanitize_advice        advice: strip dosing, regimens, and imperative phrasing
    ensure_urgent_notice   advice on urgent turns: urgent-care language in the reply
    ensure_reply           last guard: never emit an empty chat_reply
"""

from __future__ import annotations

import re
from typing import Dict, List

from .classifiers import TOPIC_OTHER
from .models import STAGE_ADVICE, STAGE_INTAKE, StructuredResult

ADVICE_DISCLAIMER = (
    "I can't give a specific diagnosis or treatment for you. This is general education only. "
    "I can share possibilities and ideas to discuss with your doctor."
)
SHORT_DISCLAIMER = "General education only, not medical advice."
FINAL_REMINDER = "Please see a doctor for personalised advice."
URGENT_REPLY = (
    "This sounds potentially urgent. If you have severe pain, trouble breathing, fainting, "
    "or stroke-like symptoms, please seek urgent care now."
)
URGENT_ADVICE_TEXT = (
    "This is general education only. If symptoms are severe, new, or rapidly worsening, especially "
    "chest pain, breathing trouble, one-sided weakness, heavy bleeding, or signs of a severe allergic "
    "reaction, seek emergency care now or call local emergency services."
)
MIN_ADVICE_CHARS = 40

FALLBACK_QUESTIONS: Dict[str, List[str]] = {
    "vitamin_or_med": [
        "What's the exact product and dose, and why are you taking it?",
        "How long have you been using it, and any side effects so far?",
    ],
    "lab_test": [
        "Which test are you asking about and what was the number and unit (if you know)?",
        "Why was the test ordered, and have you had red, hot, very painful joints?",
    ],
    "symptom_headache": [
        "When did the headache start, and was it sudden or gradual?",
        "How severe is it (0-10), and any nausea or light sensitivity?",
    ],
    "symptom_abdominal": [
        "When did the tummy pain start, and was it sudden or gradual?",
        "Where is it (upper/lower/central/right/left), and how severe is it (0-10)?",
    ],
    "symptom_rash": [
        "When did the rash start, and where on your body is it?",
        "Is it itchy, painful, or spreading, and do you have a fever?",
    ],
    "symptom_cardioresp": [
        "When did the chest or breathing symptom start, and was it sudden or gradual?",
        "What makes it better or worse (rest, activity, cold air, lying down)?",
    ],
    "growth_development": [
        "How tall are you now, and roughly how much have you grown in the last 6-12 months?",
        "Have you noticed puberty changes yet, such as a growth spurt, periods, or voice change?",
    ],
    "pregnancy_related": [
        "How many weeks pregnant are you, and what symptoms are you noticing?",
        "Any bleeding, severe pain, or reduced baby movements?",
    ],
    TOPIC_OTHER: [
        "When did this start, and was it sudden or gradual?",
        "How severe is it (0-10), and what makes it better or worse?",
    ],
}

PAIN_SCALE_TOPICS = {
    "symptom_headache",
    "symptom_abdominal",
    "symptom_cardioresp",
    "symptom_rash",
    TOPIC_OTHER,
}

PAIN_SCALE_RE = re.compile(r"\b0\s*(?:–|-|to|/)\s*10\b")
URGENT_LANGUAGE_RE = re.compile(r"\b(urgent|emergency|ambulance)\b", re.IGNORECASE)

DOSE_RE = re.compile(r"\b\d+(?:\.\d+)?\s?(?:mg|mcg|µg|g|ml|mcl|units?|iu)\b", re.IGNORECASE)
PERCENT_RE = re.compile(r"\b\d+(?:\.\d+)?\s?%")
TIMED_RANGE_RE = re.compile(
    r"\b\d+\s?(?:–|-|to)\s?\d+\s?(?:minutes?|mins?|hours?|hrs?)\b", re.IGNORECASE
)
TIMED_RE = re.compile(r"\b\d+\s?(?:minutes?|mins?|hours?|hrs?)\b", re.IGNORECASE)
FREQUENCY_RE = re.compile(
    r"\b(?:\d+|once|twice|one|two|three|four)\s?(?:x|times?)?\s?(?:/|a |per )(?:day|night|week)\b",
    re.IGNORECASE,
)
IMPERATIVE_RE = re.compile(
    r"(^|\n)[ \t]*[-•*]?[ \t]*(Take|Use|Apply|Start|Stop|Begin|Increase|Decrease|Avoid|Ice|Elevate|Rest|Wear|Do)\b",
    re.IGNORECASE,
)
DIRECTIVE_RE = re.compile(r"\byou (?:should|need to|must)\b", re.IGNORECASE)


def fallback_question(step: int, topic: str = TOPIC_OTHER) -> str:
    """Purpose: Pick a deterministic intake question from the per-topic bank.
    Inputs/Outputs: Inputs are the intake step index and topic; output is a question
        that always ends with "?".
    Side Effects / State: None.
    Dependencies: FALLBACK_QUESTIONS; unknown topics use the "other" bank.
    Failure Modes: Steps past the bank reuse its last entry; negative steps use the first.
    If Removed: The controller cannot guarantee a non-empty intake reply.
    Testing Notes: step 0/1 for each topic; unknown topic falls back to "other".
    """
    # Clamp the step into the bank and normalize the trailing question mark.
    bank = FALLBACK_QUESTIONS.get(topic) or FALLBACK_QUESTIONS[TOPIC_OTHER]
    question = bank[min(max(step, 0), len(bank) - 1)]
    return question if question.endswith("?") else question + "?"


def topic_allows_pain_scale(topic: str) -> bool:
    """Only pain, itch, and breathing topics may ask for a 0-10 score."""
    return topic in PAIN_SCALE_TOPICS


def enforce_one_question(result: StructuredResult, step: int, topic: str) -> StructuredResult:
    """Purpose: Collapse an intake reply to exactly one relevant question.
    Inputs/Outputs: Inputs are an intake result, step index, and topic; output is the
        same result with chat_reply repaired and ask_back cleared.
    Side Effects / State: Mutates the given result.
    Dependencies: fallback_question, topic_allows_pain_scale, PAIN_SCALE_RE.
    Failure Modes: None; unusable replies are replaced by the bank question.
    If Removed: Intake turns could ask several questions or none at all.
    Testing Notes: Two questions keep the first; a statement becomes the bank question;
        a 0-10 scale on a medication topic is replaced.
    """
    # Keep text up to the first question mark, then validate it.
    question = (result.chat_reply or "").strip()
    mark = question.find("?")
    if mark != -1:
        question = question[: mark + 1]
    mentions_scale = bool(PAIN_SCALE_RE.search(question))
    if not question or not question.endswith("?") or (mentions_scale and not topic_allows_pain_scale(topic)):
        question = fallback_question(step, topic)
    result.chat_reply = question
    result.ask_back = ""
    return result


def sanitize_advice(text: str) -> str:
    """Purpose: Rewrite advice text into non-directive, dose-free language.
    Inputs/Outputs: Input is free advice text; output is the sanitized text.
    Side Effects / State: None; pure function.
    Dependencies: DOSE_RE, PERCENT_RE, TIMED_RANGE_RE, TIMED_RE, FREQUENCY_RE,
        IMPERATIVE_RE, DIRECTIVE_RE.
    Failure Modes: Over-matching can soften harmless numbers; that is accepted.
    If Removed: Model-provided doses and instructions reach the user verbatim.
    Testing Notes: "Take 400 mg twice a day" loses the dose and the regimen.
    """
    # Numbers first, then phrasing, then whitespace.
    cleaned = str(text or "")
    cleaned = DOSE_RE.sub("a doctor-directed dose", cleaned)
    cleaned = PERCENT_RE.sub("a doctor-directed strength", cleaned)
    cleaned = TIMED_RANGE_RE.sub("a short time", cleaned)
    cleaned = TIMED_RE.sub("a short time", cleaned)
    cleaned = FREQUENCY_RE.sub("regularly as advised by a clinician", cleaned)
    cleaned = IMPERATIVE_RE.sub(_soften_imperative, cleaned)
    cleaned = DIRECTIVE_RE.sub("it may be worth discussing with your doctor whether you could", cleaned)
    cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def _soften_imperative(match: re.Match[str]) -> str:
    prefix, verb = match.group(1), match.group(2)
    return f"{prefix}• It may be worth discussing with your doctor whether to {verb.lower()}"


def build_advice_outline(result: StructuredResult) -> str:
    """Compose a structured advice text from whatever list fields the model returned."""
    sections = [
        result.summary or "What I think so far: based on what you shared, here is a general picture.",
    ]
    if result.possible_causes:
        sections.append("What it could be (in general): " + "; ".join(result.possible_causes[:3]))
    else:
        sections.append("What it could be (in general): a few possibilities your doctor may consider.")
    if result.treatments:
        sections.append("Ideas to discuss with your doctor: " + "; ".join(result.treatments[:3]))
    else:
        sections.append(
            "Ideas to discuss with your doctor: examination, whether tests are useful, "
            "and options for comfort while you wait."
        )
    if result.investigations:
        sections.append("Checks your doctor may consider: " + "; ".join(result.investigations[:3]))
    if result.self_care:
        sections.append("Comfort-only tips (not a treatment plan): " + "; ".join(result.self_care[:3]))
    if result.urgent_triggers:
        sections.append("Watch-outs: " + "; ".join(result.urgent_triggers[:5]))
    if result.info_gaps:
        sections.append("Info your doctor may ask or check: " + "; ".join(result.info_gaps[:3]))
    sections.append("Next step: " + (result.final_reminder or FINAL_REMINDER))
    return "\n\n".join(sections)


def ensure_advice_defaults(result: StructuredResult, sanitize: bool = True) -> StructuredResult:
    """Purpose: Guarantee the advice-stage fields the UI relies on.
    Inputs/Outputs: Input is an advice result; output is the same result with a
        disclaimer, a final reminder, and advice text of useful length.
    Side Effects / State: Mutates the given result.
    Dependencies: sanitize_advice, build_advice_outline.
    Failure Modes: None.
    If Removed: Advice bubbles could ship without the safety disclaimer.
    Testing Notes: Empty disclaimer/final_reminder are filled; short advice is rebuilt.
    """
    # Fill missing boilerplate before touching free text.
    if not (result.disclaimer or "").strip():
        result.disclaimer = ADVICE_DISCLAIMER
    if not (result.final_reminder or "").strip():
        result.final_reminder = FINAL_REMINDER
    advice = (result.advice_text or "").strip()
    if sanitize and advice:
        advice = sanitize_advice(advice)
    if len(advice) < MIN_ADVICE_CHARS:
        advice = build_advice_outline(result)
        if sanitize:
            advice = sanitize_advice(advice)
    result.advice_text = advice
    return result


def ensure_urgent_notice(result: StructuredResult) -> StructuredResult:
    """Prefix the reply with an urgent-care warning unless it already carries one."""
    reply = (result.chat_reply or "").strip()
    if not URGENT_LANGUAGE_RE.search(reply):
        result.chat_reply = f"{URGENT_REPLY} {reply}".strip()
    if not result.urgent_triggers:
        result.urgent_triggers = [
            "Severe or crushing chest pain",
            "Trouble breathing",
            "Fainting or one-sided weakness",
        ]
    return result


def synthesize_fallback(urgent: bool, topic: str, step: int) -> StructuredResult:
    """Purpose: Build a safe result when the backend produced nothing usable.
    Inputs/Outputs: Inputs are the urgency flag, topic, and intake step; output is an
        advice-stage urgent warning or an intake-stage bank question.
    Side Effects / State: None.
    Dependencies: fallback_question and the urgent/disclaimer constants.
    Failure Modes: None; always returns a non-empty chat_reply.
    If Removed: Backend outages would produce blank chat bubbles.
    Testing Notes: urgent=True yields stage advice with urgent language.
    """
    # Urgent turns get the warning; everyone else gets the next intake question.
    if urgent:
        return StructuredResult(
            stage=STAGE_ADVICE,
            topic_type=topic,
            chat_reply=URGENT_REPLY,
            advice_text=URGENT_ADVICE_TEXT,
            disclaimer=SHORT_DISCLAIMER,
            final_reminder=FINAL_REMINDER,
        )
    return StructuredResult(
        stage=STAGE_INTAKE,
        topic_type=topic,
        chat_reply=fallback_question(step, topic),
        disclaimer=SHORT_DISCLAIMER,
    )


def ensure_reply(result: StructuredResult, step: int, topic: str) -> StructuredResult:
    """Last guard: an empty reply resets the result to intake with a bank question."""
    if not (result.chat_reply or "").strip():
        result.stage = STAGE_INTAKE
        result.chat_reply = fallback_question(step, topic)
        result.ask_back = ""
    return result
