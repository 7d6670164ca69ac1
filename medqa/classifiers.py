"""Lexical topic and urgency heuristics.

The topic table is evaluated top to bottom and the first matching rule wins, so
more specific categories sit above broader ones. Urgency only looks at the new
message; it biases the dialogue toward immediate advice and never blocks.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

TOPIC_OTHER = "other"

TOPIC_RULES: List[Tuple[re.Pattern[str], str]] = [
    (
        re.compile(
            r"\b(uric|urates?|gout|cholesterol|ldl|hdl|hba1c|ferritin|creatinine|"
            r"blood tests?|lab results?|test results?)\b"
        ),
        "lab_test",
    ),
    (
        re.compile(
            r"\b(tablets?|pills?|capsules?|doses?|dosage|vitamins?|supplements?|medicines?|medications?)\b"
        ),
        "vitamin_or_med",
    ),
    (re.compile(r"\b(rash(es)?|itch(y|ing)?|hives|urticaria|spots?)\b"), "symptom_rash"),
    (
        re.compile(r"\b(headaches?|head ?aches?|migraines?|head hurts?|head pain|head is pounding)\b"),
        "symptom_headache",
    ),
    (re.compile(r"\b(stomach|tummy|belly|abd(omen|ominal)|epigastr\w*)\b"), "symptom_abdominal"),
    (
        re.compile(r"\b(height|tall|short|growth|stature|small for (my |his |her )?age|grow taller)\b"),
        "growth_development",
    ),
    (
        re.compile(r"\b(chest pain|breathless(ness)?|shortness of breath|wheez\w*|asthma|palpitations?)\b"),
        "symptom_cardioresp",
    ),
    (re.compile(r"\b(pregnan\w*|breastfeed\w*|lactat\w*)"), "pregnancy_related"),
]

TOPIC_TYPES: List[str] = [label for _, label in TOPIC_RULES] + [TOPIC_OTHER]

URGENCY_PATTERNS: List[re.Pattern[str]] = [
    re.compile(r"severe chest pain|crushing chest|pain to (the )?left arm|shortness of breath|breathless|can'?t breathe"),
    re.compile(r"stroke|face droop|slurred speech|weakness (on )?one side"),
    re.compile(r"faint(ed|ing)|passed out|collapsed?"),
    re.compile(r"anaphylaxis|throat closing|lip swelling|hives all over|wheezing"),
    re.compile(r"suicid(al|e)|self[- ]harm|want to die"),
    re.compile(r"pregnan\w+.*(bleeding|severe pain|reduced movements?)"),
    re.compile(r"high fever.*(confusion|confused|rash)"),
    re.compile(r"major trauma|car crash|serious injury"),
]


@dataclass(frozen=True)
class Classification:
    """Per-request topic and urgency inference."""
    topic: str
    urgent: bool


def infer_topic(user_text: str, history: Iterable[Dict[str, str]] = ()) -> str:
    """Purpose: Infer a coarse topic label from history plus the new message.
    Inputs/Outputs: Inputs are the new message and normalized history; output is a
        label from TOPIC_TYPES.
    Side Effects / State: None.
    Dependencies: TOPIC_RULES ordering decides ties.
    Failure Modes: Defaults to "other" when nothing matches.
    If Removed: Prompts lose the topic hint and fallback questions become generic.
    Testing Notes: Text with both "rash" and "headache" must resolve to symptom_rash.
    """
    # Search the whole conversation so follow-ups keep their topic.
    parts = [turn.get("content", "") for turn in history]
    parts.append(user_text or "")
    text = " ".join(parts).lower()
    for pattern, label in TOPIC_RULES:
        if pattern.search(text):
            return label
    return TOPIC_OTHER


def detect_urgency(user_text: str) -> bool:
    """Return True when the new message matches any red-flag pattern."""
    text = str(user_text or "").lower()
    return any(pattern.search(text) for pattern in URGENCY_PATTERNS)


def classify(user_text: str, history: Iterable[Dict[str, str]] = ()) -> Classification:
    return Classification(topic=infer_topic(user_text, history), urgent=detect_urgency(user_text))
