from __future__ import annotations

import pytest

from medqa.models import AskResponse, StructuredResult


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("advice", "advice"), (" ADVICE ", "advice"), ("intake", "intake"), ("triage", "intake"), (None, "intake")],
)
def test_stage_is_coerced(raw, expected) -> None:
    assert StructuredResult.model_validate({"stage": raw, "chat_reply": "x"}).stage == expected


def test_list_fields_accept_single_strings_and_drop_junk() -> None:
    result = StructuredResult.model_validate(
        {
            "stage": "advice",
            "chat_reply": "Hello",
            "possible_causes": "Tension headache",
            "treatments": ["Rest", "", {"bad": 1}, 3],
            "self_care": None,
        }
    )
    assert result.possible_causes == ["Tension headache"]
    assert result.treatments == ["Rest", "3"]
    assert result.self_care == []


def test_null_reply_and_unknown_keys() -> None:
    result = StructuredResult.model_validate({"stage": "intake", "chat_reply": None, "confidence": 0.3})
    assert result.chat_reply == ""
    assert not hasattr(result, "confidence")


def test_ask_response_omits_unset_fields() -> None:
    body = AskResponse(ok=False, error="Invalid JSON").model_dump(exclude_none=True)
    assert body == {"ok": False, "error": "Invalid JSON"}
