from __future__ import annotations

from typing import Any, Dict

from .models import STAGE_ADVICE, STAGE_INTAKE

SCHEMA_NAME = "MedQA_SaferTeachBack"

_STRING = {"type": "string"}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}

# Only stage and chat_reply are required so partial output can still be repaired.
OUTPUT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "stage": {"type": "string", "enum": [STAGE_INTAKE, STAGE_ADVICE]},
        "topic_type": _STRING,
        "disclaimer": _STRING,
        "chat_reply": _STRING,
        "ask_back": _STRING,
        "advice_text": _STRING,
        "summary": _STRING,
        "possible_causes": _STRING_LIST,
        "treatments": _STRING_LIST,
        "investigations": _STRING_LIST,
        "self_care": _STRING_LIST,
        "info_gaps": _STRING_LIST,
        "urgent_triggers": _STRING_LIST,
        "final_reminder": _STRING,
        "needs_more_info": {"type": "boolean"},
    },
    "required": ["stage", "chat_reply"],
}


def build_text_format(name: str = SCHEMA_NAME) -> Dict[str, Any]:
    """Wrap OUTPUT_SCHEMA in the Responses API ``text.format`` block (non-strict)."""
    return {
        "format": {
            "type": "json_schema",
            "name": name,
            "schema": OUTPUT_SCHEMA,
            "strict": False,
        }
    }
