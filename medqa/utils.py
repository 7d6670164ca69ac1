import json
import re
from typing import Any, Dict, Optional

FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fence(text: str) -> str:
    """Purpose: Remove a leading/trailing markdown code fence around model output.
    Inputs/Outputs: Input is a raw string; output is the unfenced, stripped string.
    Side Effects / State: None; pure function.
    Dependencies: FENCE_RE; used by safe_json_loads.
    Failure Modes: Returns an empty string for falsy input.
    If Removed: Fenced JSON still parses via block extraction, but less directly.
    Testing Notes: "```json {...} ```" should come back as "{...}".
    """
    # Drop ```json / ``` wrappers the model sometimes adds.
    if not text:
        return ""
    return FENCE_RE.sub("", text.strip()).strip()


def safe_json_loads(text: Any) -> Optional[Dict[str, Any]]:
    """Purpose: Parse a JSON object from a model output string safely.
    Inputs/Outputs: Input is raw text (or an already-decoded dict); output is a dict
        or None if parsing fails.
    Side Effects / State: None; pure function.
    Dependencies: Uses strip_code_fence and json.loads.
    Failure Modes: Returns None on decode errors, non-object JSON, or missing block.
    If Removed: Backend output parsing becomes brittle and raises on wrapped text.
    Testing Notes: Validate plain, fenced, and prose-wrapped JSON; malformed returns None.
    """
    # Try the whole string first, then the outermost braces.
    if isinstance(text, dict):
        return text
    if not isinstance(text, str):
        return None
    candidate = strip_code_fence(text)
    if not candidate:
        return None
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed
    # Fall back to the span between the outermost braces.
    start, end = candidate.find("{"), candidate.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        parsed = json.loads(candidate[start : end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_output_text(payload: Any) -> Optional[str]:
    """Return the generated text of a Responses API payload, or None if absent."""
    if not isinstance(payload, dict):
        return None
    output_text = payload.get("output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text
    output = payload.get("output")
    if not isinstance(output, list):
        return None
    for item in output:
        if not isinstance(item, dict):
            continue
        for part in item.get("content") or []:
            if not isinstance(part, dict):
                continue
            if part.get("type") in {"output_text", "text"} and isinstance(part.get("text"), str):
                return part["text"]
    return None
