from __future__ import annotations

from typing import Any, Dict, List

from .models import Turn

MAX_HISTORY_TURNS = 12
MAX_TURN_CHARS = 800
ALLOWED_ROLES = ("user", "assistant")


def normalize_history(
    raw: Any,
    max_turns: int = MAX_HISTORY_TURNS,
    max_chars: int = MAX_TURN_CHARS,
) -> List[Dict[str, str]]:
    """Purpose: Sanitize and bound caller-supplied conversation history.
    Inputs/Outputs: Input is any value from the request body; output is a list of
        {"role", "content"} dicts, oldest first, at most max_turns long.
    Side Effects / State: None; pure function. Re-applying it to its own output
        returns the same list.
    Dependencies: Used by the dialogue controller before classification and prompting.
    Failure Modes: Never raises; non-list input yields an empty list.
    If Removed: Unbounded or malformed history reaches the model prompt.
    Testing Notes: Check role filtering, 800-char truncation, and last-12 trimming.
    """
    # Drop anything that is not a well-formed turn, then keep the newest entries.
    if not isinstance(raw, list):
        return []
    clean: List[Dict[str, str]] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        role = entry.get("role")
        content = entry.get("content")
        if role not in ALLOWED_ROLES or not isinstance(content, str):
            continue
        clean.append(Turn(role=role, content=content[:max_chars]).model_dump())
    if max_turns <= 0:
        return []
    return clean[-max_turns:]


def count_assistant_turns(history: List[Dict[str, str]]) -> int:
    """Count assistant entries in a normalized window."""
    return sum(1 for turn in history if turn.get("role") == "assistant")
