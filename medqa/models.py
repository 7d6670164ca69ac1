from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

STAGE_INTAKE = "intake"
STAGE_ADVICE = "advice"


class Turn(BaseModel):
    """One normalized conversation message."""
    role: Literal["user", "assistant"]
    content: str


class AskRequest(BaseModel):
    """Request payload for the ask endpoint.

    ``question`` and ``history`` stay loosely typed so shape problems are
    reported with the endpoint's own messages instead of framework errors.
    """
    question: Any = None
    history: Any = Field(default_factory=list)
    images: Any = Field(default_factory=list)


class StructuredResult(BaseModel):
    """Structured reply shaped by the output schema; everything but stage/chat_reply is optional."""
    model_config = ConfigDict(extra="ignore")

    stage: str = STAGE_INTAKE
    topic_type: Optional[str] = None
    chat_reply: str = ""
    ask_back: Optional[str] = None
    advice_text: Optional[str] = None
    summary: Optional[str] = None
    possible_causes: List[str] = Field(default_factory=list)
    treatments: List[str] = Field(default_factory=list)
    investigations: List[str] = Field(default_factory=list)
    self_care: List[str] = Field(default_factory=list)
    info_gaps: List[str] = Field(default_factory=list)
    urgent_triggers: List[str] = Field(default_factory=list)
    final_reminder: Optional[str] = None
    disclaimer: Optional[str] = None
    needs_more_info: bool = False

    @field_validator("stage", mode="before")
    @classmethod
    def _coerce_stage(cls, value: Any) -> str:
        # Anything that is not an explicit advice stage is treated as intake.
        text = str(value or "").strip().lower()
        return STAGE_ADVICE if text == STAGE_ADVICE else STAGE_INTAKE

    @field_validator("chat_reply", mode="before")
    @classmethod
    def _coerce_reply(cls, value: Any) -> str:
        if value is None:
            return ""
        return value

    @field_validator(
        "possible_causes",
        "treatments",
        "investigations",
        "self_care",
        "info_gaps",
        "urgent_triggers",
        mode="before",
    )
    @classmethod
    def _coerce_list(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        if isinstance(value, list):
            return [str(item) for item in value if isinstance(item, (str, int, float)) and str(item).strip()]
        return value


class AskResponse(BaseModel):
    """Response payload returned by the ask endpoint."""
    ok: bool
    result: Optional[StructuredResult] = None
    error: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None
