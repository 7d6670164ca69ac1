from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class DialogueConfig:
    """Turn thresholds and advice knobs shared by the prompt builder and controller."""
    max_intake_turns: int = 2
    min_intake_turns: int = 2
    advice_word_limit: int = 200
    sanitize_advice: bool = True


@dataclass(frozen=True)
class Settings:
    """Configuration container for the OpenAI backend, request limits, and dialogue policy."""
    openai_api_key: str
    openai_base_url: str
    openai_model: str
    moderation_model: str
    request_timeout: float
    temperature: float
    max_output_tokens: int
    max_attempts: int
    backoff_base_seconds: float
    max_images: int
    min_question_length: int
    allow_cors: bool
    prompts_dir: Path
    dialogue: DialogueConfig = field(default_factory=DialogueConfig)


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables; called per request so the
        API key is picked up at invocation time.
    Dependencies: Uses os.getenv and BASE_DIR for the prompt directory.
    Failure Modes: Invalid integer/float env values raise ValueError.
    If Removed: The ask endpoint cannot configure the backend or thresholds.
    Testing Notes: Verify defaults and overrides via monkeypatched environment.
    """
    # Resolve dialogue thresholds first so min never exceeds max.
    max_intake = int(os.getenv("MAX_INTAKE_TURNS", "2"))
    min_intake = min(int(os.getenv("MIN_INTAKE_TURNS", str(max_intake))), max_intake)
    dialogue = DialogueConfig(
        max_intake_turns=max_intake,
        min_intake_turns=min_intake,
        advice_word_limit=int(os.getenv("ADVICE_WORD_LIMIT", "200")),
        sanitize_advice=_parse_bool(os.getenv("SANITIZE_ADVICE"), default=True),
    )

    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
        openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        moderation_model=os.getenv("OPENAI_MODERATION_MODEL", "omni-moderation-latest"),
        request_timeout=float(os.getenv("OPENAI_TIMEOUT_SECONDS", "60")),
        temperature=float(os.getenv("MODEL_TEMPERATURE", "0.2")),
        max_output_tokens=int(os.getenv("MAX_OUTPUT_TOKENS", "900")),
        max_attempts=int(os.getenv("MAX_ATTEMPTS", "3")),
        backoff_base_seconds=float(os.getenv("BACKOFF_BASE_SECONDS", "1.0")),
        max_images=int(os.getenv("MAX_IMAGES", "4")),
        min_question_length=int(os.getenv("MIN_QUESTION_LENGTH", "2")),
        allow_cors=_parse_bool(os.getenv("ALLOW_CORS"), default=True),
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        dialogue=dialogue,
    )


def _parse_bool(raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}
