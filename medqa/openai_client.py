from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from .config import Settings
from .errors import ModerationUnavailable
from .retry import call_with_backoff
from .utils import extract_output_text, safe_json_loads

logger = logging.getLogger("medqa.openai")

NETWORK_ERROR_STATUS = 502


@dataclass
class ModerationResult:
    """Outcome of a moderation check on the new user message."""
    flagged: bool
    categories: List[str] = field(default_factory=list)


@dataclass
class CompletionResult:
    """One structured-completion attempt: HTTP outcome, parsed JSON, and raw payload."""
    ok: bool
    status: int
    parsed: Optional[Dict[str, Any]] = None
    raw: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class OpenAIClient:
    """Thin wrapper around the OpenAI moderation and Responses endpoints."""

    def __init__(
        self,
        settings: Settings,
        session: Optional[requests.Session] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        """Purpose: Capture credentials, model names, and retry bounds for outbound calls.
        Inputs/Outputs: Input is Settings plus optional session/sleep overrides; no return.
        Side Effects / State: Creates a requests.Session when none is supplied.
        Dependencies: Uses requests and Settings from config.
        Failure Modes: Raises ValueError if the API key is missing.
        If Removed: Moderation and generation calls cannot execute.
        Testing Notes: Pass a fake session and a no-op sleep to exercise retries offline.
        """
        # Fail fast without a key; the HTTP layer checks this before constructing.
        if not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY is required")
        self._settings = settings
        self._session = session or requests.Session()
        self._sleep = sleep
        self._headers = {
            "Authorization": f"Bearer {settings.openai_api_key}",
            "Content-Type": "application/json",
        }

    def close(self) -> None:
        """Release pooled connections held by the HTTP session."""
        self._session.close()

    def __enter__(self) -> "OpenAIClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def moderate(self, text: str) -> ModerationResult:
        """Purpose: Classify the new user message with the moderation endpoint.
        Inputs/Outputs: Input is the question text only; output is ModerationResult.
        Side Effects / State: One outbound HTTP call.
        Dependencies: requests.Session.post against {base_url}/moderations.
        Failure Modes: Network errors, non-JSON bodies, and non-2xx statuses raise
            ModerationUnavailable, which the endpoint maps to 500.
        If Removed: Flagged content would reach the generation backend.
        Testing Notes: Fake a flagged payload and a connection error.
        """
        # Moderate only the new message, never the history.
        payload = {"model": self._settings.moderation_model, "input": text}
        try:
            response = self._session.post(
                f"{self._settings.openai_base_url}/moderations",
                headers=self._headers,
                json=payload,
                timeout=self._settings.request_timeout,
            )
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("moderation request failed: %s", exc)
            raise ModerationUnavailable() from exc
        # Any upstream moderation error maps to 500, not the upstream status.
        if not response.ok:
            message = _error_message(body) or "Moderation failed"
            logger.warning("moderation status=%s error=%s", response.status_code, message)
            raise ModerationUnavailable(message)
        results = body.get("results") if isinstance(body, dict) else None
        first = results[0] if isinstance(results, list) and results and isinstance(results[0], dict) else {}
        categories = first.get("categories") or {}
        flagged_categories = (
            sorted(name for name, hit in categories.items() if hit) if isinstance(categories, dict) else []
        )
        return ModerationResult(flagged=bool(first.get("flagged")), categories=flagged_categories)

    def create_response(self, messages: List[Dict[str, Any]], text_format: Dict[str, Any]) -> CompletionResult:
        """Purpose: Request one structured completion and parse its JSON object.
        Inputs/Outputs: Inputs are the Responses API input list and text.format block;
            output is a CompletionResult with parsed set only when a JSON object was found.
        Side Effects / State: Up to max_attempts HTTP calls with exponential backoff on 429.
        Dependencies: call_with_backoff, extract_output_text, safe_json_loads.
        Failure Modes: Never raises for network or parse problems; they come back as
            ok=False/status=502 or parsed=None so the controller can fall back.
        If Removed: The dialogue controller has no generation backend.
        Testing Notes: Fake 429-then-200 sequences and wrapped output text.
        """
        # Build the payload once; only the send is retried.
        payload = {
            "model": self._settings.openai_model,
            "input": messages,
            "temperature": self._settings.temperature,
            "max_output_tokens": self._settings.max_output_tokens,
            "text": text_format,
        }

        def send() -> requests.Response:
            return self._session.post(
                f"{self._settings.openai_base_url}/responses",
                headers=self._headers,
                json=payload,
                timeout=self._settings.request_timeout,
            )

        backoff_kwargs: Dict[str, Any] = {
            "attempts": self._settings.max_attempts,
            "base_delay": self._settings.backoff_base_seconds,
        }
        if self._sleep is not None:
            backoff_kwargs["sleep"] = self._sleep
        try:
            response = call_with_backoff(send, **backoff_kwargs)
        except requests.RequestException as exc:
            logger.warning("generation request failed: %s", exc)
            return CompletionResult(ok=False, status=NETWORK_ERROR_STATUS, error=str(exc))

        try:
            data = response.json()
        except ValueError:
            data = None
        raw = data if isinstance(data, dict) else None
        parsed = safe_json_loads(extract_output_text(raw)) if response.ok else None
        error = None if response.ok else (_error_message(raw) or f"HTTP {response.status_code}")
        logger.info(
            "generation status=%s parsed=%s",
            response.status_code,
            parsed is not None,
        )
        return CompletionResult(ok=response.ok, status=response.status_code, parsed=parsed, raw=raw, error=error)


def _error_message(body: Any) -> str:
    """Pull ``error.message`` out of an OpenAI error body."""
    if not isinstance(body, dict):
        return ""
    error = body.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or "")
    if isinstance(error, str):
        return error
    return ""
