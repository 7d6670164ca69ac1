from __future__ import annotations


class RequestError(Exception):
    """Request-level failure that is surfaced to the caller with an HTTP status."""

    status_code = 400
    default_message = "Bad request"

    def __init__(self, message: str | None = None, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class InvalidRequest(RequestError):
    default_message = "Invalid JSON"


class InvalidQuestion(RequestError):
    default_message = "Please add a bit more detail."


class MissingCredential(RequestError):
    status_code = 500
    default_message = "Missing OPENAI_API_KEY"


class ModerationBlocked(RequestError):
    default_message = "Question blocked by moderation."


class ModerationUnavailable(RequestError):
    status_code = 500
    default_message = "Moderation request failed"
