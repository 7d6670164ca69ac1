from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from medqa.app import app
from medqa.config import BASE_DIR, DialogueConfig, Settings, load_settings
from medqa.dialogue import DialogueController
from medqa.openai_client import CompletionResult, ModerationResult
from medqa.prompt_builder import PromptBuilder


class FakeBackend:
    """Stands in for OpenAIClient: scripted generation replies and a moderation verdict."""

    def __init__(
        self,
        replies: Optional[List[Any]] = None,
        flagged: bool = False,
        moderation_error: Optional[Exception] = None,
    ) -> None:
        self.replies = list(replies or [])
        self.flagged = flagged
        self.moderation_error = moderation_error
        self.moderation_calls: List[str] = []
        self.generation_calls: List[List[Dict[str, Any]]] = []
        self.closed = False

    def moderate(self, text: str) -> ModerationResult:
        self.moderation_calls.append(text)
        if self.moderation_error is not None:
            raise self.moderation_error
        return ModerationResult(flagged=self.flagged, categories=["violence"] if self.flagged else [])

    def close(self) -> None:
        self.closed = True

    def create_response(self, messages: List[Dict[str, Any]], text_format: Dict[str, Any]) -> CompletionResult:
        self.generation_calls.append(messages)
        if not self.replies:
            return CompletionResult(ok=False, status=502, error="no scripted reply")
        reply = self.replies.pop(0)
        if isinstance(reply, CompletionResult):
            return reply
        return CompletionResult(ok=True, status=200, parsed=reply, raw={"output_text": json.dumps(reply)})


def intake_reply(question: str = "When did it start?", topic: str = "other") -> Dict[str, Any]:
    return {"stage": "intake", "topic_type": topic, "chat_reply": question}


def advice_reply(topic: str = "other", **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "stage": "advice",
        "topic_type": topic,
        "chat_reply": "Thanks for the details. Here is some general information to discuss with your doctor.",
        "advice_text": (
            "What I think so far: the pain started two days ago and is worse in the morning. "
            "What it could be: tension-type headache or poor sleep."
        ),
        "urgent_triggers": ["Sudden worst-ever headache"],
    }
    payload.update(extra)
    return payload


@pytest.fixture
def prompt_builder() -> PromptBuilder:
    return PromptBuilder(BASE_DIR / "prompts", DialogueConfig())


@pytest.fixture
def make_controller(prompt_builder: PromptBuilder):
    def factory(backend: FakeBackend, config: Optional[DialogueConfig] = None) -> DialogueController:
        builder = prompt_builder if config is None else PromptBuilder(BASE_DIR / "prompts", config)
        return DialogueController(backend, builder)

    return factory


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, backend: FakeBackend) -> TestClient:
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setattr(app.state, "backend_factory", lambda settings: backend)
    return TestClient(app)


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    return load_settings()
