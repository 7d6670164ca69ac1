from __future__ import annotations

import dataclasses
import json

import pytest
import requests

from medqa.errors import ModerationUnavailable
from medqa.openai_client import NETWORK_ERROR_STATUS, OpenAIClient
from medqa.schema import build_text_format


class FakeResponse:
    def __init__(self, status_code: int, payload=None, text_body: bool = False) -> None:
        self.status_code = status_code
        self._payload = payload
        self._text_body = text_body

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self):
        if self._text_body:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    def __init__(self, responses) -> None:
        self._responses = list(responses)
        self.calls = []
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def post(self, url, headers=None, json=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(settings, responses, sleeps=None):
    session = FakeSession(responses)
    sleep = sleeps.append if sleeps is not None else (lambda _: None)
    return OpenAIClient(settings, session=session, sleep=sleep), session


def test_missing_key_is_rejected(settings) -> None:
    with pytest.raises(ValueError):
        OpenAIClient(dataclasses.replace(settings, openai_api_key=""))


def test_create_response_parses_fenced_output_text(settings) -> None:
    body = {"output_text": '```json\n{"stage": "intake", "chat_reply": "When did it start?"}\n```'}
    client, session = _client(settings, [FakeResponse(200, body)])
    messages = [{"role": "user", "content": "My head hurts"}]

    result = client.create_response(messages, build_text_format())

    assert result.ok is True
    assert result.status == 200
    assert result.parsed == {"stage": "intake", "chat_reply": "When did it start?"}
    assert result.raw == body
    call = session.calls[0]
    assert call["url"] == f"{settings.openai_base_url}/responses"
    assert call["headers"]["Authorization"] == "Bearer test-key"
    assert call["json"]["model"] == settings.openai_model
    assert call["json"]["input"] == messages
    assert call["json"]["text"]["format"]["type"] == "json_schema"
    assert call["json"]["text"]["format"]["strict"] is False


def test_create_response_reads_output_items(settings) -> None:
    payload = {"stage": "advice", "chat_reply": "Here is some information."}
    body = {"output": [{"type": "message", "content": [{"type": "output_text", "text": json.dumps(payload)}]}]}
    client, _ = _client(settings, [FakeResponse(200, body)])
    assert client.create_response([], build_text_format()).parsed == payload


def test_create_response_retries_rate_limit(settings) -> None:
    sleeps = []
    ok_body = {"output_text": '{"stage": "intake", "chat_reply": "Any fever?"}'}
    client, session = _client(
        settings,
        [FakeResponse(429, {"error": {"message": "slow down"}}), FakeResponse(200, ok_body)],
        sleeps=sleeps,
    )

    result = client.create_response([], build_text_format())

    assert result.ok is True
    assert result.parsed["chat_reply"] == "Any fever?"
    assert len(session.calls) == 2
    assert sleeps == [settings.backoff_base_seconds]


def test_create_response_gives_up_after_max_attempts(settings) -> None:
    sleeps = []
    limited = [FakeResponse(429, {"error": {"message": "Rate limit reached"}}) for _ in range(3)]
    client, session = _client(settings, limited, sleeps=sleeps)

    result = client.create_response([], build_text_format())

    assert result.ok is False
    assert result.status == 429
    assert result.parsed is None
    assert result.error == "Rate limit reached"
    assert len(session.calls) == settings.max_attempts
    assert sleeps == [1.0, 2.0, 4.0]


def test_create_response_network_error_is_absorbed(settings) -> None:
    client, _ = _client(settings, [requests.ConnectionError("connection reset")])
    result = client.create_response([], build_text_format())
    assert result.ok is False
    assert result.status == NETWORK_ERROR_STATUS
    assert "connection reset" in result.error


def test_create_response_unparseable_text(settings) -> None:
    client, _ = _client(settings, [FakeResponse(200, {"output_text": "I cannot answer that."})])
    result = client.create_response([], build_text_format())
    assert result.ok is True
    assert result.parsed is None


def test_create_response_non_json_body(settings) -> None:
    client, _ = _client(settings, [FakeResponse(502, text_body=True)])
    result = client.create_response([], build_text_format())
    assert result.ok is False
    assert result.raw is None
    assert result.error == "HTTP 502"


def test_moderate_flagged(settings) -> None:
    body = {"results": [{"flagged": True, "categories": {"violence": True, "harassment": False}}]}
    client, session = _client(settings, [FakeResponse(200, body)])

    verdict = client.moderate("some text")

    assert verdict.flagged is True
    assert verdict.categories == ["violence"]
    assert session.calls[0]["url"] == f"{settings.openai_base_url}/moderations"
    assert session.calls[0]["json"] == {"model": settings.moderation_model, "input": "some text"}


def test_moderate_clean(settings) -> None:
    client, _ = _client(settings, [FakeResponse(200, {"results": [{"flagged": False, "categories": {}}]})])
    assert client.moderate("headache").flagged is False


def test_moderate_network_error_raises(settings) -> None:
    client, _ = _client(settings, [requests.Timeout("timed out")])
    with pytest.raises(ModerationUnavailable) as excinfo:
        client.moderate("headache")
    assert excinfo.value.status_code == 500


def test_moderate_error_status_uses_upstream_message(settings) -> None:
    body = {"error": {"message": "Incorrect API key provided"}}
    client, _ = _client(settings, [FakeResponse(401, body)])
    with pytest.raises(ModerationUnavailable) as excinfo:
        client.moderate("headache")
    assert excinfo.value.message == "Incorrect API key provided"


def test_close_releases_the_session(settings) -> None:
    client, session = _client(settings, [])
    client.close()
    assert session.closed is True


def test_context_manager_closes_the_session(settings) -> None:
    body = {"results": [{"flagged": False, "categories": {}}]}
    session = FakeSession([FakeResponse(200, body)])
    with OpenAIClient(settings, session=session) as client:
        assert client.moderate("headache").flagged is False
        assert session.closed is False
    assert session.closed is True
