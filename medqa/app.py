from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .config import Settings, load_settings
from .dialogue import DialogueBackend, DialogueController, validate_question
from .errors import InvalidRequest, MissingCredential, RequestError
from .models import AskRequest, AskResponse
from .openai_client import OpenAIClient
from .prompt_builder import PromptBuilder

BASE_DIR = Path(__file__).resolve().parent

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)
else:
    load_dotenv()

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("medqa").setLevel(log_level)
logger = logging.getLogger("medqa.app")

app = FastAPI(title="MedQA Teach-Back Assistant")
app.state.backend_factory = OpenAIClient

if load_settings().allow_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["*"],
    )


def get_settings() -> Settings:
    """Settings are re-read per request so the credential is resolved at invocation time."""
    return load_settings()


@lru_cache(maxsize=8)
def _prompt_builder(settings: Settings) -> PromptBuilder:
    return PromptBuilder(settings.prompts_dir, settings.dialogue, max_images=settings.max_images)


def build_backend(request: Request, settings: Settings) -> DialogueBackend:
    """Purpose: Provide the moderation + generation backend for one request.
    Inputs/Outputs: Inputs are the request and Settings; output is a backend built by
        app.state.backend_factory (OpenAIClient by default).
    Side Effects / State: None beyond client construction.
    Dependencies: OpenAIClient.
    Failure Modes: Raises MissingCredential (500) when OPENAI_API_KEY is unset.
    If Removed: The ask endpoint cannot reach OpenAI.
    Testing Notes: Replace app.state.backend_factory to inject a fake backend.
    """
    # Fail before any outbound call when the credential is missing.
    if not settings.openai_api_key:
        raise MissingCredential()
    return request.app.state.backend_factory(settings)


@app.exception_handler(RequestError)
async def request_error_handler(request: Request, exc: RequestError) -> JSONResponse:
    logger.info("path=%s status=%s error=%s", request.url.path, exc.status_code, exc.message)
    body = AskResponse(ok=False, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("path=%s unhandled error", request.url.path)
    body = AskResponse(ok=False, error="Internal server error")
    return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))


@app.post("/api/ask")
async def ask(request: Request, settings: Settings = Depends(get_settings)) -> JSONResponse:
    """Purpose: Handle one chat turn: validate, moderate, generate, and repair.
    Inputs/Outputs: Input is the raw JSON body {question, history?, images?}; output is
        {ok, result} on success or {ok: false, error} with a 4xx/5xx status.
    Side Effects / State: Outbound calls to moderation and generation; no persistence.
    Dependencies: validate_question, build_backend, DialogueController.
    Failure Modes: Invalid JSON and short questions return 400 before any outbound
        call; a missing key returns 500; moderation problems return 400/500.
    If Removed: The service has no chat surface.
    Testing Notes: Scenarios A-E through TestClient with a fake backend factory.
    """
    # Parse the body ourselves so malformed JSON maps to the endpoint's own 400.
    raw_body = await request.body()
    try:
        body = json.loads(raw_body or b"{}")
    except ValueError as exc:
        raise InvalidRequest() from exc
    if not isinstance(body, dict):
        raise InvalidRequest()
    payload = AskRequest.model_validate(body)
    question = validate_question(payload.question, settings.min_question_length)

    backend = build_backend(request, settings)
    try:
        controller = DialogueController(backend, _prompt_builder(settings))
        outcome = await run_in_threadpool(controller.handle, question, payload.history, payload.images)
    finally:
        backend.close()

    response = AskResponse(ok=True, result=outcome.result, raw=outcome.raw)
    return JSONResponse(status_code=200, content=response.model_dump(exclude_none=True))


@app.get("/api/debug-env")
def debug_env(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    """Report only whether the API key is configured; never its value."""
    return {"hasKey": bool(settings.openai_api_key)}


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}

