"""MedQA dialogue controller: intake-then-advice staging around the OpenAI backend.

Role:
    Owns one request lifecycle after the HTTP layer has accepted the body:
    moderation, classification, prompt assembly, one or two structured-completion
    calls, and the repair passes that guarantee a usable reply.

Dialogue data contract (fields passed across steps):
    - history, assistant_turns: normalized caller history and its assistant count.
    - topic, urgent, step_index: classification and fallback-bank position.
    - attempt, forced_advice: last backend attempt and whether advice was forced.
    - result, raw, used_fallback: the repaired StructuredResult and diagnostics.

Step contracts:
    Moderation:
        Checks the new question only; raises ModerationBlocked/ModerationUnavailable.
    Classify:
        Normalizes history, counts assistant turns, infers topic and urgency.
    Generate:
        First backend call in intake framing.
    Force Advice:
        Second call with the force-advice instruction when should_force_advice says so.
    Fallback:
        Synthesizes a safe result when no attempt produced a usable one.
    Urgent Escalation:
        Replaces an intake result on a red-flag turn with the urgent-care advice.
    Repair:
        Intake and advice passes from repair.py, then the empty-reply guard.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError

from .classifiers import TOPIC_OTHER, classify
from .config import DialogueConfig
from .errors import InvalidQuestion, ModerationBlocked
from .history import count_assistant_turns, normalize_history
from .models import STAGE_ADVICE, STAGE_INTAKE, StructuredResult
from .openai_client import CompletionResult, ModerationResult
from .pipeline_runtime import PipelineStep, StepRunner
from .prompt_builder import PromptBuilder
from .repair import (
    enforce_one_question,
    ensure_advice_defaults,
    ensure_reply,
    ensure_urgent_notice,
    synthesize_fallback,
)
from .schema import build_text_format

logger = logging.getLogger("medqa.dialogue")

DEFAULT_MIN_QUESTION_LENGTH = 2


class DialogueBackend(Protocol):
    def moderate(self, text: str) -> ModerationResult: ...

    def create_response(self, messages: List[Dict[str, Any]], text_format: Dict[str, Any]) -> CompletionResult: ...

    def close(self) -> None: ...


@dataclass
class DialogueContext:
    """Mutable context passed through each dialogue step."""
    request_id: str
    question: str
    raw_history: Any
    images: Any = None
    history: List[Dict[str, str]] = field(default_factory=list)
    assistant_turns: int = 0
    topic: str = TOPIC_OTHER
    urgent: bool = False
    step_index: int = 0
    system_prompt: str = ""
    control: str = ""
    attempt: Optional[CompletionResult] = None
    forced_advice: bool = False
    result: Optional[StructuredResult] = None
    raw: Optional[Dict[str, Any]] = None
    used_fallback: bool = False
    trace: List[Dict[str, str]] = field(default_factory=list)

    def log(self, step: str, status: str) -> None:
        self.trace.append({"step": step, "status": status})


@dataclass
class DialogueOutcome:
    """What the HTTP layer needs to shape the response body."""
    result: StructuredResult
    raw: Optional[Dict[str, Any]] = None
    used_fallback: bool = False
    forced_advice: bool = False
    topic: str = TOPIC_OTHER
    urgent: bool = False


def validate_question(question: Any, min_length: int = DEFAULT_MIN_QUESTION_LENGTH) -> str:
    """Return the stripped question or raise InvalidQuestion when it is missing or too short."""
    if not isinstance(question, str):
        raise InvalidQuestion()
    cleaned = question.strip()
    if len(cleaned) < min_length:
        raise InvalidQuestion()
    return cleaned


def should_force_advice(
    turn_count: int,
    urgent: bool,
    first_stage: Optional[str],
    config: DialogueConfig,
    needs_more_info: bool = False,
) -> bool:
    """Purpose: Decide whether to re-prompt the backend with "respond with advice now".
    Inputs/Outputs: Inputs are the assistant turn count, urgency flag, stage of the
        first attempt (None when unusable), dialogue thresholds, and whether the model
        asked for one more answer; output is True when a second call is needed.
    Side Effects / State: None; pure decision function.
    Dependencies: DialogueConfig.min_intake_turns / max_intake_turns.
    Failure Modes: None.
    If Removed: Conversations could stay in intake forever.
    Testing Notes: Truth table over urgency, thresholds, and first stage.
    """
    # Advice already produced: nothing to force.
    if first_stage == STAGE_ADVICE:
        return False
    if urgent:
        return True
    if turn_count >= config.max_intake_turns:
        return True
    return turn_count >= config.min_intake_turns and not needs_more_info


def coerce_result(parsed: Optional[Dict[str, Any]]) -> Optional[StructuredResult]:
    """Turn a parsed JSON object into a StructuredResult, or None when its shape is unusable."""
    if not isinstance(parsed, dict):
        return None
    try:
        return StructuredResult.model_validate(parsed)
    except ValidationError as exc:
        logger.warning("unusable backend output: %s", exc.errors(include_url=False))
        return None


class DialogueController:
    def __init__(self, backend: DialogueBackend, prompt_builder: PromptBuilder) -> None:
        """Purpose: Wire the backend and prompt builder into the ordered dialogue steps.
        Inputs/Outputs: Inputs are a backend (moderation + generation) and a PromptBuilder;
            no return value.
        Side Effects / State: Constructs a StepRunner; holds no per-request state.
        Dependencies: StepRunner/PipelineStep and the step methods on this class.
        Failure Modes: None at init.
        If Removed: The ask endpoint has nothing to run.
        Testing Notes: Drive handle() with a fake backend and inspect trace/stage.
        """
        # Steps run in order; the final guard always runs.
        self._backend = backend
        self._prompts = prompt_builder
        self._config = prompt_builder.config
        self._text_format = build_text_format()
        self._runner = StepRunner(
            steps=[
                PipelineStep("moderation", self._step_moderation),
                PipelineStep("classify", self._step_classify),
                PipelineStep("generate", self._step_generate),
                PipelineStep("force_advice", self._step_force_advice, skip_if=self._skip_force_advice),
                PipelineStep("fallback", self._step_fallback, skip_if=lambda ctx: ctx.result is not None),
                PipelineStep("urgent_escalation", self._step_urgent_escalation, skip_if=_not_urgent_intake),
                PipelineStep("repair_intake", self._step_repair_intake, skip_if=_not_stage(STAGE_INTAKE)),
                PipelineStep("repair_advice", self._step_repair_advice, skip_if=_not_stage(STAGE_ADVICE)),
                PipelineStep("final_guard", self._step_final_guard, always_run=True),
            ]
        )

    def handle(self, question: str, history: Any = None, images: Any = None) -> DialogueOutcome:
        """Purpose: Run the dialogue pipeline for one validated question.
        Inputs/Outputs: Inputs are the question, raw caller history, and optional images;
            output is a DialogueOutcome whose result always has a non-empty chat_reply.
        Side Effects / State: One moderation call and one or two generation calls.
        Dependencies: StepRunner.run and the step methods.
        Failure Modes: ModerationBlocked and ModerationUnavailable propagate; backend
            failures are absorbed into a fallback result.
        If Removed: The HTTP layer cannot produce replies.
        Testing Notes: Scenarios for intake, forced advice, urgency, and moderation.
        """
        # Fresh context per request; nothing is shared across calls.
        context = DialogueContext(
            request_id=uuid.uuid4().hex[:12],
            question=question,
            raw_history=history,
            images=images,
        )
        self._runner.run(context)
        logger.info(
            "request=%s stage=%s topic=%s urgent=%s forced_advice=%s fallback=%s",
            context.request_id,
            context.result.stage,
            context.topic,
            context.urgent,
            context.forced_advice,
            context.used_fallback,
        )
        logger.debug("request=%s steps=%s trace=%s", context.request_id, self._runner.step_names, context.trace)
        return DialogueOutcome(
            result=context.result,
            raw=context.raw if context.used_fallback else None,
            used_fallback=context.used_fallback,
            forced_advice=context.forced_advice,
            topic=context.topic,
            urgent=context.urgent,
        )

    def _step_moderation(self, context: DialogueContext) -> None:
        # Only the new message is moderated.
        verdict = self._backend.moderate(context.question)
        if verdict.flagged:
            logger.info("request=%s moderation=flagged categories=%s", context.request_id, verdict.categories)
            raise ModerationBlocked()

    def _step_classify(self, context: DialogueContext) -> None:
        context.history = normalize_history(context.raw_history)
        context.assistant_turns = count_assistant_turns(context.history)
        classification = classify(context.question, context.history)
        context.topic = classification.topic
        context.urgent = classification.urgent
        context.step_index = max(0, min(context.assistant_turns, self._config.max_intake_turns - 1))
        logger.info(
            "request=%s question_len=%s history=%s assistant_turns=%s topic=%s urgent=%s",
            context.request_id,
            len(context.question),
            len(context.history),
            context.assistant_turns,
            context.topic,
            context.urgent,
        )

    def _step_generate(self, context: DialogueContext) -> None:
        context.system_prompt = self._prompts.system_prompt(context.assistant_turns, context.topic, context.urgent)
        context.control = self._prompts.control_message(context.topic)
        self._call_backend(context, force_advice=False)

    def _skip_force_advice(self, context: DialogueContext) -> bool:
        result = context.result
        return not should_force_advice(
            context.assistant_turns,
            context.urgent,
            result.stage if result is not None else None,
            self._config,
            needs_more_info=bool(result and result.needs_more_info),
        )

    def _step_force_advice(self, context: DialogueContext) -> None:
        # A failed second call keeps whatever usable result the first call produced.
        first_attempt, first_result = context.attempt, context.result
        context.forced_advice = True
        self._call_backend(context, force_advice=True)
        if context.result is None and first_result is not None:
            logger.info("request=%s forced advice unusable, keeping first attempt", context.request_id)
            context.attempt, context.result = first_attempt, first_result

    def _step_fallback(self, context: DialogueContext) -> None:
        context.result = synthesize_fallback(context.urgent, context.topic, context.step_index)
        context.raw = context.attempt.raw if context.attempt is not None else None
        context.used_fallback = True
        logger.warning(
            "request=%s backend unusable status=%s error=%s, using fallback",
            context.request_id,
            context.attempt.status if context.attempt is not None else None,
            context.attempt.error if context.attempt is not None else None,
        )

    def _step_urgent_escalation(self, context: DialogueContext) -> None:
        # Red-flag turns never leave as a plain intake question.
        logger.info("request=%s urgent turn still in intake, escalating", context.request_id)
        context.result = synthesize_fallback(True, context.topic, context.step_index)

    def _step_repair_intake(self, context: DialogueContext) -> None:
        result = context.result
        enforce_one_question(result, context.step_index, result.topic_type or context.topic)

    def _step_repair_advice(self, context: DialogueContext) -> None:
        result = context.result
        ensure_advice_defaults(result, sanitize=self._config.sanitize_advice)
        if context.urgent:
            ensure_urgent_notice(result)

    def _step_final_guard(self, context: DialogueContext) -> None:
        if context.result is None:
            context.result = synthesize_fallback(context.urgent, context.topic, context.step_index)
            context.used_fallback = True
        result = context.result
        if not result.topic_type:
            result.topic_type = context.topic
        ensure_reply(result, context.step_index, result.topic_type)

    def _call_backend(self, context: DialogueContext, force_advice: bool) -> None:
        messages = self._prompts.build_messages(
            context.system_prompt,
            context.control,
            context.history,
            context.question,
            images=context.images,
            force_advice=force_advice,
        )
        attempt = self._backend.create_response(messages, self._text_format)
        context.attempt = attempt
        context.result = coerce_result(attempt.parsed) if attempt.ok else None
        logger.info(
            "request=%s generate force_advice=%s status=%s usable=%s stage=%s",
            context.request_id,
            force_advice,
            attempt.status,
            context.result is not None,
            context.result.stage if context.result is not None else None,
        )


def _not_urgent_intake(context: DialogueContext) -> bool:
    return not context.urgent or context.result is None or context.result.stage == STAGE_ADVICE


def _not_stage(stage: str):
    def check(context: DialogueContext) -> bool:
        return context.result is None or context.result.stage != stage

    return check
