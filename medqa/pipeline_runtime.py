from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

logger = logging.getLogger("medqa.dialogue")


@dataclass
class PipelineStep:
    """One named stage of the dialogue pipeline."""
    name: str
    fn: Callable[[Any], None]
    skip_if: Optional[Callable[[Any], bool]] = None
    always_run: bool = False


class StepRunner:
    """Runs pipeline steps in order on a shared mutable context."""

    def __init__(self, steps: List[PipelineStep]) -> None:
        self._steps = list(steps)

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self._steps]

    def run(self, context: Any) -> None:
        """Purpose: Execute steps in order, honoring skip_if and always_run.
        Inputs/Outputs: Input is a mutable context; no return value.
        Side Effects / State: Step functions mutate the context; each step is timed and
            recorded through context.log when the context provides it.
        Dependencies: PipelineStep definitions.
        Failure Modes: Exceptions from a step propagate; remaining steps do not run.
        If Removed: The dialogue controller has no way to sequence its stages.
        Testing Notes: Verify skip_if and always_run with simple recording steps.
        """
        # always_run steps ignore skip_if so the final guards cannot be bypassed.
        for step in self._steps:
            if not step.always_run and step.skip_if and step.skip_if(context):
                logger.debug("step=%s status=skipped", step.name)
                _record(context, step.name, "skipped")
                continue
            started = time.perf_counter()
            step.fn(context)
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.debug("step=%s status=success elapsed_ms=%.1f", step.name, elapsed_ms)
            _record(context, step.name, "success")


def _record(context: Any, name: str, status: str) -> None:
    log = getattr(context, "log", None)
    if callable(log):
        log(name, status)
