from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .classifiers import TOPIC_TYPES
from .config import DialogueConfig
from .prompt_loader import load_prompts
from .repair import ADVICE_DISCLAIMER, FINAL_REMINDER

TEMPLATE_NAMES = ("system_prompt", "control", "force_advice")
IMAGE_PREFIX = "data:image/"


class PromptBuilder:
    """Formats the instruction messages sent ahead of the conversation."""

    def __init__(self, prompts_dir: Path, config: DialogueConfig, max_images: int = 4) -> None:
        """Purpose: Load prompt templates once and bind the dialogue thresholds.
        Inputs/Outputs: Inputs are the template directory, DialogueConfig, and image cap;
            no return value.
        Side Effects / State: Reads the template files at construction only.
        Dependencies: load_prompts, DialogueConfig.
        Failure Modes: A missing template raises FileNotFoundError.
        If Removed: The controller cannot instruct the backend about stages.
        Testing Notes: Build against the packaged prompts directory.
        """
        # Templates are immutable after load, so formatting stays deterministic.
        self._templates = load_prompts(prompts_dir, TEMPLATE_NAMES)
        self._config = config
        self._max_images = max_images

    @property
    def config(self) -> DialogueConfig:
        return self._config

    def system_prompt(self, assistant_turns: int, topic_hint: str, urgent: bool) -> str:
        """Purpose: Render the leading system instruction for one request.
        Inputs/Outputs: Inputs are assistant turn count, topic hint, urgency; output is text.
        Side Effects / State: None; identical inputs give identical text.
        Dependencies: system_prompt template, TOPIC_TYPES, disclaimer constants.
        Failure Modes: None once templates are loaded.
        If Removed: The backend receives no safety rules or stage control.
        Testing Notes: Control block must show the turn count and both thresholds.
        """
        # Every placeholder in the template is filled from arguments or config.
        return self._templates["system_prompt"].format(
            topic_types=", ".join(f'"{label}"' for label in TOPIC_TYPES),
            topic_hint=topic_hint,
            advice_word_limit=self._config.advice_word_limit,
            disclaimer=ADVICE_DISCLAIMER,
            final_reminder=FINAL_REMINDER,
            assistant_turns=assistant_turns,
            urgent_flag="true" if urgent else "false",
            min_intake_turns=self._config.min_intake_turns,
            max_intake_turns=self._config.max_intake_turns,
        )

    def control_message(self, topic_hint: str) -> str:
        return self._templates["control"].format(topic_hint=topic_hint)

    def force_advice_message(self) -> str:
        return self._templates["force_advice"].format(advice_word_limit=self._config.advice_word_limit)

    def build_messages(
        self,
        system_prompt: str,
        control: str,
        history: List[Dict[str, str]],
        question: str,
        images: Optional[Iterable[Any]] = None,
        force_advice: bool = False,
    ) -> List[Dict[str, Any]]:
        """Purpose: Assemble the Responses API input list for one backend call.
        Inputs/Outputs: Inputs are rendered instructions, normalized history, the new
            question, optional data-URL images, and the force flag; output is a list of
            role/content messages.
        Side Effects / State: None.
        Dependencies: force_advice_message, filter_images.
        Failure Modes: None; invalid images are dropped.
        If Removed: Backend calls have no input to send.
        Testing Notes: Forced calls start with the force-advice instruction; images
            become input_image parts on the last user turn.
        """
        # Leading system messages, then history, then the new question.
        messages: List[Dict[str, Any]] = []
        if force_advice:
            messages.append({"role": "system", "content": self.force_advice_message()})
        messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "system", "content": control})
        messages.extend({"role": turn["role"], "content": turn["content"]} for turn in history)
        image_urls = filter_images(images, self._max_images)
        if image_urls:
            content: List[Dict[str, Any]] = [{"type": "input_text", "text": question}]
            content.extend({"type": "input_image", "image_url": url} for url in image_urls)
            messages.append({"role": "user", "content": content})
        else:
            messages.append({"role": "user", "content": question})
        return messages


def filter_images(images: Optional[Iterable[Any]], limit: int) -> List[str]:
    """Keep up to ``limit`` data-URL images; anything else is ignored."""
    if not isinstance(images, (list, tuple)) or limit <= 0:
        return []
    urls: List[str] = []
    for image in images:
        if isinstance(image, str) and image.startswith(IMAGE_PREFIX):
            urls.append(image)
        if len(urls) >= limit:
            break
    return urls
