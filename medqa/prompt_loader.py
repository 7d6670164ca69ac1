from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable

BOM = "\ufeff"


def load_prompt(prompt_path: Path) -> str:
    """Read one template file; a leading byte-order mark and undecodable bytes are dropped."""
    raw = prompt_path.read_bytes()
    return raw.decode("utf-8", errors="ignore").lstrip(BOM)


def load_prompts(prompts_dir: Path, names: Iterable[str]) -> Dict[str, str]:
    """Purpose: Load the named ``<name>.txt`` templates used by the prompt builder.
    Inputs/Outputs: Inputs are the template directory and template names; output maps
        each name to its stripped text.
    Side Effects / State: Reads the filesystem once per name.
    Dependencies: load_prompt.
    Failure Modes: A missing template raises FileNotFoundError naming the path.
    If Removed: PromptBuilder has no instructions to format.
    Testing Notes: Point at a tmp directory with one template absent.
    """
    templates: Dict[str, str] = {}
    for name in names:
        path = prompts_dir / f"{name}.txt"
        if not path.is_file():
            raise FileNotFoundError(f"Prompt template not found: {path}")
        templates[name] = load_prompt(path).strip()
    return templates
