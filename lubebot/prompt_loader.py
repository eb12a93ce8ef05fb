from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

DEFAULT_PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"

ANALYSIS_PROMPT = "analysis.md"
REPLY_PROMPT = "reply.md"


def load_prompt(prompt_path: Path) -> str:
    """Purpose: Load a prompt template as UTF-8 text without a BOM.
    Inputs/Outputs: Input is a Path; output is the decoded string.
    Side Effects / State: Reads the filesystem.
    Dependencies: Used by the chat agent for the analysis and reply templates.
    Failure Modes: Undecodable bytes are dropped; a missing file raises OSError.
    If Removed: The agent has no template for either LLM call.
    Testing Notes: A file written with a BOM loads without it.
    """
    try:
        return prompt_path.read_text(encoding="utf-8").lstrip("\ufeff")
    except UnicodeDecodeError:
        return prompt_path.read_bytes().decode("utf-8", errors="ignore").lstrip("\ufeff")


def load_prompts(prompts_dir: Optional[Path] = None) -> Dict[str, str]:
    """Both templates keyed by file name."""
    base = Path(prompts_dir) if prompts_dir else DEFAULT_PROMPTS_DIR
    return {name: load_prompt(base / name) for name in (ANALYSIS_PROMPT, REPLY_PROMPT)}
