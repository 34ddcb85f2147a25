from __future__ import annotations

import logging
from pathlib import Path

from .errors import ConfigLoadError

logger = logging.getLogger("vecinito.prompts")

MODELFILE_SUFFIX = "-ModelFile.txt"


def load_prompt(prompt_path: Path) -> str:
    """Purpose: Load a prompt file as UTF-8 text and strip BOM if present.
    Inputs/Outputs: Input is a Path to the prompt file; output is the decoded string.
    Side Effects / State: None; pure function reading the filesystem.
    Dependencies: Uses Path.read_text/read_bytes; used by load_agent_prompt.
    Failure Modes: UnicodeDecodeError triggers a fallback decode with errors ignored,
        which can drop invalid bytes. OSError propagates.
    If Removed: System prompts cannot be read and every chat request fails.
    Testing Notes: Validate BOM-stripping and fallback decoding on non-UTF8 files.
    """
    # Read as UTF-8 and fall back to a tolerant decode if needed.
    try:
        return prompt_path.read_text(encoding="utf-8").lstrip("\ufeff")
    except UnicodeDecodeError:
        raw = prompt_path.read_bytes()
        text = raw.decode("utf-8", errors="ignore")
        return text.lstrip("\ufeff")


def agent_prompt_path(prompts_dir: Path, agent: str) -> Path:
    """Return the ModelFile path for an agent, e.g. ``el-vecinito-ModelFile.txt``."""
    return Path(prompts_dir) / f"{agent}{MODELFILE_SUFFIX}"


def load_agent_prompt(prompts_dir: Path, agent: str) -> str:
    """Purpose: Load the system prompt for a named agent.
    Inputs/Outputs: Inputs are the prompts directory and agent id; output is prompt text.
    Side Effects / State: Reads the agent's ModelFile; logs failures.
    Dependencies: Uses agent_prompt_path and load_prompt.
    Failure Modes: Missing/unreadable files or agent ids with path separators raise
        ConfigLoadError; the request fails and nothing is retried.
    If Removed: Free-form chat has no persona and cannot call the model.
    Testing Notes: Unknown agent raises ConfigLoadError naming the agent.
    """
    # Agent ids name a file inside prompts_dir, never a path.
    if not agent or "/" in agent or "\\" in agent or agent.startswith("."):
        raise ConfigLoadError(f"No se pudo cargar configuración de {agent}")
    path = agent_prompt_path(prompts_dir, agent)
    try:
        return load_prompt(path)
    except OSError as exc:
        logger.error("agent=%s prompt unreadable path=%s error=%s", agent, path, exc)
        raise ConfigLoadError(f"No se pudo cargar configuración de {agent}") from exc
