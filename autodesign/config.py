from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Pattern memory
PATTERN_CAP = 15
DECAY = 0.7
SUMMARIZE_INTERVAL = 5
CONSOLIDATED_SCORE = 0.95
REJECTION_SCORE = 0.8

# Decision context
CONTEXT_MIN_SCORE = 0.4
CONTEXT_LIMIT = 5
RECENT_ACTIONS = 3

# Run loop
UNIT_COST = 0.04
STYLE_REGRESSION_MARGIN = 0.1
PAUSE_POLL_S = 1.0
SIMULATED_EXECUTION_S = 0.5

DEFAULT_REASONING_MODEL = "gemini-2.5-flash"
DEFAULT_REASONING_FALLBACK_MODEL = "gemini-2.0-flash"
DEFAULT_IMAGE_EDIT_MODEL = "gemini-2.5-flash-image"


def get_api_key() -> Optional[str]:
    key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    if key:
        return key
    # Optional: read from ~/.config/gemini/api_key
    cfg_path = Path.home() / ".config" / "gemini" / "api_key"
    try:
        if cfg_path.exists():
            return cfg_path.read_text().strip() or None
    except OSError:
        return None
    return None


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    """Gemini access settings resolved from the environment (and .env)."""

    api_key: Optional[str]
    reasoning_model: str
    reasoning_fallback_model: str
    image_edit_model: str
    max_retries: int
    timeout_s: int

    @classmethod
    def from_env(cls) -> "Settings":
        # searches for .env in CWD/parents; real env vars win
        load_dotenv(override=False)
        return cls(
            api_key=get_api_key(),
            reasoning_model=os.getenv("AUTODESIGN_REASONING_MODEL", DEFAULT_REASONING_MODEL),
            reasoning_fallback_model=os.getenv(
                "AUTODESIGN_REASONING_FALLBACK_MODEL", DEFAULT_REASONING_FALLBACK_MODEL
            ),
            image_edit_model=os.getenv("AUTODESIGN_IMAGE_EDIT_MODEL", DEFAULT_IMAGE_EDIT_MODEL),
            max_retries=max(1, _int_env("AUTODESIGN_MAX_RETRIES", 2)),
            timeout_s=max(1, _int_env("AUTODESIGN_TIMEOUT_S", 60)),
        )
