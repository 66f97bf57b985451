# config.py
"""
Shared configuration for the field mapper.
Used by:
- matcher.py (thresholds)
- llm_resolver.py (model parameters)
- function_app.py / cli.py (Settings.from_env)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# ---------- MATCHING ----------

# Inclusive lower bounds: >= MAPPING_THRESHOLD is accepted without review,
# >= SUGGESTION_THRESHOLD is offered to the reviewer.
MAPPING_THRESHOLD = 0.8
SUGGESTION_THRESHOLD = 0.7

# Token overlap is worth less than a substring hit
TOKEN_OVERLAP_DISCOUNT = 0.9

# Confidence is rounded before classification so 0.8 stays 0.8
SCORE_PRECISION = 4

# Learned aliases need this many confirmed uses before they count
LEARNED_ALIAS_MIN_USAGE = 2

# ---------- DATA / PATHS ----------

DEFAULT_ALIASES_PATH = Path(__file__).resolve().parent / "data" / "aliases.yaml"

# ---------- LLM ----------

DEFAULT_LLM_MODEL = "claude-sonnet-4-20250514"
DEFAULT_LLM_TEMPERATURE = 0.0
DEFAULT_LLM_MAX_TOKENS = 2048
DEFAULT_LLM_TIMEOUT = 30.0

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_path(name: str) -> Optional[Path]:
    raw = os.environ.get(name, "").strip()
    return Path(raw) if raw else None


@dataclass
class Settings:
    """Runtime settings, normally read from app settings / environment."""

    ai_enabled: bool = True
    api_key: str = ""
    auth_token: str = ""
    base_url: Optional[str] = None
    model: str = DEFAULT_LLM_MODEL
    temperature: float = DEFAULT_LLM_TEMPERATURE
    max_tokens: int = DEFAULT_LLM_MAX_TOKENS
    timeout: float = DEFAULT_LLM_TIMEOUT
    aliases_path: Optional[Path] = None
    history_path: Optional[Path] = None
    mapping_threshold: float = MAPPING_THRESHOLD
    suggestion_threshold: float = SUGGESTION_THRESHOLD
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not 0.0 <= self.suggestion_threshold <= self.mapping_threshold <= 1.0:
            raise ValueError(
                "thresholds must satisfy 0 <= suggestion_threshold <= mapping_threshold <= 1 "
                f"(got {self.suggestion_threshold}, {self.mapping_threshold})"
            )

    @property
    def ai_available(self) -> bool:
        return self.ai_enabled and bool(self.api_key or self.auth_token)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            ai_enabled=_env_flag("FIELD_MAPPER_AI_ENABLED", True),
            api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            auth_token=os.environ.get("FIELD_MAPPER_LLM_AUTH_TOKEN", ""),
            base_url=os.environ.get("FIELD_MAPPER_LLM_BASE_URL") or None,
            model=os.environ.get("FIELD_MAPPER_LLM_MODEL") or DEFAULT_LLM_MODEL,
            timeout=_env_float("FIELD_MAPPER_LLM_TIMEOUT", DEFAULT_LLM_TIMEOUT),
            aliases_path=_env_path("FIELD_MAPPER_ALIASES_PATH"),
            history_path=_env_path("FIELD_MAPPER_HISTORY_PATH"),
            log_level=(os.environ.get("FIELD_MAPPER_LOG_LEVEL") or "INFO").upper(),
        )
