"""
Configuration — Gemini Comment Agent

PURPOSE:
    Read every process-wide setting once at startup and freeze it into a
    BotConfig. Nothing else in the package reads environment variables; the
    webhook server passes the config (or the pieces of it each stage needs)
    down explicitly.

SOURCES:
    - Environment variables
    - A .env file in the working directory (loaded with python-dotenv, never
      overriding variables that are already set)

REQUIRED:
    APP_ID, WEBHOOK_SECRET, GEMINI_API_KEY, and one of PRIVATE_KEY_PATH /
    PRIVATE_KEY. PRIVATE_KEY_PATH wins when both are set.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_PERSONAS_DIR = Path(__file__).resolve().parent.parent / "personas"


class ConfigError(Exception):
    """Raised when required settings are missing or malformed."""


@dataclass(frozen=True)
class BotConfig:
    app_id: str
    webhook_secret: str
    private_key: str
    gemini_api_key: str
    gemini_model_name: str = "gemini-2.5-flash"
    gemini_max_output_tokens: int = 8192
    gemini_temperature: float = 0.7
    review_command: str = "!review"
    plan_command: str = "!plan"
    default_persona: str = "default"
    planning_persona: str = "planning-default"
    personas_dir: Path = DEFAULT_PERSONAS_DIR
    port: int = 3000
    log_level: str = "INFO"


def load_config(env: Optional[Mapping[str, str]] = None) -> BotConfig:
    """
    Build a BotConfig from the environment.

    Args:
        env: Mapping to read instead of os.environ. When omitted, a .env file
             is loaded first and os.environ is used.

    Raises:
        ConfigError: listing every missing required variable, or naming the
                     first malformed one.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    missing = [
        name
        for name in ("APP_ID", "WEBHOOK_SECRET", "GEMINI_API_KEY")
        if not env.get(name)
    ]
    private_key = _read_private_key(env)
    if private_key is None:
        missing.append("PRIVATE_KEY_PATH or PRIVATE_KEY")
    if missing:
        raise ConfigError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    return BotConfig(
        app_id=env["APP_ID"],
        webhook_secret=env["WEBHOOK_SECRET"],
        private_key=private_key,
        gemini_api_key=env["GEMINI_API_KEY"],
        gemini_model_name=env.get("GEMINI_MODEL_NAME") or "gemini-2.5-flash",
        gemini_max_output_tokens=_parse_number(env, "GEMINI_MAX_OUTPUT_TOKENS", 8192, int),
        gemini_temperature=_parse_number(env, "GEMINI_TEMPERATURE", 0.7, float),
        review_command=env.get("REVIEW_COMMAND") or "!review",
        plan_command=env.get("PLAN_COMMAND") or "!plan",
        default_persona=env.get("DEFAULT_PERSONA") or "default",
        planning_persona=env.get("PLANNING_PERSONA") or "planning-default",
        personas_dir=Path(env["PERSONAS_DIR"]) if env.get("PERSONAS_DIR") else DEFAULT_PERSONAS_DIR,
        port=_parse_number(env, "PORT", 3000, int),
        log_level=_parse_log_level(env),
    )


# ---------------------------------------------------------------------------
# PRIVATE HELPER FUNCTIONS
# ---------------------------------------------------------------------------


def _read_private_key(env: Mapping[str, str]) -> Optional[str]:
    """
    Return the GitHub App private key PEM, or None if neither variable is set.

    PRIVATE_KEY is usually pasted into a single-line secret, so literal "\\n"
    sequences are turned back into real newlines.
    """
    key_path = env.get("PRIVATE_KEY_PATH")
    if key_path:
        try:
            return Path(key_path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Failed to read private key from PRIVATE_KEY_PATH: {e}") from e

    inline_key = env.get("PRIVATE_KEY")
    if inline_key:
        return inline_key.replace("\\n", "\n")
    return None


def _parse_log_level(env: Mapping[str, str]) -> str:
    level = (env.get("LOG_LEVEL") or "INFO").upper()
    # getLevelName maps known names to ints and echoes unknown ones back as "Level X"
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigError(f"LOG_LEVEL must be a logging level name, got {level!r}")
    return level


def _parse_number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
