"""
Resolved runtime configuration for the diagnostic agents and the fix executor.

Values come from environment variables (a `.env` file is loaded by the API
entry point). The resolved object is frozen and passed explicitly to the
components that need it.
"""

import os
from dataclasses import dataclass

from pchealth.utils.logger import get_logger

logger = get_logger("config")

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
MIN_ITERATIONS = 3


@dataclass(frozen=True)
class AgentConfig:
    """Immutable runtime config. The API key lives only in memory."""
    # LLM
    anthropic_api_key: str = ""
    llm_model: str = DEFAULT_MODEL
    max_tokens: int = 8192
    temperature: float = 0.0
    llm_timeout: float = 120.0         # wall-clock budget per reasoning-service call

    # Tool-use loop
    max_iterations: int = 10

    # Command execution
    diagnostic_command_timeout: float = 30.0
    fix_command_timeout: float = 300.0
    restore_point_timeout: float = 120.0
    step_delay: float = 0.5            # pause between fix steps so the UI can follow

    # Prompt-size bounds for normalized tool output
    max_event_errors: int = 20
    max_command_output: int = 8000


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric config value", extra={"action": "config_parse", "extra": {"key": name, "value": raw}})
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


def load_config(**overrides) -> AgentConfig:
    """Resolve config from the environment. Explicit keyword overrides win."""
    values = dict(
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
        llm_model=os.getenv("ANTHROPIC_MODEL", DEFAULT_MODEL),
        max_tokens=_env_int("PCHEALTH_MAX_TOKENS", 8192),
        llm_timeout=_env_float("PCHEALTH_LLM_TIMEOUT", 120.0),
        max_iterations=_env_int("PCHEALTH_MAX_ITERATIONS", 10),
        diagnostic_command_timeout=_env_float("PCHEALTH_DIAGNOSTIC_TIMEOUT", 30.0),
        fix_command_timeout=_env_float("PCHEALTH_COMMAND_TIMEOUT", 300.0),
        restore_point_timeout=_env_float("PCHEALTH_RESTORE_POINT_TIMEOUT", 120.0),
        step_delay=_env_float("PCHEALTH_STEP_DELAY", 0.5),
    )
    values.update(overrides)
    values["max_iterations"] = max(values["max_iterations"], MIN_ITERATIONS)

    config = AgentConfig(**values)
    logger.info("Config resolved", extra={"action": "config_resolved", "extra": {
        "model": config.llm_model,
        "max_iterations": config.max_iterations,
        "llm_timeout": config.llm_timeout,
        "has_api_key": bool(config.anthropic_api_key),
    }})
    return config
