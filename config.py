import json
import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

# Secret - stays in .env (per-provider env vars: ANTHROPIC_API_KEY, OPENAI_API_KEY, GOOGLE_API_KEY)

# User config - loaded from ~/.steward/config.json (primary)
# or project-root config.json (fallback).
CONFIG_PATH = Path.home() / ".steward" / "config.json"
_LOCAL_CONFIG_PATH = Path(__file__).resolve().parent / "config.json"
_user_config: dict = {}


def _load_config() -> dict:
    # Project-local config.json as base, user home config overlaid on top
    merged: dict = {}
    for path in (_LOCAL_CONFIG_PATH, CONFIG_PATH):
        if path is not None and path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    merged.update(json.load(f))
            except (json.JSONDecodeError, OSError):
                pass
    return merged


def get(key: str, default=None):
    """Get a config value by dot-separated key. E.g. get('limits.agent.max_turns', 50)"""
    keys = key.split(".")
    val = _user_config
    for k in keys:
        if isinstance(val, dict):
            val = val.get(k)
        else:
            return default
    return val if val is not None else default


_user_config = _load_config()


# ---- Data directory -----------------------------------------------------------
# Base directory for logs and CLI history.
# Priority: STEWARD_DIR env var > "data_dir" config key > ~/.steward

_data_dir: Optional[Path] = None


def get_data_dir() -> Path:
    """Return the resolved base data directory.

    Resolution order:
    1. ``STEWARD_DIR`` environment variable (highest - useful for CI/Docker)
    2. ``"data_dir"`` key in config.json
    3. ``~/.steward`` (default)
    """
    global _data_dir
    if _data_dir is not None:
        return _data_dir
    env_val = os.environ.get("STEWARD_DIR")
    if env_val:
        _data_dir = Path(env_val).expanduser().resolve()
    else:
        configured = get("data_dir")
        if configured:
            _data_dir = Path(configured).expanduser().resolve()
        else:
            _data_dir = Path.home() / ".steward"
    return _data_dir


def _reset_data_dir() -> None:
    """Reset the cached data directory (for testing only)."""
    global _data_dir
    _data_dir = None


# ---- LLM provider config ------------------------------------------------------
LLM_PROVIDER = get("llm_provider", "anthropic")  # "anthropic", "openai", "gemini"

_PROVIDER_ENV_KEYS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GOOGLE_API_KEY",
}


def get_api_key(provider: str | None = None) -> str | None:
    """Return the API key for the given provider.

    Each provider uses its own env var:
      anthropic → ANTHROPIC_API_KEY
      openai    → OPENAI_API_KEY
      gemini    → GOOGLE_API_KEY
    """
    p = (provider or LLM_PROVIDER).lower()
    env_key = _PROVIDER_ENV_KEYS.get(p)
    if env_key:
        return os.getenv(env_key)
    return None


# ---- Per-provider defaults ---------------------------------------------------
# Used as final fallback when neither providers.<name>.key nor a top-level
# key is set in config.json.
_PROVIDER_DEFAULTS = {
    "anthropic": {
        "model": "claude-sonnet-4-20250514",
        "base_url": "https://api.anthropic.com",
        "thinking_budget": 0,
    },
    "openai": {
        "model": "gpt-4o",
        "base_url": "https://api.openai.com",
        "thinking_budget": 0,
    },
    "gemini": {
        "model": "gemini-2.0-flash",
        "base_url": "https://generativelanguage.googleapis.com/v1beta",
        "thinking_budget": 0,
    },
}


def _provider_get(key: str, default=None, provider: str | None = None):
    """Get a config value with provider-section priority.

    Resolution order:
    1. providers.<provider>.key          (provider-specific)
    2. Top-level key                     (override)
    3. _PROVIDER_DEFAULTS[provider].key  (hardcoded defaults)
    4. default argument

    *provider* defaults to the configured ``llm_provider``.
    """
    provider = provider or get("llm_provider", "anthropic")
    # 1. Provider section
    val = get(f"providers.{provider}.{key}")
    if val is not None:
        return val
    # 2. Top-level key
    val = get(key)
    if val is not None:
        return val
    # 3. Hardcoded provider defaults
    provider_defaults = _PROVIDER_DEFAULTS.get(provider, {})
    if key in provider_defaults:
        return provider_defaults[key]
    return default


LLM_MODEL = _provider_get("model")
LLM_BASE_URL = _provider_get("base_url")
THINKING_BUDGET = _provider_get("thinking_budget", 0)
CONSOLE_FORMAT = get("console_format", "simple")  # "simple", "full", "clean"


# ---- Setting descriptions ----------------------------------------------------
# Keys match config.json keys. Nested keys use dot notation.
CONFIG_DESCRIPTIONS: dict[str, str] = {
    "llm_provider": "Active LLM backend: 'anthropic', 'openai' or 'gemini'.",
    "model": "Model name for the active provider. Overridden by providers.<name>.model.",
    "base_url": "API base URL. Point at a compatible proxy or gateway if needed.",
    "thinking_budget": "Reasoning token budget sent to backends that support it (0 disables).",
    "console_format": "Console log style: 'simple' (bare messages), 'full' (same as file log) or 'clean' (no console output).",
    "data_dir": "Base directory for logs and CLI history. Default: ~/.steward",
    "limits": "Override loop limits (turns, tokens, timeouts, retries). Keys are named limits (e.g. 'agent.max_turns', 'tool.timeout_s'). See steward/limits.py DEFAULTS for all names.",
}


def reload_config() -> None:
    """Re-read config from disk and reassign all module-level constants.

    Existing loops keep their current provider; only new loops pick up
    changes.
    """
    global _user_config
    global LLM_PROVIDER, LLM_MODEL, LLM_BASE_URL, THINKING_BUDGET, CONSOLE_FORMAT

    load_dotenv(override=True)

    _user_config = _load_config()
    _reset_data_dir()

    LLM_PROVIDER = get("llm_provider", "anthropic")
    LLM_MODEL = _provider_get("model")
    LLM_BASE_URL = _provider_get("base_url")
    THINKING_BUDGET = _provider_get("thinking_budget", 0)
    CONSOLE_FORMAT = get("console_format", "simple")

    # Reload limit overrides from config
    try:
        from steward.limits import reload as _reload_limits

        _reload_limits()
    except ImportError:
        pass
