"""steward/limits.py - Central limits registry.

Every numeric loop limit (turns, tokens, timeouts, retries) lives here as
a named constant. Config.json overrides via ``"limits"``.

Public API:
    get_limit(name)  - lookup (int), KeyError on typo
    reload()         - re-read config overrides
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Default limits
# ---------------------------------------------------------------------------

DEFAULTS: dict[str, int] = {
    # Agent loop
    "agent.max_turns":                  50,
    "agent.max_tokens":              16384,
    # Sub-tasks
    "sub_task.max_turns":               20,
    "sub_task.max_workers":              8,
    "sub_task.wait_timeout_s":         600,
    # Tool execution
    "tool.timeout_s":                   30,
    "tool.ask_user_timeout_s":        3600,
    "tool.grep_max_results":           100,
    "tool.web_fetch_max_chars":     100000,
    "tool.web_fetch_timeout_s":         30,
    # Provider retries (HTTP 429/5xx)
    "retry.max_retries":                 3,
    "retry.base_delay_ms":            1000,
    # Provider HTTP timeouts (seconds)
    "http.connect_timeout_s":           30,
    "http.read_timeout_s":             300,
}

# ---------------------------------------------------------------------------
# Runtime state - overrides from config.json
# ---------------------------------------------------------------------------

_overrides: dict[str, int] = {}


def reload() -> None:
    """Re-read config.json overrides for limits.

    Called by ``config.reload_config()`` and at import time.
    """
    global _overrides
    import config
    _overrides = config.get("limits", {})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_limit(name: str) -> int:
    """Return the effective limit for *name*.

    Raises ``KeyError`` if *name* is not in DEFAULTS (catches typos).
    """
    if name not in DEFAULTS:
        raise KeyError(f"Unknown limit: {name!r}")
    override = _overrides.get(name)
    if override is not None:
        return int(override)
    return DEFAULTS[name]


# ---------------------------------------------------------------------------
# Initialize overrides at import time
# ---------------------------------------------------------------------------

try:
    reload()
except Exception:
    pass  # config may not be loadable yet (e.g., during testing)
