"""Tests for limits, config resolution, the event bus and call utilities."""

import logging
import threading
import time

import pytest

import config
from steward import limits
from steward.errors import Cancelled, HttpFailure, StreamFailure, ToolTimeout
from steward.event_bus import DebugLogListener, EventBus, LLM_RETRY, PERMISSION, TOOL_CALL
from steward.limits import get_limit
from steward.logging import attach_log_file, get_logger
from steward.llm import AnthropicProvider, GeminiProvider, OpenAIProvider, create_provider
from steward.llm_utils import call_with_retry, is_retryable, run_with_timeout


# ---- Limits ----

def test_limit_defaults_and_overrides(monkeypatch):
    assert get_limit("agent.max_turns") == 50
    assert get_limit("sub_task.max_turns") == 20
    assert get_limit("retry.max_retries") == 3
    assert get_limit("retry.base_delay_ms") == 1000

    monkeypatch.setattr(limits, "_overrides", {"agent.max_turns": "7"})
    assert get_limit("agent.max_turns") == 7

    with pytest.raises(KeyError, match="Unknown limit"):
        get_limit("agent.max_turnz")


def test_limits_reload_reads_config(monkeypatch):
    monkeypatch.setattr(config, "_user_config", {"limits": {"tool.timeout_s": 99}})
    monkeypatch.setattr(limits, "_overrides", {})
    limits.reload()
    try:
        assert get_limit("tool.timeout_s") == 99
    finally:
        monkeypatch.undo()
        limits.reload()


# ---- Config ----

def test_dotted_get_and_provider_priority(monkeypatch):
    monkeypatch.setattr(config, "_user_config", {
        "model": "top-level-model",
        "providers": {"openai": {"model": "gpt-4o-mini"}},
        "limits": {"agent.max_turns": 12},
    })
    assert config.get("limits.agent") is None
    assert config.get("providers.openai.model") == "gpt-4o-mini"
    assert config.get("missing.key", "fallback") == "fallback"

    assert config._provider_get("model", provider="openai") == "gpt-4o-mini"
    assert config._provider_get("model", provider="anthropic") == "top-level-model"
    assert config._provider_get("base_url", provider="gemini") == (
        "https://generativelanguage.googleapis.com/v1beta"
    )
    assert config._provider_get("nothing", "dflt", provider="gemini") == "dflt"


def test_api_key_per_provider(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    assert config.get_api_key("openai") == "sk-openai"
    assert config.get_api_key("gemini") is None
    assert config.get_api_key("unknown") is None


def test_data_dir_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("STEWARD_DIR", str(tmp_path))
    config._reset_data_dir()
    try:
        assert config.get_data_dir() == tmp_path.resolve()
    finally:
        monkeypatch.undo()
        config._reset_data_dir()


def test_create_provider(monkeypatch):
    monkeypatch.setattr(config, "_user_config", {})
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")

    provider = create_provider("anthropic")
    assert isinstance(provider, AnthropicProvider)
    assert provider.api_key == "sk-ant"
    assert provider.model == "claude-sonnet-4-20250514"
    assert provider.base_url == "https://api.anthropic.com"

    provider = create_provider("OpenAI", api_key="k", model="gpt-4o-mini", base_url="http://proxy/")
    assert isinstance(provider, OpenAIProvider)
    assert (provider.model, provider.base_url) == ("gpt-4o-mini", "http://proxy")

    assert isinstance(create_provider("gemini", api_key="g"), GeminiProvider)
    with pytest.raises(ValueError, match="Unknown provider"):
        create_provider("llama")


def test_clone_keeps_settings_with_fresh_session():
    provider = OpenAIProvider("k", "gpt-4o-mini", "http://proxy")
    clone = provider.clone()
    assert (clone.api_key, clone.model, clone.base_url) == ("k", "gpt-4o-mini", "http://proxy")
    assert clone._session is not provider._session


# ---- Event bus ----

def test_event_bus_dispatch_and_filtering():
    bus = EventBus(session_id="s")
    seen = []
    bus.subscribe(seen.append)
    bus.subscribe(lambda e: 1 / 0)  # a failing listener never breaks emit

    first = bus.emit(TOOL_CALL, agent="main", msg="call", data={"tool_name": "glob"})
    bus.emit(LLM_RETRY, agent="main/sub", level="warning")

    assert first.id == "evt_0001"
    assert [e.type for e in seen] == [TOOL_CALL, LLM_RETRY]
    assert bus.get_events(types={TOOL_CALL})[0].msg == "call"
    assert [e.type for e in bus.get_events(agent="main/sub")] == [LLM_RETRY]
    assert len(bus.get_events(since_index=1)) == 1

    bus.unsubscribe(seen.append)
    bus.emit(TOOL_CALL)
    assert len(seen) == 2
    bus.clear()
    assert len(bus) == 0


def test_session_log_lines_carry_event_tags():
    logger = get_logger()
    path = attach_log_file("tagtest")
    try:
        bus = EventBus(session_id="tagtest")
        bus.subscribe(DebugLogListener(logger))
        bus.emit(PERMISSION, agent="main", level="info", msg="Permission granted: run_command (ls)")
        for handler in logger.handlers:
            handler.flush()
        last = path.read_text(encoding="utf-8").splitlines()[-1]
    finally:
        for handler in [h for h in logger.handlers if isinstance(h, logging.FileHandler)]:
            logger.removeHandler(handler)
            handler.close()

    assert last.endswith("| tagtest | permission | [main] Permission granted: run_command (ls)")


# ---- Retry ----

def test_retry_delays_double_until_exhausted(bus):
    calls = []
    delays = []

    def always_busy():
        calls.append(1)
        raise HttpFailure("x", 529, "overloaded")

    with pytest.raises(HttpFailure):
        call_with_retry(always_busy, max_retries=3, base_delay_ms=1,
                        on_retry=lambda attempt, delay, err: delays.append((attempt, delay)))
    assert len(calls) == 4
    assert delays == [(1, 1), (2, 2), (3, 4)]
    assert len(bus.get_events(types={LLM_RETRY})) == 3


def test_retryable_classification():
    assert all(is_retryable(HttpFailure("x", s, "")) for s in (429, 500, 502, 503, 529))
    assert not any(is_retryable(HttpFailure("x", s, "")) for s in (400, 401, 403, 404))
    assert not is_retryable(StreamFailure("interrupted"))


def test_cancel_during_backoff():
    def unavailable():
        raise HttpFailure("x", 503, "")

    cancel = threading.Event()
    threading.Timer(0.05, cancel.set).start()
    started = time.monotonic()
    with pytest.raises(Cancelled):
        call_with_retry(unavailable, cancel_event=cancel, max_retries=1, base_delay_ms=10_000)
    assert time.monotonic() - started < 5


# ---- Timeouts ----

def test_run_with_timeout():
    assert run_with_timeout(lambda: "fast", 1, name="quick") == "fast"

    with pytest.raises(ToolTimeout, match="timed out after 0.05s"):
        run_with_timeout(lambda: time.sleep(2), 0.05, name="sleepy")

    with pytest.raises(ZeroDivisionError):
        run_with_timeout(lambda: 1 / 0, 1, name="broken")
