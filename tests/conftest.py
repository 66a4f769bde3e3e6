"""Shared test fixtures."""

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))
sys.path.insert(0, str(Path(__file__).resolve().parent))

# Logs and CLI history go to a throwaway directory, set before steward.logging
# resolves LOG_DIR at import time
os.environ.setdefault("STEWARD_DIR", str(ROOT / ".pytest_steward"))

import pytest

from steward import limits
from steward.event_bus import EventBus, set_event_bus
from steward.host import LocalHost


@pytest.fixture
def bus():
    """A fresh EventBus installed for the current context."""
    b = EventBus(session_id="test")
    set_event_bus(b)
    return b


@pytest.fixture
def host(tmp_path):
    return LocalHost(str(tmp_path))


@pytest.fixture
def fast_retries(monkeypatch):
    """Shrink the retry backoff so retry tests finish quickly."""
    monkeypatch.setattr(limits, "_overrides", {**limits._overrides, "retry.base_delay_ms": 1})
