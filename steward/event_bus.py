"""
Structured EventBus - single record of everything a loop does.

Every notable step (provider call, retry, tool call, permission decision,
sub-task lifecycle, compaction) is emitted as a ``SessionEvent``. Listeners
turn events into side effects:

    bus.emit() → SessionEvent → listeners[]
      ├── DebugLogListener → Python logger (console + per-session file)
      └── anything the host subscribes (UI bridges, test recorders)

The observer callbacks on ``AgentConfig`` are the caller-facing surface;
the bus is the logging and inspection backbone behind them.
"""

import contextvars
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from .logging import tagged


# ---- Event type constants ----

# Conversation
USER_MESSAGE = "user_message"
AGENT_RESPONSE = "agent_response"

# Tool lifecycle
TOOL_CALL = "tool_call"
TOOL_RESULT = "tool_result"
TOOL_ERROR = "tool_error"
PERMISSION = "permission"

# LLM
THINKING = "thinking"
LLM_CALL = "llm_call"
LLM_RETRY = "llm_retry"
TOKEN_USAGE = "token_usage"

# Task checklist
TASK_UPDATE = "task_update"

# Sub-tasks
SUB_TASK_STARTED = "sub_task_started"
SUB_TASK_DONE = "sub_task_done"
SUB_TASK_CANCELLED = "sub_task_cancelled"

# Conversation maintenance
COMPACTION = "compaction"

# Catch-all for debug-level events that don't need a specific type
DEBUG = "debug"

# Secondary logging (console-only variants of tool lifecycle events)
TOOL_CALL_LOG = "tool_call_log"
TOOL_RESULT_LOG = "tool_result_log"
ERROR_LOG = "error_log"


# ---- SessionEvent ----

@dataclass(frozen=True)
class SessionEvent:
    """A single structured event.

    Fields:
        id: Bus-unique event ID (e.g. "evt_0001").
        type: Event type constant (e.g. "tool_call", "llm_retry").
        ts: ISO 8601 timestamp (UTC, millisecond precision).
        agent: Source loop name.
        level: Log level (debug/info/warning/error).
        summary: One-line human-readable message.
        data: Structured machine-readable payload.
    """
    id: str
    type: str
    ts: str
    agent: str
    level: str
    summary: str
    data: dict

    @property
    def msg(self) -> str:
        return self.summary


class EventBus:
    """Event bus with synchronous listener dispatch.

    Thread-safe: emit() and subscribe() use a lock. Sub-task threads emit
    into the same bus as their parent.
    """

    def __init__(self, session_id: str = ""):
        self._events: list[SessionEvent] = []
        self._lock = threading.Lock()
        self._listeners: list[Callable[[SessionEvent], None]] = []
        self.session_id = session_id
        self._next_event_id: int = 0

    def emit(
        self,
        type: str,
        *,
        agent: str = "agent",
        level: str = "debug",
        msg: str = "",
        data: Optional[dict] = None,
    ) -> SessionEvent:
        """Create, store, and dispatch a SessionEvent.

        Args:
            type: Event type constant (e.g. TOOL_CALL, LLM_RETRY).
            agent: Source loop name.
            level: Log level (debug/info/warning/error).
            msg: One-line summary.
            data: Structured payload.

        Returns:
            The created SessionEvent.
        """
        with self._lock:
            self._next_event_id += 1
            event = SessionEvent(
                id=f"evt_{self._next_event_id:04d}",
                type=type,
                ts=datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
                agent=agent,
                level=level,
                summary=msg,
                data=data or {},
            )
            self._events.append(event)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                pass  # Never let a listener break the emitter
        return event

    def subscribe(self, listener: Callable[[SessionEvent], None]) -> None:
        """Register a listener called synchronously on each emit()."""
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[SessionEvent], None]) -> None:
        """Remove a previously registered listener."""
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def get_events(
        self,
        *,
        types: Optional[set[str]] = None,
        agent: Optional[str] = None,
        since_index: int = 0,
    ) -> list[SessionEvent]:
        """Return stored events, optionally filtered by type and source."""
        with self._lock:
            events = self._events[since_index:]
        return [
            e for e in events
            if (not types or e.type in types) and (agent is None or e.agent == agent)
        ]

    def clear(self) -> None:
        """Remove all stored events."""
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


# ---- ContextVar singleton ----

_bus_var: contextvars.ContextVar[Optional[EventBus]] = contextvars.ContextVar(
    "_bus_var", default=None
)

# Module-level fallback for code that runs before any session bus is set
_fallback_bus: Optional[EventBus] = None
_fallback_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Return the EventBus for the current context.

    Falls back to a module-level singleton (already wired to the logger)
    if no context-specific bus is set.
    """
    bus = _bus_var.get()
    if bus is not None:
        return bus
    global _fallback_bus
    if _fallback_bus is None:
        with _fallback_lock:
            if _fallback_bus is None:
                from .logging import get_logger
                _fallback_bus = EventBus(session_id="<fallback>")
                _fallback_bus.subscribe(DebugLogListener(get_logger()))
    return _fallback_bus


def set_event_bus(bus: EventBus) -> None:
    """Set the EventBus for the current context."""
    _bus_var.set(bus)


# ---- Listeners ----

class DebugLogListener:
    """Writes SessionEvents to the Python logger."""

    _LEVEL_MAP = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }

    # Event type → log_tag shown in the file log
    _TYPE_TO_TAG = {
        USER_MESSAGE: "user_message",
        AGENT_RESPONSE: "agent_response",
        THINKING: "thinking",
        TOOL_ERROR: "error",
        ERROR_LOG: "error",
        LLM_RETRY: "retry",
        PERMISSION: "permission",
        SUB_TASK_STARTED: "sub_task",
        SUB_TASK_DONE: "sub_task",
        SUB_TASK_CANCELLED: "sub_task",
        TASK_UPDATE: "task",
    }

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def __call__(self, event: SessionEvent) -> None:
        level = self._LEVEL_MAP.get(event.level, logging.DEBUG)
        tag = self._TYPE_TO_TAG.get(event.type, "")
        self._logger.log(level, f"[{event.agent}] {event.summary}", extra=tagged(tag))
