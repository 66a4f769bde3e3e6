"""
Logging configuration for steward.

Two destinations:
  - Console: format chosen by config ``console_format``
    - "simple" - (default) bare messages for DEBUG/INFO, [LEVEL] prefix for WARNING+
    - "full"   - same structured format as the file handler
    - "clean"  - no console output at all (file logging still active)
    DEBUG if --verbose, WARNING+ otherwise.
  - File: always DEBUG, one file per session under <data_dir>/logs/,
    format "timestamp | level | name | session_id | tag | message".

Most call sites do not log directly: they emit on the EventBus and the
DebugLogListener writes the record.
"""

import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

from config import get_data_dir


LOGGER_NAME = "steward"

# Log directory
LOG_DIR = get_data_dir() / "logs"

_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(session_id)s | %(log_tag)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def tagged(tag: str) -> dict:
    """Return ``extra`` dict for logger calls: ``logger.debug("...", extra=tagged("x"))``."""
    return {"log_tag": tag}


# Module-level state (shared across re-inits)
_session_filter: Optional["_SessionFilter"] = None


class _SessionFilter(logging.Filter):
    """Injects session_id into every log record."""

    def __init__(self) -> None:
        super().__init__()
        self.session_id = ""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = self.session_id or "-"
        if not hasattr(record, "log_tag"):
            record.log_tag = ""
        return True


class _ConsoleFormatter(logging.Formatter):
    """Console formatter: shows [LEVEL] prefix only for WARNING and above."""

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            return f"  [{record.levelname}] {record.getMessage()}"
        return f"  {record.getMessage()}"


def attach_log_file(session_id: str) -> Path:
    """Attach a per-session file handler and return the log path.

    Creates or appends to agent_{session_id}.log.
    """
    LOG_DIR.mkdir(parents=True, exist_ok=True)

    log_file = LOG_DIR / f"agent_{session_id}.log"

    logger = get_logger()
    # Remove any existing file handler (e.g. after a session restart)
    logger.handlers = [h for h in logger.handlers if not isinstance(h, logging.FileHandler)]

    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(file_handler)

    set_session_id(session_id)
    logger.info("=" * 60)
    logger.info(f"Session started at {datetime.now().isoformat()}")
    logger.info(f"Log file: {log_file}")
    return log_file


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure console logging for the engine.

    File handlers are attached later by ``attach_log_file()`` once a
    session ID is known.

    Args:
        verbose: If True, show DEBUG level on console; otherwise WARNING+.

    Returns:
        Configured logger instance.
    """
    global _session_filter

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture everything, filter at handler level
    logger.propagate = False

    # Clear existing handlers (in case of re-init)
    logger.handlers.clear()

    # Reuse the filter instance to preserve session_id across re-inits
    if _session_filter is None:
        _session_filter = _SessionFilter()
    logger.addFilter(_session_filter)

    import config as _config
    console_format = _config.get("console_format", "simple")

    if console_format != "clean":
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
        if console_format == "full":
            console_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
        else:
            console_handler.setFormatter(_ConsoleFormatter())
        logger.addHandler(console_handler)

    return logger


def get_logger() -> logging.Logger:
    """Get the engine logger (configured with defaults on first use)."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        return setup_logging(verbose=False)
    return logger


def set_session_id(session_id: str) -> None:
    """Set the session ID included in all subsequent log lines."""
    global _session_filter
    if _session_filter is None:
        # Logger not set up yet - create filter so it's ready when logging starts
        _session_filter = _SessionFilter()
    _session_filter.session_id = session_id


def log_error(
    message: str,
    exc: Optional[BaseException] = None,
    context: Optional[dict] = None,
    agent: str = "agent",
) -> None:
    """Log an error with full details including stack trace.

    Routes through the EventBus; the DebugLogListener writes the record.

    Args:
        message: Error description
        exc: Optional exception to include stack trace from
        context: Optional dict of additional context (tool name, args, etc.)
        agent: Source loop name
    """
    from .event_bus import get_event_bus, ERROR_LOG

    lines = [message]

    if context:
        lines.append("Context:")
        for key, value in context.items():
            lines.append(f"  {key}: {value}")

    if exc is not None:
        lines.append(f"Exception type: {type(exc).__name__}")
        lines.append(f"Exception message: {exc}")
        if exc.__traceback__ is not None:
            lines.append("Stack trace:")
            lines.append("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))

    get_event_bus().emit(ERROR_LOG, agent=agent, level="error", msg="\n".join(lines),
                         data={"short": message, "context": context or {}})


def log_tool_call(tool_name: str, tool_input: dict, agent: str = "agent") -> None:
    """Log a tool call for debugging."""
    from .event_bus import get_event_bus, TOOL_CALL_LOG

    get_event_bus().emit(TOOL_CALL_LOG, agent=agent, level="debug",
                         msg=f"Tool call: {tool_name}({tool_input})",
                         data={"tool_name": tool_name, "tool_input": tool_input})


def log_tool_result(tool_name: str, content: str, is_error: bool,
                    elapsed_ms: int = 0, agent: str = "agent") -> None:
    """Log a tool result."""
    from .event_bus import get_event_bus, TOOL_RESULT_LOG

    if not is_error:
        get_event_bus().emit(TOOL_RESULT_LOG, agent=agent, level="debug",
                             msg=f"Tool result: {tool_name} -> success ({elapsed_ms} ms)",
                             data={"tool_name": tool_name, "status": "success",
                                   "elapsed_ms": elapsed_ms})
    else:
        get_event_bus().emit(TOOL_RESULT_LOG, agent=agent, level="warning",
                             msg=f"Tool result: {tool_name} -> {content}",
                             data={"tool_name": tool_name, "status": "error",
                                   "error": content, "elapsed_ms": elapsed_ms})
