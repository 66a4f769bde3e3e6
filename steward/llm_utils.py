"""
Shared call utilities used by AgentLoop and the sub-task tools.

All functions are stateless (operate on passed-in callables, cancel events,
the event bus, etc.).
"""

from __future__ import annotations

import concurrent.futures
import contextvars
import threading
from typing import Callable, TypeVar

from .errors import Cancelled, HttpFailure, ToolTimeout
from .event_bus import get_event_bus, LLM_RETRY, TOKEN_USAGE
from .limits import get_limit

T = TypeVar("T")

# HTTP statuses worth another attempt: rate limits, gateway hiccups and
# Anthropic's 529 "overloaded".
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 529})

RetryCallback = Callable[[int, int, Exception], None]


def is_retryable(exc: BaseException) -> bool:
    """Return True if *exc* is an HTTP failure with a retryable status.

    Failures without a status (connectivity, stream errors) are not retried.
    """
    return isinstance(exc, HttpFailure) and exc.status in RETRYABLE_STATUSES


def call_with_retry(
    fn: Callable[[], T],
    *,
    cancel_event: threading.Event | None = None,
    on_retry: RetryCallback | None = None,
    agent_name: str = "agent",
    max_retries: int | None = None,
    base_delay_ms: int | None = None,
) -> T:
    """Call *fn*, retrying retryable HTTP failures with exponential backoff.

    Makes at most ``1 + max_retries`` attempts. Attempt *n* (0-based) that
    fails with a retryable status waits ``base_delay_ms * 2**n`` before the
    next one. An ``LLM_RETRY`` event is emitted and *on_retry* called before
    each wait. The wait returns early with ``Cancelled`` when *cancel_event*
    is set. Non-retryable failures propagate immediately.
    """
    if max_retries is None:
        max_retries = get_limit("retry.max_retries")
    if base_delay_ms is None:
        base_delay_ms = get_limit("retry.base_delay_ms")

    attempt = 0
    while True:
        try:
            return fn()
        except HttpFailure as e:
            if not is_retryable(e) or attempt >= max_retries:
                raise
            delay_ms = base_delay_ms * (2 ** attempt)
            get_event_bus().emit(
                LLM_RETRY, agent=agent_name, level="warning",
                msg=f"HTTP {e.status}, retrying in {delay_ms} ms ({attempt + 1}/{max_retries})",
                data={"attempt": attempt + 1, "delay_ms": delay_ms, "status": e.status},
            )
            if on_retry:
                on_retry(attempt + 1, delay_ms, e)
            if cancel_event is not None:
                if cancel_event.wait(delay_ms / 1000):
                    raise Cancelled("Cancelled during retry backoff") from e
            else:
                threading.Event().wait(delay_ms / 1000)
            attempt += 1


def run_with_timeout(fn: Callable[[], T], timeout_s: float, *, name: str) -> T:
    """Run *fn* on a daemon thread and wait at most *timeout_s* seconds.

    Raises ``ToolTimeout`` when the deadline passes. The worker thread is
    abandoned, not killed: it keeps running until *fn* returns, but never
    blocks interpreter exit. Exceptions raised by *fn* are re-raised here.
    """
    future: concurrent.futures.Future = concurrent.futures.Future()
    ctx = contextvars.copy_context()

    def _worker() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = ctx.run(fn)
        except BaseException as e:
            future.set_exception(e)
        else:
            future.set_result(result)

    thread = threading.Thread(target=_worker, name=f"tool-{name}", daemon=True)
    thread.start()
    try:
        return future.result(timeout=timeout_s)
    except concurrent.futures.TimeoutError:
        future.cancel()
        raise ToolTimeout(name, timeout_s) from None


def track_usage(
    input_tokens: int,
    output_tokens: int,
    stats,
    agent_name: str,
) -> None:
    """Accumulate one call's token counts into *stats* and emit TOKEN_USAGE."""
    stats.input_tokens += input_tokens
    stats.output_tokens += output_tokens
    stats.total_tokens = stats.input_tokens + stats.output_tokens

    get_event_bus().emit(
        TOKEN_USAGE,
        agent=agent_name,
        level="debug",
        msg=(
            f"[Tokens] {agent_name} in:{input_tokens} out:{output_tokens} "
            f"| cum_in:{stats.input_tokens} cum_out:{stats.output_tokens}"
        ),
        data={
            "agent_name": agent_name,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cumulative_input": stats.input_tokens,
            "cumulative_output": stats.output_tokens,
        },
    )
