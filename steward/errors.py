"""Error taxonomy shared by the provider client, the agent loop and the tools.

Provider-side failures (``NetworkFailure``, ``HttpFailure``,
``StreamFailure``) end a run unless retried. Tool-side failures
(``ToolExecutionFailure`` and subclasses) are caught by the agent loop and
fed back to the model as error-flagged tool results.
"""

from __future__ import annotations


class AgentError(Exception):
    """Base class for all engine errors."""


class NetworkFailure(AgentError):
    """The request failed before any HTTP status was obtained."""


class HttpFailure(AgentError):
    """The backend answered with a non-2xx status."""

    def __init__(self, provider: str, status: int, body: str):
        self.provider = provider
        self.status = status
        self.body = body
        super().__init__(f"{provider} API error {status}: {body}")


class StreamFailure(AgentError):
    """The event stream was interrupted or carried an explicit error event."""


class Cancelled(AgentError):
    """The operation observed a set cancel event."""


class ToolExecutionFailure(AgentError):
    """A tool executor raised."""


class UnknownToolError(ToolExecutionFailure):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ToolTimeout(ToolExecutionFailure):
    def __init__(self, name: str, timeout_s: float):
        self.name = name
        self.timeout_s = timeout_s
        super().__init__(f"Tool '{name}' timed out after {timeout_s:g}s")


class PermissionDenied(ToolExecutionFailure):
    def __init__(self, message: str = "Permission denied by user."):
        super().__init__(message)
