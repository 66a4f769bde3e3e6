"""Provider-agnostic types and abstract base class for LLM providers.

All loop code depends on these types, never on a backend's wire format.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Union

import requests

from ..errors import HttpFailure, NetworkFailure, StreamFailure
from ..limits import get_limit

logger = logging.getLogger("steward")


# ---------------------------------------------------------------------------
# Content model
# ---------------------------------------------------------------------------

@dataclass
class TextBlock:
    text: str
    type: str = field(default="text", init=False)

    def to_dict(self) -> dict:
        return {"type": "text", "text": self.text}


@dataclass
class ThinkingBlock:
    """A reasoning trace.

    ``signature`` is the opaque token some backends require when the trace
    is sent back to them in a later request; empty when the backend did not
    issue one.
    """
    text: str
    signature: str = ""
    type: str = field(default="thinking", init=False)

    def to_dict(self) -> dict:
        return {"type": "thinking", "thinking": self.text, "signature": self.signature}


@dataclass
class RedactedThinkingBlock:
    """A reasoning trace the backend encrypted; replayed back verbatim."""
    data: str
    type: str = field(default="redacted_thinking", init=False)

    def to_dict(self) -> dict:
        return {"type": "redacted_thinking", "data": self.data}


@dataclass
class ToolUseBlock:
    id: str
    name: str
    input: dict
    type: str = field(default="tool_use", init=False)

    def to_dict(self) -> dict:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass
class ToolResultBlock:
    tool_use_id: str
    content: str
    is_error: bool = False
    type: str = field(default="tool_result", init=False)

    def to_dict(self) -> dict:
        d = {"type": "tool_result", "tool_use_id": self.tool_use_id, "content": self.content}
        if self.is_error:
            d["is_error"] = True
        return d


ContentBlock = Union[TextBlock, ThinkingBlock, RedactedThinkingBlock, ToolUseBlock, ToolResultBlock]


def block_from_dict(data: dict) -> ContentBlock:
    """Parse the wire dict form of a content block."""
    btype = data.get("type")
    if btype == "text":
        return TextBlock(data.get("text", ""))
    if btype == "thinking":
        return ThinkingBlock(data.get("thinking", ""), data.get("signature", ""))
    if btype == "redacted_thinking":
        return RedactedThinkingBlock(data.get("data", ""))
    if btype == "tool_use":
        raw_input = data.get("input")
        return ToolUseBlock(data["id"], data["name"], raw_input if isinstance(raw_input, dict) else {})
    if btype == "tool_result":
        return ToolResultBlock(data["tool_use_id"], data.get("content", ""),
                               bool(data.get("is_error", False)))
    raise ValueError(f"Unknown content block type: {btype!r}")


@dataclass
class Message:
    """One conversation entry.

    Attributes:
        role: ``"user"`` or ``"assistant"``.
        content: Plain text, or an ordered list of content blocks.
    """
    role: str
    content: str | list[ContentBlock]

    def blocks(self) -> list[ContentBlock]:
        """Content as a block list (plain text becomes one TextBlock)."""
        if isinstance(self.content, str):
            return [TextBlock(self.content)] if self.content else []
        return list(self.content)

    def to_dict(self) -> dict:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [b.to_dict() for b in self.content]}


@dataclass(frozen=True)
class ToolDefinition:
    """Tool schema handed verbatim to the provider.

    The ``input_schema`` dict is JSON-schema-shaped and provider-agnostic.
    """
    name: str
    description: str
    input_schema: dict


# ---------------------------------------------------------------------------
# Results, capabilities, pricing
# ---------------------------------------------------------------------------

END_TURN = "end_turn"
TOOL_USE = "tool_use"
MAX_TOKENS = "max_tokens"
ERROR = "error"

STOP_REASONS = frozenset({END_TURN, TOOL_USE, MAX_TOKENS, ERROR})


@dataclass(frozen=True)
class StreamedResult:
    """Provider-agnostic outcome of one provider call."""
    content: tuple
    stop_reason: str = END_TURN
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]


@dataclass(frozen=True)
class ProviderCapabilities:
    streaming: bool = True
    tool_use: bool = True
    thinking: bool = False
    vision: bool = False


@dataclass(frozen=True)
class Pricing:
    """USD per million tokens."""
    input: float
    output: float

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens * self.input + output_tokens * self.output) / 1_000_000


def parse_tool_arguments(raw: str) -> dict:
    """Parse accumulated tool-call argument JSON.

    Malformed or non-object payloads yield ``{}`` so one bad call never
    aborts the stream.
    """
    if not raw:
        return {}
    try:
        args = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Malformed tool arguments, using {}: %r", raw[:200])
        return {}
    return args if isinstance(args, dict) else {}


TextCallback = Callable[[str], None]


# ---------------------------------------------------------------------------
# LLMProvider ABC
# ---------------------------------------------------------------------------

class LLMProvider(ABC):
    """Abstract interface that every backend must implement.

    Subclasses set the class attributes ``name``, ``capabilities``,
    ``MODELS``, ``PRICING`` and ``DEFAULT_MODEL``.
    """

    name: str = ""
    capabilities: ProviderCapabilities = ProviderCapabilities()
    MODELS: tuple[str, ...] = ()
    PRICING: dict[str, Pricing] = {}
    DEFAULT_MODEL: str = ""
    DEFAULT_BASE_URL: str = ""

    def __init__(
        self,
        api_key: str | None,
        model: str | None = None,
        base_url: str | None = None,
        *,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key or ""
        self.model = model or self.DEFAULT_MODEL
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self._session = session or requests.Session()

    @property
    def available_models(self) -> list[str]:
        return list(self.MODELS)

    def is_authenticated(self) -> bool:
        return bool(self.api_key)

    def get_pricing(self) -> Pricing | None:
        return self.PRICING.get(self.model)

    def clone(self) -> "LLMProvider":
        """Same backend, key, model and URL, with its own HTTP session."""
        return type(self)(self.api_key, self.model, self.base_url)

    @abstractmethod
    def send_streaming(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition],
        max_tokens: int,
        *,
        thinking_budget: int | None = None,
        cancel_event: threading.Event | None = None,
        on_text: TextCallback | None = None,
        on_thinking: TextCallback | None = None,
    ) -> StreamedResult:
        """Stream one model response.

        ``on_text`` / ``on_thinking`` are invoked with each delta as it
        arrives. Raises ``HttpFailure`` for non-2xx answers,
        ``NetworkFailure`` when no status was obtained, ``StreamFailure``
        for in-stream errors and ``Cancelled`` when *cancel_event* is set.
        """

    @abstractmethod
    def create_message(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition],
        max_tokens: int,
        *,
        thinking_budget: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> StreamedResult:
        """Non-streaming variant of :meth:`send_streaming`."""

    # ---- HTTP helpers -------------------------------------------------------

    def _post(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
        *,
        stream: bool,
    ) -> requests.Response:
        """POST *payload* as JSON; raise on transport failure or non-2xx."""
        timeout = (get_limit("http.connect_timeout_s"), get_limit("http.read_timeout_s"))
        try:
            resp = self._session.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json", **headers},
                stream=stream,
                timeout=timeout,
            )
        except requests.exceptions.RequestException as e:
            raise NetworkFailure(f"{self.name} request failed: {e}") from e
        if not 200 <= resp.status_code < 300:
            try:
                body = resp.text
            finally:
                resp.close()
            raise HttpFailure(self.name, resp.status_code, body)
        return resp

    def _get_json(self, resp: requests.Response) -> dict:
        try:
            return resp.json()
        except ValueError as e:
            raise StreamFailure(f"{self.name} returned a non-JSON body: {e}") from e
        finally:
            resp.close()
