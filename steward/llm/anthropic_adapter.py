"""Anthropic provider - speaks the Messages API over raw HTTP/SSE.

Key Anthropic API differences from OpenAI/Gemini:
- System prompt is a separate ``system`` parameter, not a message.
- Strict user/assistant alternation required - consecutive same-role messages
  must be merged.
- Tool results are sent inside a ``user`` message with ``tool_result`` blocks.
- Extended thinking is controlled via a ``thinking`` parameter with a token
  budget.
- The stream announces every content block explicitly
  (``content_block_start`` / ``_delta`` / ``_stop``) keyed by ``index``.
"""

from __future__ import annotations

import threading
from typing import Any

from ..errors import StreamFailure
from .base import (
    END_TURN,
    MAX_TOKENS,
    TOOL_USE,
    LLMProvider,
    Message,
    Pricing,
    ProviderCapabilities,
    RedactedThinkingBlock,
    StreamedResult,
    TextBlock,
    TextCallback,
    ThinkingBlock,
    ToolDefinition,
    ToolUseBlock,
    block_from_dict,
    parse_tool_arguments,
)
from .sse import iter_response_events, raise_if_cancelled

API_VERSION = "2023-06-01"

_STOP_REASONS = {
    "end_turn": END_TURN,
    "stop_sequence": END_TURN,
    "tool_use": TOOL_USE,
    "max_tokens": MAX_TOKENS,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_tools(tools: list[ToolDefinition]) -> list[dict]:
    """Convert ToolDefinition list to Anthropic tool format."""
    return [
        {
            "name": t.name,
            "description": t.description,
            "input_schema": t.input_schema,
        }
        for t in tools
    ]


def _convert_messages(messages: list[Message]) -> list[dict]:
    """Convert unified messages to Anthropic message dicts.

    Thinking blocks without a signature are dropped (the API rejects them),
    as are messages left with no content. Redacted thinking is sent back
    unchanged.
    """
    converted: list[dict] = []
    for msg in messages:
        if isinstance(msg.content, str):
            if msg.content:
                converted.append({"role": msg.role, "content": msg.content})
            continue
        blocks = [
            b.to_dict() for b in msg.content
            if not (isinstance(b, ThinkingBlock) and not b.signature)
        ]
        if blocks:
            converted.append({"role": msg.role, "content": blocks})
    return _ensure_alternation(converted)


def _ensure_alternation(messages: list[dict]) -> list[dict]:
    """Merge consecutive same-role messages to satisfy Anthropic's alternation rule.

    Anthropic requires strict user/assistant alternation. If two consecutive
    messages have the same role, merge their content.
    """
    if not messages:
        return messages

    merged: list[dict] = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"]:
            prev = merged[-1]
            prev["content"] = _as_block_list(prev.get("content", "")) + \
                _as_block_list(msg.get("content", ""))
        else:
            merged.append(dict(msg))

    return merged


def _as_block_list(content) -> list[dict]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    return list(content)


def _map_stop_reason(reason: str | None) -> str:
    return _STOP_REASONS.get(reason or "", END_TURN)


class _StreamState:
    """Accumulators for one streamed Anthropic message.

    ``open_blocks`` holds one entry per block that has started but not yet
    stopped, keyed by the block ``index`` the server assigns.
    """

    def __init__(self, on_text: TextCallback | None, on_thinking: TextCallback | None):
        self.on_text = on_text
        self.on_thinking = on_thinking
        self.open_blocks: dict[int, dict[str, Any]] = {}
        self.content: list = []
        self.stop_reason = END_TURN
        self.input_tokens = 0
        self.output_tokens = 0

    def handle(self, event: dict) -> None:
        etype = event.get("type")
        if etype == "message_start":
            usage = (event.get("message") or {}).get("usage") or {}
            self.input_tokens = usage.get("input_tokens", 0) or 0
            self.output_tokens = usage.get("output_tokens", 0) or 0
        elif etype == "content_block_start":
            self._start_block(event.get("index", 0), event.get("content_block") or {})
        elif etype == "content_block_delta":
            self._apply_delta(event.get("index", 0), event.get("delta") or {})
        elif etype == "content_block_stop":
            self._finish_block(event.get("index", 0))
        elif etype == "message_delta":
            delta = event.get("delta") or {}
            if "stop_reason" in delta:
                self.stop_reason = _map_stop_reason(delta.get("stop_reason"))
            usage = event.get("usage") or {}
            if usage.get("output_tokens") is not None:
                self.output_tokens = usage["output_tokens"]
            if usage.get("input_tokens"):
                self.input_tokens = usage["input_tokens"]
        elif etype == "error":
            error = event.get("error") or {}
            raise StreamFailure(f"Stream error: {error.get('message', error)}")
        # ping, message_stop and unknown event kinds carry nothing we need

    def _start_block(self, index: int, block: dict) -> None:
        btype = block.get("type")
        if btype == "text":
            self.open_blocks[index] = {"kind": "text", "text": block.get("text", "")}
        elif btype == "thinking":
            self.open_blocks[index] = {
                "kind": "thinking",
                "text": block.get("thinking", ""),
                "signature": block.get("signature", ""),
            }
        elif btype == "redacted_thinking":
            self.open_blocks[index] = {"kind": "redacted_thinking", "data": block.get("data", "")}
        elif btype == "tool_use":
            self.open_blocks[index] = {
                "kind": "tool_use",
                "id": block.get("id", ""),
                "name": block.get("name", ""),
                "args_json": "",
            }

    def _apply_delta(self, index: int, delta: dict) -> None:
        acc = self.open_blocks.get(index)
        if acc is None:
            return
        dtype = delta.get("type")
        if dtype == "text_delta":
            t = delta.get("text", "")
            acc["text"] += t
            if t and self.on_text:
                self.on_text(t)
        elif dtype == "thinking_delta":
            t = delta.get("thinking", "")
            acc["text"] += t
            if t and self.on_thinking:
                self.on_thinking(t)
        elif dtype == "signature_delta":
            acc["signature"] = acc.get("signature", "") + delta.get("signature", "")
        elif dtype == "input_json_delta":
            acc["args_json"] += delta.get("partial_json", "")

    def _finish_block(self, index: int) -> None:
        acc = self.open_blocks.pop(index, None)
        if acc is None:
            return
        kind = acc["kind"]
        if kind == "text":
            self.content.append(TextBlock(acc["text"]))
        elif kind == "thinking":
            self.content.append(ThinkingBlock(acc["text"], acc.get("signature", "")))
        elif kind == "redacted_thinking":
            self.content.append(RedactedThinkingBlock(acc["data"]))
        else:
            self.content.append(
                ToolUseBlock(acc["id"], acc["name"], parse_tool_arguments(acc["args_json"]))
            )

    def result(self) -> StreamedResult:
        # Blocks the server never closed are finalized in index order
        for index in sorted(self.open_blocks):
            self._finish_block(index)
        return StreamedResult(
            content=tuple(self.content),
            stop_reason=self.stop_reason,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
        )


# ---------------------------------------------------------------------------
# AnthropicProvider
# ---------------------------------------------------------------------------


class AnthropicProvider(LLMProvider):
    """Claude models over the Anthropic Messages API."""

    name = "anthropic"
    capabilities = ProviderCapabilities(streaming=True, tool_use=True, thinking=True, vision=True)
    MODELS = (
        "claude-opus-4-5-20251101",
        "claude-sonnet-4-20250514",
        "claude-haiku-3-5-20241022",
    )
    PRICING = {
        "claude-opus-4-5-20251101": Pricing(15, 75),
        "claude-sonnet-4-20250514": Pricing(3, 15),
        "claude-haiku-3-5-20241022": Pricing(0.8, 4),
    }
    DEFAULT_MODEL = "claude-sonnet-4-20250514"
    DEFAULT_BASE_URL = "https://api.anthropic.com"

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
        }

    def _build_payload(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition],
        max_tokens: int,
        thinking_budget: int | None,
        stream: bool,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": _convert_messages(messages),
            "max_tokens": max_tokens,
        }
        if stream:
            payload["stream"] = True
        if system:
            payload["system"] = system
        if tools:
            payload["tools"] = _build_tools(tools)
        if thinking_budget and thinking_budget > 0:
            payload["thinking"] = {"type": "enabled", "budget_tokens": thinking_budget}
        return payload

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
        raise_if_cancelled(cancel_event)
        payload = self._build_payload(system, messages, tools, max_tokens, thinking_budget, True)
        resp = self._post(f"{self.base_url}/v1/messages", payload, self._headers(), stream=True)

        state = _StreamState(on_text, on_thinking)
        for event in iter_response_events(resp, cancel_event):
            state.handle(event)
        return state.result()

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
        raise_if_cancelled(cancel_event)
        payload = self._build_payload(system, messages, tools, max_tokens, thinking_budget, False)
        resp = self._post(f"{self.base_url}/v1/messages", payload, self._headers(), stream=False)
        data = self._get_json(resp)

        content = []
        for block in data.get("content") or []:
            if block.get("type") in ("text", "thinking", "redacted_thinking", "tool_use"):
                content.append(block_from_dict(block))
        usage = data.get("usage") or {}
        return StreamedResult(
            content=tuple(content),
            stop_reason=_map_stop_reason(data.get("stop_reason")),
            input_tokens=usage.get("input_tokens", 0) or 0,
            output_tokens=usage.get("output_tokens", 0) or 0,
        )
