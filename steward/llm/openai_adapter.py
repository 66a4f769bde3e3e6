"""OpenAI provider - Chat Completions API over raw HTTP/SSE.

Differences from the Anthropic wire format handled here:
- The system prompt is the first message (``role: system``).
- Each tool result becomes its own ``role: tool`` message.
- Assistant tool uses are ``tool_calls`` entries with JSON-encoded
  ``arguments`` strings.
- Streamed tool-call deltas are addressed by a positional ``index`` and have
  no per-call stop event, so calls are finalized when the stream ends.
"""

from __future__ import annotations

import json
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
    StreamedResult,
    TextBlock,
    TextCallback,
    ThinkingBlock,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
    parse_tool_arguments,
)
from .sse import iter_response_events, raise_if_cancelled


_FINISH_REASONS = {
    "tool_calls": TOOL_USE,
    "function_call": TOOL_USE,
    "length": MAX_TOKENS,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_tools(tools: list[ToolDefinition]) -> list[dict]:
    """Convert ToolDefinition list to OpenAI function-tool format."""
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.input_schema,
            },
        }
        for t in tools
    ]


def _convert_messages(system: str, messages: list[Message]) -> list[dict]:
    """Convert unified messages to Chat Completions messages."""
    converted: list[dict] = []
    if system:
        converted.append({"role": "system", "content": system})

    for msg in messages:
        if isinstance(msg.content, str):
            converted.append({"role": msg.role, "content": msg.content})
            continue

        tool_results = [b for b in msg.content if isinstance(b, ToolResultBlock)]
        texts = [b.text for b in msg.content if isinstance(b, TextBlock)]
        tool_uses = [b for b in msg.content if isinstance(b, ToolUseBlock)]

        if tool_results:
            for r in tool_results:
                converted.append({
                    "role": "tool",
                    "tool_call_id": r.tool_use_id,
                    "content": r.content,
                })
            if texts:
                converted.append({"role": msg.role, "content": "".join(texts)})
            continue

        entry: dict[str, Any] = {
            "role": msg.role,
            "content": "".join(texts) if texts else None,
        }
        if tool_uses:
            entry["tool_calls"] = [
                {
                    "id": b.id,
                    "type": "function",
                    "function": {"name": b.name, "arguments": json.dumps(b.input)},
                }
                for b in tool_uses
            ]
        if entry["content"] is None and not tool_uses:
            continue
        converted.append(entry)

    return converted


def _map_finish_reason(reason: str | None) -> str:
    return _FINISH_REASONS.get(reason or "", END_TURN)


class _StreamState:
    """Accumulators for one streamed completion.

    Text and reasoning each occupy a single slot; tool calls are keyed by
    the positional ``index`` the server puts on every delta.
    """

    def __init__(self, on_text: TextCallback | None, on_thinking: TextCallback | None):
        self.on_text = on_text
        self.on_thinking = on_thinking
        self.text_parts: list[str] = []
        self.thinking_parts: list[str] = []
        self.pending_tools: dict[int, dict[str, str]] = {}
        self.stop_reason = END_TURN
        self.input_tokens = 0
        self.output_tokens = 0

    def handle(self, event: dict) -> None:
        if event.get("error"):
            error = event["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise StreamFailure(f"Stream error: {message}")

        usage = event.get("usage")
        if usage:
            self.input_tokens = usage.get("prompt_tokens", 0) or 0
            self.output_tokens = usage.get("completion_tokens", 0) or 0

        choices = event.get("choices") or []
        if not choices:
            return
        choice = choices[0]
        delta = choice.get("delta") or {}

        reasoning = delta.get("reasoning_content")
        if reasoning:
            self.thinking_parts.append(reasoning)
            if self.on_thinking:
                self.on_thinking(reasoning)

        text = delta.get("content")
        if text:
            self.text_parts.append(text)
            if self.on_text:
                self.on_text(text)

        for tc in delta.get("tool_calls") or []:
            idx = tc.get("index", 0)
            acc = self.pending_tools.setdefault(idx, {"id": "", "name": "", "args": ""})
            if tc.get("id"):
                acc["id"] = tc["id"]
            fn = tc.get("function") or {}
            if fn.get("name"):
                acc["name"] = fn["name"]
            if fn.get("arguments"):
                acc["args"] += fn["arguments"]

        if choice.get("finish_reason"):
            self.stop_reason = _map_finish_reason(choice["finish_reason"])

    def result(self) -> StreamedResult:
        content: list = []
        if self.thinking_parts:
            content.append(ThinkingBlock("".join(self.thinking_parts)))
        if self.text_parts:
            content.append(TextBlock("".join(self.text_parts)))
        for idx in sorted(self.pending_tools):
            acc = self.pending_tools[idx]
            content.append(ToolUseBlock(acc["id"], acc["name"], parse_tool_arguments(acc["args"])))
        return StreamedResult(
            content=tuple(content),
            stop_reason=self.stop_reason,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
        )


# ---------------------------------------------------------------------------
# OpenAIProvider
# ---------------------------------------------------------------------------


class OpenAIProvider(LLMProvider):
    """GPT models (or any Chat Completions compatible endpoint)."""

    name = "openai"
    capabilities = ProviderCapabilities(streaming=True, tool_use=True, thinking=False, vision=True)
    MODELS = (
        "gpt-4o",
        "gpt-4o-mini",
        "gpt-4-turbo",
        "gpt-4",
        "gpt-3.5-turbo",
        "o1",
        "o1-mini",
    )
    PRICING = {
        "gpt-4o": Pricing(2.5, 10),
        "gpt-4o-mini": Pricing(0.15, 0.6),
        "gpt-4-turbo": Pricing(10, 30),
        "gpt-4": Pricing(30, 60),
        "gpt-3.5-turbo": Pricing(0.5, 1.5),
        "o1": Pricing(15, 60),
        "o1-mini": Pricing(3, 12),
    }
    DEFAULT_MODEL = "gpt-4o"
    DEFAULT_BASE_URL = "https://api.openai.com"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _build_payload(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition],
        max_tokens: int,
        stream: bool,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": _convert_messages(system, messages),
            "max_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = _build_tools(tools)
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
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
        payload = self._build_payload(system, messages, tools, max_tokens, True)
        resp = self._post(f"{self.base_url}/v1/chat/completions", payload, self._headers(), stream=True)

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
        payload = self._build_payload(system, messages, tools, max_tokens, False)
        resp = self._post(f"{self.base_url}/v1/chat/completions", payload, self._headers(), stream=False)
        data = self._get_json(resp)

        choices = data.get("choices") or [{}]
        choice = choices[0]
        message = choice.get("message") or {}
        content: list = []
        if message.get("reasoning_content"):
            content.append(ThinkingBlock(message["reasoning_content"]))
        if message.get("content"):
            content.append(TextBlock(message["content"]))
        for tc in message.get("tool_calls") or []:
            fn = tc.get("function") or {}
            content.append(ToolUseBlock(
                tc.get("id", ""), fn.get("name", ""), parse_tool_arguments(fn.get("arguments", "")),
            ))
        usage = data.get("usage") or {}
        return StreamedResult(
            content=tuple(content),
            stop_reason=_map_finish_reason(choice.get("finish_reason")),
            input_tokens=usage.get("prompt_tokens", 0) or 0,
            output_tokens=usage.get("completion_tokens", 0) or 0,
        )
