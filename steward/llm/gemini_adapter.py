"""Gemini provider - ``generateContent`` / ``streamGenerateContent`` over raw HTTP.

Gemini specifics handled here:
- Roles are ``user`` and ``model``; the system prompt goes in
  ``systemInstruction``.
- Tool results are ``functionResponse`` parts addressed by function *name*,
  so the name is recovered from the tool use the result answers.
- Each ``functionCall`` part arrives complete in a single event and carries
  no call id; one is synthesized per call.
- Parts flagged ``thought: true`` are reasoning summaries.
"""

from __future__ import annotations

import threading
import uuid
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
)
from .sse import iter_response_events, raise_if_cancelled


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def _build_tools(tools: list[ToolDefinition]) -> list[dict]:
    """Convert ToolDefinition list to a single Gemini tool entry."""
    return [{
        "functionDeclarations": [
            {
                "name": t.name,
                "description": t.description,
                "parameters": t.input_schema,
            }
            for t in tools
        ]
    }]


def _convert_messages(messages: list[Message]) -> list[dict]:
    """Convert unified messages to Gemini ``contents``."""
    contents: list[dict] = []
    # tool_use id → function name, filled as assistant turns are walked
    call_names: dict[str, str] = {}

    for msg in messages:
        role = "model" if msg.role == "assistant" else "user"
        if isinstance(msg.content, str):
            if msg.content:
                contents.append({"role": role, "parts": [{"text": msg.content}]})
            continue

        parts: list[dict] = []
        for block in msg.content:
            if isinstance(block, TextBlock):
                if block.text:
                    parts.append({"text": block.text})
            elif isinstance(block, ToolUseBlock):
                call_names[block.id] = block.name
                parts.append({"functionCall": {"name": block.name, "args": block.input}})
            elif isinstance(block, ToolResultBlock):
                parts.append({
                    "functionResponse": {
                        "name": call_names.get(block.tool_use_id, block.tool_use_id),
                        "response": {"result": block.content},
                    }
                })
        if parts:
            contents.append({"role": role, "parts": parts})
    return contents


class _StreamState:
    """Accumulators for one streamed Gemini response."""

    def __init__(self, on_text: TextCallback | None, on_thinking: TextCallback | None):
        self.on_text = on_text
        self.on_thinking = on_thinking
        self.text_parts: list[str] = []
        self.thinking_parts: list[str] = []
        self.tool_calls: list[ToolUseBlock] = []
        self.finish_reason: str | None = None
        self.input_tokens = 0
        self.output_tokens = 0

    def handle(self, event: dict) -> None:
        if event.get("error"):
            error = event["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise StreamFailure(f"Stream error: {message}")

        candidates = event.get("candidates") or []
        if candidates:
            candidate = candidates[0]
            for part in (candidate.get("content") or {}).get("parts") or []:
                self._handle_part(part)
            if candidate.get("finishReason"):
                self.finish_reason = candidate["finishReason"]

        usage = event.get("usageMetadata")
        if usage:
            self.input_tokens = usage.get("promptTokenCount", 0) or 0
            self.output_tokens = usage.get("candidatesTokenCount", 0) or 0

    def _handle_part(self, part: dict) -> None:
        text = part.get("text")
        if text:
            if part.get("thought"):
                self.thinking_parts.append(text)
                if self.on_thinking:
                    self.on_thinking(text)
            else:
                self.text_parts.append(text)
                if self.on_text:
                    self.on_text(text)
        call = part.get("functionCall")
        if call:
            args = call.get("args")
            self.tool_calls.append(ToolUseBlock(
                _make_call_id(), call.get("name", ""), args if isinstance(args, dict) else {},
            ))

    def result(self) -> StreamedResult:
        content: list = []
        if self.thinking_parts:
            content.append(ThinkingBlock("".join(self.thinking_parts)))
        if self.text_parts:
            content.append(TextBlock("".join(self.text_parts)))
        content.extend(self.tool_calls)

        if self.finish_reason == "MAX_TOKENS":
            stop_reason = MAX_TOKENS
        elif self.tool_calls:
            stop_reason = TOOL_USE
        else:
            stop_reason = END_TURN
        return StreamedResult(
            content=tuple(content),
            stop_reason=stop_reason,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
        )


# ---------------------------------------------------------------------------
# GeminiProvider
# ---------------------------------------------------------------------------


class GeminiProvider(LLMProvider):
    """Gemini models over the Generative Language REST API."""

    name = "gemini"
    capabilities = ProviderCapabilities(streaming=True, tool_use=True, thinking=False, vision=True)
    MODELS = (
        "gemini-2.0-flash",
        "gemini-1.5-pro",
        "gemini-1.5-flash",
        "gemini-1.5-flash-8b",
    )
    PRICING = {
        "gemini-2.0-flash": Pricing(0.1, 0.4),
        "gemini-1.5-pro": Pricing(1.25, 5),
        "gemini-1.5-flash": Pricing(0.075, 0.3),
        "gemini-1.5-flash-8b": Pricing(0.0375, 0.15),
    }
    DEFAULT_MODEL = "gemini-2.0-flash"
    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}/models/{self.model}:{endpoint}"

    def _build_payload(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition],
        max_tokens: int,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "contents": _convert_messages(messages),
            "generationConfig": {"maxOutputTokens": max_tokens},
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        if tools:
            payload["tools"] = _build_tools(tools)
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
        payload = self._build_payload(system, messages, tools, max_tokens)
        resp = self._post(self._url("streamGenerateContent") + "?alt=sse", payload,
                          self._headers(), stream=True)

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
        payload = self._build_payload(system, messages, tools, max_tokens)
        resp = self._post(self._url("generateContent"), payload, self._headers(), stream=False)
        state = _StreamState(None, None)
        state.handle(self._get_json(resp))
        return state.result()
