"""Tests for the Gemini adapter."""

import pytest

from steward.errors import StreamFailure
from steward.llm import GeminiProvider, Message, ToolDefinition
from steward.llm.base import END_TURN, MAX_TOKENS, TOOL_USE, TextBlock, ToolResultBlock, ToolUseBlock
from steward.llm.gemini_adapter import _convert_messages

from helpers import FakeResponse, FakeSession, sse_body

TOOLS = [ToolDefinition("glob", "Find files", {"type": "object", "properties": {}})]


def _provider(*responses):
    session = FakeSession(*responses)
    return GeminiProvider("g-key", session=session), session


def _event(parts, finish=None, usage=None):
    candidate = {"content": {"role": "model", "parts": parts}}
    if finish:
        candidate["finishReason"] = finish
    event = {"candidates": [candidate]}
    if usage:
        event["usageMetadata"] = usage
    return event


def test_streams_text_thoughts_and_function_calls():
    body = sse_body(
        _event([{"text": "planning", "thought": True}]),
        _event([{"text": "Looking "}]),
        _event([{"text": "now."}, {"functionCall": {"name": "glob", "args": {"pattern": "*.py"}}}],
               finish="STOP", usage={"promptTokenCount": 11, "candidatesTokenCount": 7}),
    )
    provider, session = _provider(FakeResponse(body=body))
    deltas, thoughts = [], []

    result = provider.send_streaming("sys", [Message("user", "hi")], TOOLS, 300,
                                     on_text=deltas.append, on_thinking=thoughts.append)

    assert deltas == ["Looking ", "now."]
    assert thoughts == ["planning"]
    assert [b.type for b in result.content] == ["thinking", "text", "tool_use"]
    use = result.tool_uses[0]
    assert use.name == "glob" and use.input == {"pattern": "*.py"}
    assert use.id.startswith("call_") and len(use.id) == len("call_") + 24
    # A function call wins over the STOP finish reason
    assert result.stop_reason == TOOL_USE
    assert (result.input_tokens, result.output_tokens) == (11, 7)

    req = session.requests[0]
    assert req["url"] == (
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:streamGenerateContent?alt=sse"
    )
    assert req["headers"]["x-goog-api-key"] == "g-key"
    payload = req["json"]
    assert payload["systemInstruction"] == {"parts": [{"text": "sys"}]}
    assert payload["generationConfig"] == {"maxOutputTokens": 300}
    assert payload["tools"][0]["functionDeclarations"][0]["name"] == "glob"


def test_stop_reasons():
    body = sse_body(_event([{"text": "cut"}], finish="MAX_TOKENS"))
    provider, _ = _provider(FakeResponse(body=body))
    assert provider.send_streaming("", [Message("user", "q")], [], 8).stop_reason == MAX_TOKENS

    body = sse_body(_event([{"text": "fine"}], finish="STOP"))
    provider, session = _provider(FakeResponse(body=body))
    assert provider.send_streaming("", [Message("user", "q")], [], 8).stop_reason == END_TURN
    assert "systemInstruction" not in session.requests[0]["json"]


def test_each_function_call_gets_a_distinct_id():
    body = sse_body(_event([
        {"functionCall": {"name": "glob", "args": {}}},
        {"functionCall": {"name": "glob", "args": {}}},
    ]))
    provider, _ = _provider(FakeResponse(body=body))
    uses = provider.send_streaming("", [Message("user", "q")], [], 8).tool_uses
    assert len({u.id for u in uses}) == 2


def test_error_payload_raises():
    body = sse_body({"error": {"code": 400, "message": "API key not valid"}})
    provider, _ = _provider(FakeResponse(body=body))
    with pytest.raises(StreamFailure, match="API key not valid"):
        provider.send_streaming("", [Message("user", "q")], [], 8)


def test_convert_messages_names_function_responses():
    messages = [
        Message("user", "list"),
        Message("assistant", [TextBlock("sure"), ToolUseBlock("call_1", "glob", {"pattern": "*"})]),
        Message("user", [ToolResultBlock("call_1", "a.py\nb.py")]),
    ]
    assert _convert_messages(messages) == [
        {"role": "user", "parts": [{"text": "list"}]},
        {"role": "model", "parts": [{"text": "sure"},
                                    {"functionCall": {"name": "glob", "args": {"pattern": "*"}}}]},
        {"role": "user", "parts": [{"functionResponse": {"name": "glob",
                                                         "response": {"result": "a.py\nb.py"}}}]},
    ]


def test_create_message_uses_generate_content():
    body = '{"candidates": [{"content": {"parts": [{"text": "hello"}]}, "finishReason": "STOP"}]}'
    provider, session = _provider(FakeResponse(body=body))
    result = provider.create_message("", [Message("user", "q")], [], 8)
    assert result.text == "hello"
    assert session.requests[0]["url"].endswith("/models/gemini-2.0-flash:generateContent")
