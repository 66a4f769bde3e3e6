"""Tests for the Anthropic Messages adapter."""

import pytest
import requests

from steward.errors import HttpFailure, NetworkFailure, StreamFailure
from steward.llm import AnthropicProvider, Message, ToolDefinition
from steward.llm.anthropic_adapter import _convert_messages
from steward.llm.base import (
    MAX_TOKENS,
    TOOL_USE,
    RedactedThinkingBlock,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
)

from helpers import FakeResponse, FakeSession, sse_body

TOOLS = [ToolDefinition("read_file", "Read a file", {"type": "object", "properties": {}})]


def _provider(*responses, **kwargs):
    session = FakeSession(*responses)
    return AnthropicProvider("sk-test", session=session, **kwargs), session


def test_streams_text_and_tool_use():
    body = sse_body(
        {"type": "message_start", "message": {"usage": {"input_tokens": 42, "output_tokens": 1}}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Let me "}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "look."}},
        {"type": "content_block_stop", "index": 0},
        {"type": "content_block_start", "index": 1,
         "content_block": {"type": "tool_use", "id": "toolu_1", "name": "read_file", "input": {}}},
        {"type": "content_block_delta", "index": 1,
         "delta": {"type": "input_json_delta", "partial_json": '{"file_pa'}},
        {"type": "content_block_delta", "index": 1,
         "delta": {"type": "input_json_delta", "partial_json": 'th": "a.txt"}'}},
        {"type": "content_block_stop", "index": 1},
        {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 17}},
        {"type": "message_stop"},
    )
    provider, session = _provider(FakeResponse(body=body))
    deltas = []

    result = provider.send_streaming("sys", [Message("user", "hi")], TOOLS, 1024, on_text=deltas.append)

    assert deltas == ["Let me ", "look."]
    assert result.text == "Let me look."
    assert result.tool_uses == [ToolUseBlock("toolu_1", "read_file", {"file_path": "a.txt"})]
    assert result.stop_reason == TOOL_USE
    assert (result.input_tokens, result.output_tokens) == (42, 17)

    req = session.requests[0]
    assert req["url"] == "https://api.anthropic.com/v1/messages"
    assert req["headers"]["x-api-key"] == "sk-test"
    assert req["headers"]["anthropic-version"] == "2023-06-01"
    assert req["json"]["system"] == "sys"
    assert req["json"]["stream"] is True
    assert req["json"]["tools"][0]["input_schema"] == {"type": "object", "properties": {}}
    assert "thinking" not in req["json"]


def test_thinking_block_and_budget():
    body = sse_body(
        {"type": "content_block_start", "index": 0, "content_block": {"type": "thinking", "thinking": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": "hmm"}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "signature_delta", "signature": "sig"}},
        {"type": "content_block_stop", "index": 0},
        {"type": "content_block_start", "index": 1, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 1, "delta": {"type": "text_delta", "text": "done"}},
        {"type": "message_delta", "delta": {"stop_reason": "max_tokens"}, "usage": {"output_tokens": 3}},
    )
    provider, session = _provider(FakeResponse(body=body))
    thoughts = []

    result = provider.send_streaming("", [Message("user", "q")], [], 512,
                                     thinking_budget=2048, on_thinking=thoughts.append)

    assert thoughts == ["hmm"]
    # The text block was never closed by the server and is finalized at the end
    assert result.content == (ThinkingBlock("hmm", "sig"), TextBlock("done"))
    assert result.stop_reason == MAX_TOKENS
    payload = session.requests[0]["json"]
    assert payload["thinking"] == {"type": "enabled", "budget_tokens": 2048}
    assert "system" not in payload


def test_malformed_tool_arguments_become_empty_dict():
    body = sse_body(
        {"type": "content_block_start", "index": 0,
         "content_block": {"type": "tool_use", "id": "t", "name": "glob"}},
        {"type": "content_block_delta", "index": 0,
         "delta": {"type": "input_json_delta", "partial_json": '{"pattern": '}},
        {"type": "content_block_stop", "index": 0},
    )
    provider, _ = _provider(FakeResponse(body=body))
    result = provider.send_streaming("", [Message("user", "q")], [], 512)
    assert result.tool_uses[0].input == {}


def test_error_event_raises_stream_failure():
    body = sse_body({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
    provider, _ = _provider(FakeResponse(body=body))
    with pytest.raises(StreamFailure, match="Overloaded"):
        provider.send_streaming("", [Message("user", "q")], [], 512)


def test_http_error_carries_status_and_body():
    provider, _ = _provider(FakeResponse(status_code=401, body='{"error": "bad key"}'))
    with pytest.raises(HttpFailure) as exc_info:
        provider.send_streaming("", [Message("user", "q")], [], 512)
    assert exc_info.value.status == 401
    assert "bad key" in exc_info.value.body


def test_connection_error_is_network_failure():
    provider, _ = _provider(requests.exceptions.ConnectionError("refused"))
    with pytest.raises(NetworkFailure):
        provider.send_streaming("", [Message("user", "q")], [], 512)


def test_create_message_parses_json_body():
    body = (
        '{"content": [{"type": "text", "text": "hi"},'
        ' {"type": "tool_use", "id": "t1", "name": "glob", "input": {"pattern": "*"}}],'
        ' "stop_reason": "tool_use", "usage": {"input_tokens": 5, "output_tokens": 6}}'
    )
    provider, session = _provider(FakeResponse(body=body))
    result = provider.create_message("", [Message("user", "q")], [], 512)
    assert result.text == "hi"
    assert result.tool_uses[0].input == {"pattern": "*"}
    assert result.stop_reason == TOOL_USE
    assert (result.input_tokens, result.output_tokens) == (5, 6)
    assert "stream" not in session.requests[0]["json"]


def test_convert_messages_merges_roles_and_drops_unsigned_thinking():
    messages = [
        Message("user", "first"),
        Message("user", "second"),
        Message("assistant", [ThinkingBlock("no sig"), ToolUseBlock("t1", "glob", {"pattern": "*"})]),
        Message("user", [ToolResultBlock("t1", "a.py", is_error=False)]),
    ]
    converted = _convert_messages(messages)
    assert [m["role"] for m in converted] == ["user", "assistant", "user"]
    assert converted[0]["content"] == [
        {"type": "text", "text": "first"},
        {"type": "text", "text": "second"},
    ]
    assert converted[1]["content"] == [
        {"type": "tool_use", "id": "t1", "name": "glob", "input": {"pattern": "*"}},
    ]
    assert converted[2]["content"] == [{"type": "tool_result", "tool_use_id": "t1", "content": "a.py"}]


def test_redacted_thinking_is_replayed_unchanged():
    body = sse_body(
        {"type": "content_block_start", "index": 0,
         "content_block": {"type": "redacted_thinking", "data": "EmwKAhgB"}},
        {"type": "content_block_stop", "index": 0},
        {"type": "content_block_start", "index": 1,
         "content_block": {"type": "tool_use", "id": "toolu_9", "name": "read_file", "input": {}}},
        {"type": "content_block_delta", "index": 1,
         "delta": {"type": "input_json_delta", "partial_json": '{"file_path": "a.txt"}'}},
        {"type": "content_block_stop", "index": 1},
        {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
    )
    provider, session = _provider(FakeResponse(body=body), FakeResponse(body=sse_body()))

    first = provider.send_streaming("", [Message("user", "q")], TOOLS, 512, thinking_budget=1024)
    assert first.content[0] == RedactedThinkingBlock("EmwKAhgB")

    history = [
        Message("user", "q"),
        Message("assistant", list(first.content)),
        Message("user", [ToolResultBlock("toolu_9", "contents")]),
    ]
    provider.send_streaming("", history, TOOLS, 512, thinking_budget=1024)
    replayed = session.requests[1]["json"]["messages"][1]["content"]
    assert replayed[0] == {"type": "redacted_thinking", "data": "EmwKAhgB"}
    assert replayed[1]["type"] == "tool_use"
