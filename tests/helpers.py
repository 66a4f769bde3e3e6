"""Test doubles: a scripted provider and a fake HTTP session."""

import json
import threading

from steward.errors import Cancelled
from steward.llm.base import (
    END_TURN,
    TOOL_USE,
    LLMProvider,
    Pricing,
    StreamedResult,
    TextBlock,
    ToolUseBlock,
)


def text_result(text, input_tokens=10, output_tokens=5):
    return StreamedResult(content=(TextBlock(text),), stop_reason=END_TURN,
                          input_tokens=input_tokens, output_tokens=output_tokens)


def tool_result(*uses, text="", input_tokens=10, output_tokens=5):
    """Build a tool-requesting result from ``(id, name, input)`` tuples."""
    content = [TextBlock(text)] if text else []
    content += [ToolUseBlock(i, name, inp) for i, name, inp in uses]
    return StreamedResult(content=tuple(content), stop_reason=TOOL_USE,
                          input_tokens=input_tokens, output_tokens=output_tokens)


class ScriptedProvider(LLMProvider):
    """Provider that replays a script instead of calling a backend.

    *script* is either a list consumed one item per call, or a callable
    ``fn(messages) -> item``. An item is a ``StreamedResult`` (returned),
    an exception instance (raised) or a ``threading.Event`` gate that is
    waited on before the next item is taken.
    """

    name = "scripted"
    PRICING = {"scripted-model": Pricing(3, 15)}
    DEFAULT_MODEL = "scripted-model"
    MODELS = ("scripted-model",)

    def __init__(self, script, model=None):
        super().__init__("test-key", model)
        self._script = script if callable(script) else list(script)
        self._lock = threading.Lock()
        self.calls = []

    def clone(self):
        return ScriptedProvider(self._script, self.model)

    def _next(self, messages):
        if callable(self._script):
            return self._script(messages)
        with self._lock:
            if not self._script:
                raise AssertionError("ScriptedProvider ran out of responses")
            return self._script.pop(0)

    def send_streaming(self, system, messages, tools, max_tokens, *, thinking_budget=None,
                       cancel_event=None, on_text=None, on_thinking=None):
        with self._lock:
            self.calls.append({
                "system": system,
                "messages": list(messages),
                "tools": [t.name for t in tools],
                "max_tokens": max_tokens,
                "thinking_budget": thinking_budget,
            })
        item = self._next(messages)
        while isinstance(item, threading.Event):
            while not item.wait(0.01):
                if cancel_event is not None and cancel_event.is_set():
                    raise Cancelled("Request cancelled")
            item = self._next(messages)
        if isinstance(item, BaseException):
            raise item
        if on_text and item.text:
            on_text(item.text)
        return item

    def create_message(self, system, messages, tools, max_tokens, *, thinking_budget=None,
                       cancel_event=None):
        return self.send_streaming(system, messages, tools, max_tokens,
                                   thinking_budget=thinking_budget, cancel_event=cancel_event)


# ---------------------------------------------------------------------------
# HTTP fakes for the adapters
# ---------------------------------------------------------------------------

def sse_body(*events, done=False):
    """Encode payload dicts as an SSE byte stream."""
    lines = [f"data: {json.dumps(e)}\n\n" for e in events]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


class FakeResponse:
    def __init__(self, status_code=200, body=b"", chunk_size=7):
        self.status_code = status_code
        self._body = body if isinstance(body, bytes) else body.encode("utf-8")
        self._chunk_size = chunk_size
        self.closed = False

    @property
    def text(self):
        return self._body.decode("utf-8")

    def json(self):
        return json.loads(self.text)

    def iter_content(self, chunk_size=None):
        # Deliberately small chunks so events straddle chunk boundaries
        for i in range(0, len(self._body), self._chunk_size):
            yield self._body[i:i + self._chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """Records POSTs and answers them from a queue of FakeResponses or exceptions."""

    def __init__(self, *responses):
        self._responses = list(responses)
        self.requests = []

    def post(self, url, json=None, headers=None, stream=False, timeout=None):
        self.requests.append({"url": url, "json": json, "headers": headers, "stream": stream})
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item
