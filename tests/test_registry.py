"""Tests for the tool registry."""

import pytest

from steward.errors import UnknownToolError
from steward.llm import ToolDefinition
from steward.tools import ToolRegistry, create_default_registry


def _def(name):
    return ToolDefinition(name, f"{name} tool", {"type": "object", "properties": {}})


def test_register_execute_and_overwrite(host):
    registry = ToolRegistry()
    registry.register(_def("echo"), lambda inp, h: inp["text"])
    assert registry.execute("echo", {"text": "hi"}, host) == "hi"

    registry.register(_def("echo"), lambda inp, h: inp["text"].upper(), timeout=2)
    assert len(registry) == 1
    assert registry.execute("echo", {"text": "hi"}, host) == "HI"
    assert registry.get("echo").timeout == 2


def test_definitions_keep_registration_order():
    registry = ToolRegistry()
    for name in ("b", "a", "c"):
        registry.register(_def(name), lambda inp, h: "")
    assert [d.name for d in registry.get_definitions()] == ["b", "a", "c"]
    assert registry.names() == ["b", "a", "c"]


def test_unknown_tool_raises(host):
    with pytest.raises(UnknownToolError, match="Unknown tool: nope"):
        ToolRegistry().execute("nope", {}, host)


def test_copy_is_independent():
    registry = ToolRegistry()
    registry.register(_def("a"), lambda inp, h: "")
    clone = registry.copy()
    clone.register(_def("b"), lambda inp, h: "")
    assert "b" in clone
    assert "b" not in registry
    assert registry.unregister("a") is True
    assert "a" in clone
    assert registry.unregister("a") is False


def test_default_registry_holds_builtin_tools():
    names = create_default_registry().names()
    assert names == ["run_command", "read_file", "write_file", "edit_file", "glob", "grep",
                     "ask_user", "web_fetch"]
