"""Built-in tools and the tool registry."""

from __future__ import annotations

from ..limits import get_limit
from .registry import RegisteredTool, ToolExecutor, ToolRegistry
from . import files, shell, web


def create_default_registry() -> ToolRegistry:
    """Return a registry holding the built-in host tools.

    Task and sub-task tools are bound per loop and registered by AgentLoop.
    """
    registry = ToolRegistry()
    registry.register(shell.RUN_COMMAND, shell.execute_run_command)
    registry.register(files.READ_FILE, files.execute_read_file)
    registry.register(files.WRITE_FILE, files.execute_write_file)
    registry.register(files.EDIT_FILE, files.execute_edit_file)
    registry.register(files.GLOB, files.execute_glob)
    registry.register(files.GREP, files.execute_grep)
    # The host read gives up before the tool timeout, so no reader thread
    # is left waiting on stdin after the call returns
    registry.register(shell.ASK_USER, shell.execute_ask_user,
                      timeout=get_limit("tool.ask_user_timeout_s") + 5)
    registry.register(web.WEB_FETCH, web.execute_web_fetch)
    return registry


__all__ = ["RegisteredTool", "ToolExecutor", "ToolRegistry", "create_default_registry"]
