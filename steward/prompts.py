"""
System prompt for the agent loop.

Built per loop from the host's identity and environment, so the model
knows where it is running and which tools it can reach.
"""

from __future__ import annotations

from datetime import datetime

from .host import HostEnvironment

_TOOL_HINTS = {
    "run_command": "Run shell commands",
    "read_file": "Read file contents with line numbers",
    "write_file": "Create or overwrite files",
    "edit_file": "Make exact string replacements in files",
    "glob": "Find files by pattern",
    "grep": "Search file contents by regular expression",
    "ask_user": "Ask the user for clarification",
    "web_fetch": "Fetch a URL over HTTP(S)",
    "task_create": "Track multi-step work on a visible checklist",
    "spawn_subtask": "Hand self-contained work to a concurrent sub-task",
}

_TEMPLATE = """You are steward, a development assistant running inside {host_name} v{host_version}.

Today: {today}
Current working directory: {cwd}
Home directory: {home}
User: {user}

You have tools to interact with this environment:
{tool_lines}

Guidelines:
- Use the file tools for file operations rather than cat/echo through the shell when possible.
- Read files before editing them. Verify your work.
- Keep responses concise. Focus on doing the work, not explaining what you will do.

When the user asks you to do something, do it directly using your tools."""


def build_system_prompt(host: HostEnvironment, tool_names: list[str] | None = None) -> str:
    """Render the system prompt for *host*.

    Args:
        host: Host capability object (identity, env, cwd).
        tool_names: Registered tool names; only tools with a known hint are
            listed. ``None`` lists every known tool.
    """
    info = host.get_host_info()
    env = host.get_env()
    names = tool_names if tool_names is not None else list(_TOOL_HINTS)
    tool_lines = "\n".join(
        f"- **{name}**: {_TOOL_HINTS[name]}" for name in names if name in _TOOL_HINTS
    )
    return _TEMPLATE.format(
        host_name=info.name,
        host_version=info.version,
        today=datetime.now().strftime("%Y-%m-%d"),
        cwd=host.get_cwd(),
        home=env.get("HOME", "~"),
        user=env.get("USER", "user"),
        tool_lines=tool_lines or "- (none)",
    )
