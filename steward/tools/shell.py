"""Shell and user-interaction tools."""

from __future__ import annotations

from ..host import HostEnvironment
from ..limits import get_limit
from ..llm.base import ToolDefinition


RUN_COMMAND = ToolDefinition(
    name="run_command",
    description=(
        "Execute a shell command in the working directory. Supports pipes, "
        "redirects and shell operators. Returns stdout, stderr and the exit "
        "code when it is non-zero."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute",
            },
        },
        "required": ["command"],
    },
)

ASK_USER = ToolDefinition(
    name="ask_user",
    description="Ask the user a question and wait for their response.",
    input_schema={
        "type": "object",
        "properties": {
            "question": {
                "type": "string",
                "description": "The question to ask the user",
            },
        },
        "required": ["question"],
    },
)


def execute_run_command(tool_input: dict, host: HostEnvironment) -> str:
    command = tool_input.get("command")
    if not isinstance(command, str) or not command.strip():
        raise ValueError("'command' must be a non-empty string")

    result = host.exec(command)
    output = result.stdout or ""
    if result.stderr:
        output += ("\n" if output else "") + "STDERR: " + result.stderr
    if result.exit_code != 0:
        output += f"\n[Exit code: {result.exit_code}]"
    return output or "(no output)"


def execute_ask_user(tool_input: dict, host: HostEnvironment) -> str:
    question = str(tool_input.get("question", ""))
    return host.read_from_user(question, timeout=get_limit("tool.ask_user_timeout_s"))
