"""Slash commands shared by every front end.

``handle_slash_command(loop, text)`` returns ``(handled, output)``: input
that does not start with ``/`` is not handled and should be sent to
``AgentLoop.run`` instead.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, NamedTuple

from .tasks import STATUS_ICONS

if TYPE_CHECKING:
    from .agent_loop import AgentLoop


SLASH_COMMANDS: list[tuple[str, str]] = [
    ("/help", "Show available commands"),
    ("/clear", "Clear conversation history and stats"),
    ("/compact", "Summarize conversation to reduce token usage"),
    ("/model", "Switch model (e.g. /model opus, /model sonnet)"),
    ("/stats", "Show token usage and timing"),
    ("/tasks", "Show task checklist"),
    ("/abort", "Cancel current run"),
]

MODEL_ALIASES: dict[str, str] = {
    "opus": "claude-opus-4-5-20251101",
    "sonnet": "claude-sonnet-4-20250514",
    "haiku": "claude-haiku-3-5-20241022",
}


class CommandResult(NamedTuple):
    handled: bool
    output: str


def cmd_help(loop: "AgentLoop", args: list[str]) -> str:
    width = max(len(name) for name, _ in SLASH_COMMANDS)
    lines = [f"  {name.ljust(width + 4)}{desc}" for name, desc in SLASH_COMMANDS]
    return "Available commands:\n" + "\n".join(lines)


def cmd_clear(loop: "AgentLoop", args: list[str]) -> str:
    loop.clear_history()
    return "Conversation cleared."


def cmd_compact(loop: "AgentLoop", args: list[str]) -> str:
    return loop.compact()


def cmd_model(loop: "AgentLoop", args: list[str]) -> str:
    if not args:
        available = ", ".join(loop.provider.available_models) or "(unknown)"
        return (
            f"Current model: {loop.model}\n"
            f"Usage: /model <name>\n"
            f"Aliases: {', '.join(MODEL_ALIASES)}\n"
            f"Known models: {available}"
        )
    resolved = MODEL_ALIASES.get(args[0].lower(), args[0])
    loop.model = resolved
    return f"Model switched to: {resolved}"


def cmd_stats(loop: "AgentLoop", args: list[str]) -> str:
    s = loop.get_stats()
    lines = [
        f"Tokens: {s.input_tokens:,} in / {s.output_tokens:,} out ({s.total_tokens:,} total)",
        f"Turns: {s.turns}  Tool calls: {s.tool_calls}",
        f"Elapsed: {s.elapsed:.1f}s",
    ]
    pricing = loop.provider.get_pricing()
    if pricing is not None:
        lines.append(f"Estimated cost: ${pricing.cost(s.input_tokens, s.output_tokens):.4f} ({loop.model})")
    return "\n".join(lines)


def cmd_tasks(loop: "AgentLoop", args: list[str]) -> str:
    tasks = loop.get_tasks()
    if not tasks:
        return "No tasks."
    return "\n".join(f"{STATUS_ICONS[t.status]} #{t.id} {t.subject}" for t in tasks)


def cmd_abort(loop: "AgentLoop", args: list[str]) -> str:
    loop.abort()
    return "Aborted."


COMMANDS: dict[str, Callable[["AgentLoop", list[str]], str]] = {
    "/help": cmd_help,
    "/clear": cmd_clear,
    "/compact": cmd_compact,
    "/model": cmd_model,
    "/stats": cmd_stats,
    "/tasks": cmd_tasks,
    "/abort": cmd_abort,
}


def handle_slash_command(loop: "AgentLoop", text: str) -> CommandResult:
    trimmed = text.strip()
    if not trimmed.startswith("/"):
        return CommandResult(False, "")

    parts = trimmed.split()
    cmd = parts[0].lower()
    handler = COMMANDS.get(cmd)
    if handler is None:
        return CommandResult(True, f"Unknown command: {cmd}. Type /help for available commands.")
    return CommandResult(True, handler(loop, parts[1:]))
