#!/usr/bin/env python3
"""Steward - interactive terminal front end for the agent loop.

Usage:
    python main.py                          # Interactive mode
    python main.py --verbose                # Show tool calls and per-turn token usage
    python main.py --provider openai        # Override the configured backend
    python main.py --model sonnet           # Model name or alias
    python main.py --yes                    # Approve every gated tool call
    python main.py "List the files here"    # Single-command mode
    python main.py --no-color               # Disable ANSI colors

Slash commands (type /help for full list):
    /quit        - Print a usage summary and exit
    /clear       - Clear conversation history and stats
    /compact     - Summarize the conversation to save tokens
    /model       - Show or switch the model
    ... and more. Anything without a leading / is sent to the agent.
"""

import argparse
import os
import sys
import threading
import uuid
from datetime import datetime

# readline is optional (not available on Windows without pyreadline3)
try:
    import readline
    _READLINE_AVAILABLE = True
except ImportError:
    _READLINE_AVAILABLE = False

from steward.agent_loop import AgentConfig, AgentLoop, PermissionRequest, Stats
from steward.commands import MODEL_ALIASES, SLASH_COMMANDS, handle_slash_command
from steward.errors import AgentError
from steward.event_bus import DebugLogListener, EventBus, set_event_bus
from steward.host import LocalHost
from steward.logging import attach_log_file, get_logger, setup_logging
from steward.tasks import STATUS_ICONS, Task

# ---- ANSI colors ----

_USE_COLOR = True
_VERBOSE = False


def _c(code: str, text: str) -> str:
    if not _USE_COLOR:
        return text
    return f"\033[{code}m{text}\033[0m"


def dim(text: str) -> str:
    return _c("2", text)


def cyan(text: str) -> str:
    return _c("36", text)


def green(text: str) -> str:
    return _c("32", text)


def yellow(text: str) -> str:
    return _c("33", text)


def red(text: str) -> str:
    return _c("31", text)


def bold(text: str) -> str:
    return _c("1", text)


# ---- Readline ----

def _history_path() -> str:
    from config import get_data_dir
    return os.path.join(str(get_data_dir()), ".cli_history")


_SLASH_COMMANDS = sorted(SLASH_COMMANDS + [
    ("/exit", "Exit (alias for /quit)"),
    ("/quit", "Print a usage summary and exit"),
])

_COMMAND_NAME_WIDTH = max(len(c[0]) for c in _SLASH_COMMANDS)


def _slash_completer(text, state):
    """Readline completer for slash commands."""
    if text.startswith("/"):
        matches = [c[0] for c in _SLASH_COMMANDS if c[0].startswith(text)]
    else:
        matches = []
    if state < len(matches):
        return matches[state]
    return None


def _display_matches(substitution, matches, longest_match_length):
    """Display slash command matches in a formatted table below the prompt."""
    buf = readline.get_line_buffer()
    print()
    for name, desc in _SLASH_COMMANDS:
        if name.startswith(buf):
            padded = name.ljust(_COMMAND_NAME_WIDTH + 4)
            if _USE_COLOR:
                print(f"  {_c('1', padded)}{_c('2', desc)}")
            else:
                print(f"  {padded}{desc}")
    print(cyan("\n> ") + buf, end="", flush=True)


def setup_readline():
    if not _READLINE_AVAILABLE:
        return
    readline.set_history_length(500)
    readline.set_completer(_slash_completer)
    readline.set_completer_delims(' \t\n')
    readline.parse_and_bind('tab: complete')
    readline.set_completion_display_function(_display_matches)
    try:
        readline.read_history_file(_history_path())
    except FileNotFoundError:
        pass


def save_readline():
    if not _READLINE_AVAILABLE:
        return
    try:
        path = _history_path()
        os.makedirs(os.path.dirname(path), exist_ok=True)
        readline.write_history_file(path)
    except OSError:
        pass


# ---- Loop callbacks ----

_SHOW_ARG_CHARS = 80


def on_text(delta: str) -> None:
    print(delta, end="", flush=True)


def on_thinking(delta: str) -> None:
    if _VERBOSE:
        print(dim(delta), end="", flush=True)


def on_tool_start(name: str, tool_input: dict) -> None:
    if _VERBOSE:
        args_str = ", ".join(f"{k}={v!r}" for k, v in tool_input.items())
        if len(args_str) > _SHOW_ARG_CHARS:
            args_str = args_str[:_SHOW_ARG_CHARS] + "..."
        print(dim(f"\n  [Tool: {name}({args_str})]"))


def on_tool_end(name: str, content: str, is_error: bool) -> None:
    if _VERBOSE:
        marker = red("error") if is_error else green("ok")
        print(dim(f"  [Result: {name} -> {marker}]"))
    elif is_error:
        print(dim(f"\n  [{name}: ") + red(content.splitlines()[0] if content else "error") + dim("]"))


def on_stats(stats: Stats) -> None:
    if _VERBOSE:
        print(dim(f"\n  [in={stats.input_tokens}, out={stats.output_tokens}, "
                  f"total={stats.total_tokens}]"))


def on_task_update(tasks: list[Task]) -> None:
    if not tasks:
        return
    print()
    for t in tasks:
        print(dim(f"  {STATUS_ICONS[t.status]} #{t.id} {t.subject}"))


def on_retry(attempt: int, delay_ms: int, error: Exception) -> None:
    print(yellow(f"\n  [Retry {attempt} in {delay_ms / 1000:.1f}s: {error}]"))


def on_error(error: Exception) -> None:
    if _VERBOSE:
        print(red(f"\n  Error: {error}"))


_prompt_lock = threading.Lock()


def ask_permission(request: PermissionRequest) -> bool:
    """Ask on the terminal before a gated tool runs. Default is deny."""
    with _prompt_lock:
        print()
        print(yellow(f"  {request.tool} wants to run:"))
        print(f"    {bold(request.description)}")
        try:
            answer = input(yellow("  Allow? [y/N] ")).strip().lower()
        except EOFError:
            answer = ""
        return answer in ("y", "yes")


# ---- Run helpers ----

def run_turn(loop: AgentLoop, text: str) -> str:
    """Run *text* on a worker thread so Ctrl-C can abort cleanly."""
    holder: dict = {}

    def _target():
        try:
            holder["result"] = loop.run(text)
        except AgentError as e:
            holder["result"] = f"[steward error: {e}]"

    worker = threading.Thread(target=_target, name="agent-run", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.2)
    except KeyboardInterrupt:
        print(yellow("\n  Interrupted."))
        loop.abort()
        worker.join()
    return holder.get("result", "")


def print_welcome(loop: AgentLoop):
    print()
    print("=" * 60)
    print(f"  Steward ({loop.provider.name} / {loop.model})")
    print("=" * 60)
    print()
    print("I can read and edit files, run commands and fetch web")
    print("pages in the current directory.")
    print()
    print("Examples:")
    print("  'List the Python files in this project'")
    print("  'Find every TODO and summarize them'")
    print("  'Add a --dry-run flag to the build script'")
    print()
    print("Type /help for available commands.")
    print("-" * 60)


def print_token_summary(loop: AgentLoop):
    stats = loop.get_stats()
    if stats.total_tokens > 0:
        print()
        print("-" * 60)
        print("  Session token usage:")
        print(f"    Input tokens:  {stats.input_tokens:,}")
        print(f"    Output tokens: {stats.output_tokens:,}")
        print(f"    Total tokens:  {stats.total_tokens:,}")
        pricing = loop.provider.get_pricing()
        if pricing is not None:
            print(f"    Est. cost:     ${pricing.cost(stats.input_tokens, stats.output_tokens):.4f}")
        print("-" * 60)


# ---- Main ----

def main():
    global _USE_COLOR, _VERBOSE

    parser = argparse.ArgumentParser(
        description="Terminal agent that reads, edits and runs things on this machine"
    )
    parser.add_argument(
        "command", nargs="?", default=None,
        help="Single command to execute (non-interactive mode)",
    )
    parser.add_argument(
        "--provider", choices=("anthropic", "openai", "gemini"), default=None,
        help="LLM backend (default: llm_provider from config.json)",
    )
    parser.add_argument(
        "--model", "-m", default=None,
        help=f"Model name or alias ({', '.join(MODEL_ALIASES)})",
    )
    parser.add_argument(
        "--max-turns", type=int, default=None,
        help="Provider calls allowed per request",
    )
    parser.add_argument(
        "--thinking-budget", type=int, default=None,
        help="Reasoning token budget for backends that support it",
    )
    parser.add_argument(
        "--yes", "-y", action="store_true",
        help="Run commands and file edits without asking",
    )
    parser.add_argument(
        "--no-color", action="store_true",
        help="Disable ANSI color output",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Show tool calls, thinking and per-turn token usage",
    )
    args = parser.parse_args()

    if args.no_color:
        _USE_COLOR = False
    _VERBOSE = args.verbose

    setup_logging(verbose=args.verbose)
    session_id = datetime.now().strftime("%Y%m%d_%H%M%S_") + uuid.uuid4().hex[:6]
    attach_log_file(session_id)
    bus = EventBus(session_id=session_id)
    bus.subscribe(DebugLogListener(get_logger()))
    set_event_bus(bus)

    model = MODEL_ALIASES.get(args.model, args.model) if args.model else None
    config = AgentConfig(
        provider=args.provider,
        model=model,
        max_turns=args.max_turns,
        thinking_budget=args.thinking_budget,
        on_text=on_text,
        on_thinking=on_thinking,
        on_tool_start=on_tool_start,
        on_tool_end=on_tool_end,
        on_error=on_error,
        on_stats=on_stats,
        on_task_update=on_task_update,
        on_retry=on_retry,
        on_permission_request=None if args.yes else ask_permission,
    )
    try:
        loop = AgentLoop(LocalHost(), config)
    except ValueError as e:
        print(red(f"Error: {e}"))
        sys.exit(1)
    if not loop.provider.is_authenticated():
        print(red(f"No API key for {loop.provider.name}. Set it in .env and try again."))
        sys.exit(1)

    # Single-command mode
    if args.command:
        try:
            result = run_turn(loop, args.command)
            # Text was already streamed; sentinels and errors were not
            if result.startswith("[steward"):
                print(red(f"\n{result}"))
            print()
        finally:
            loop.close()
        return

    # Interactive mode
    setup_readline()
    print_welcome(loop)

    try:
        while True:
            try:
                user_input = input(cyan("\n> ")).strip()
            except EOFError:
                break

            if not user_input:
                continue

            if user_input.lower() in ("/quit", "/exit", "/q"):
                break

            handled, output = handle_slash_command(loop, user_input)
            if handled:
                print(output)
                continue

            print()
            result = run_turn(loop, user_input)
            if result.startswith("[steward"):
                print(red(f"\n  {result}"))
            print()

    except KeyboardInterrupt:
        pass
    finally:
        print()
        print_token_summary(loop)
        save_readline()
        loop.close()
        print("Goodbye.")


if __name__ == "__main__":
    main()
