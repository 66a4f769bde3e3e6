"""
Agent loop - the turn-taking state machine.

One ``run()`` call drives:

    user text → provider call (with retry) → assistant message
      ├── no tool uses  → return the joined text
      └── tool uses     → execute each in order (permission gate, timeout)
                          → one user message carrying every tool result
                          → next turn

A run ends with the final text, ``MAX_TURNS_SENTINEL``, ``"[steward:
aborted]"`` or a bracketed error string. Tool failures never end a run:
they are fed back to the model as error-flagged tool results.

The conversation, ``Stats`` and ``TaskList`` are owned by one loop and
never shared, including with its sub-tasks.
"""

from __future__ import annotations

import dataclasses
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import config as app_config

from .errors import (
    Cancelled,
    HttpFailure,
    NetworkFailure,
    PermissionDenied,
    StreamFailure,
    UnknownToolError,
)
from .event_bus import (
    get_event_bus,
    AGENT_RESPONSE,
    COMPACTION,
    DEBUG,
    LLM_CALL,
    PERMISSION,
    THINKING,
    TOOL_CALL,
    TOOL_ERROR,
    TOOL_RESULT,
    USER_MESSAGE,
)
from .host import HostEnvironment
from .limits import get_limit
from .llm import LLMProvider, Message, StreamedResult, ThinkingBlock, ToolDefinition, ToolResultBlock, ToolUseBlock
from .llm import create_provider as _create_provider
from .llm_utils import call_with_retry, run_with_timeout, track_usage
from .logging import log_error, log_tool_call, log_tool_result
from .prompts import build_system_prompt
from .sub_tasks import SubTaskManager
from .tasks import Task, TaskList
from .tools import create_default_registry
from .tools.registry import ToolExecutor, ToolRegistry
from .tools.sub_task_tools import register_sub_task_tools
from .tools.task_tools import register_task_tools


MAX_TURNS_SENTINEL = "[steward: max turns reached]"
ABORTED_SENTINEL = "[steward: aborted]"

# Tools that change the host; each call needs approval when a permission
# hook is configured
GATED_TOOLS = frozenset({"run_command", "write_file", "edit_file"})

PERMISSION_DENIED_MESSAGE = "Permission denied by user."
CANCELLED_TOOL_MESSAGE = "Cancelled before execution."

COMPACT_INSTRUCTION = (
    "Summarize the conversation so far so it can replace the full transcript. "
    "Preserve every file path touched, commands run, decisions made and their "
    "reasons, the current state of the work, and any pending tasks or open "
    "questions. Respond with the summary only."
)
SUMMARY_PREFIX = "[Conversation summary]\n\n"
COMPACT_ACKNOWLEDGMENT = (
    "Understood. I have the summary of our conversation so far and will continue from there."
)


def format_error(exc: BaseException) -> str:
    return f"[steward error: {exc}]"


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

@dataclass
class Stats:
    """Cumulative counters for one loop; reset only by ``clear_history()``."""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    turns: int = 0
    tool_calls: int = 0
    elapsed: float = 0.0  # seconds spent inside run()

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class PermissionRequest:
    tool: str
    description: str
    input: dict


def describe_tool_use(name: str, tool_input: dict) -> str:
    """Short human-readable description of a gated call: the command or the path."""
    if name == "run_command":
        return str(tool_input.get("command", ""))
    return str(tool_input.get("file_path", ""))


@dataclass(frozen=True)
class AgentConfig:
    """Immutable loop configuration plus optional observer callbacks.

    Unset numeric fields fall back to ``steward.limits``; unset provider
    fields fall back to ``config.py``. Callbacks are invoked synchronously
    on the loop's thread.
    """
    provider: Optional[str] = None
    api_key: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    max_turns: Optional[int] = None
    max_tokens: Optional[int] = None
    thinking_budget: Optional[int] = None
    system_prompt: Optional[str] = None
    tool_timeout: Optional[float] = None
    enable_sub_tasks: bool = True
    name: str = "agent"
    provider_factory: Optional[Callable[["AgentConfig"], LLMProvider]] = None

    on_text: Optional[Callable[[str], None]] = None
    on_thinking: Optional[Callable[[str], None]] = None
    on_tool_start: Optional[Callable[[str, dict], None]] = None
    on_tool_end: Optional[Callable[[str, str, bool], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None
    on_stats: Optional[Callable[[Stats], None]] = None
    on_task_update: Optional[Callable[[list[Task]], None]] = None
    on_retry: Optional[Callable[[int, int, Exception], None]] = None
    on_permission_request: Optional[Callable[[PermissionRequest], bool]] = None

    def create_provider(self) -> LLMProvider:
        if self.provider_factory is not None:
            return self.provider_factory(self)
        return _create_provider(
            self.provider, api_key=self.api_key, model=self.model, base_url=self.base_url,
        )


# ---------------------------------------------------------------------------
# AgentLoop
# ---------------------------------------------------------------------------

class AgentLoop:
    """Drives one conversation against one provider.

    Args:
        host: Host capability object handed to every tool executor.
        config: Loop configuration; defaults to ``AgentConfig()``.
        provider: Provider instance; built from *config* when omitted.
        tools: Base tool registry (copied); the built-in tools when omitted.
    """

    def __init__(
        self,
        host: HostEnvironment,
        config: AgentConfig | None = None,
        *,
        provider: LLMProvider | None = None,
        tools: ToolRegistry | None = None,
    ):
        self.host = host
        self.config = config or AgentConfig()
        self.provider = provider or self.config.create_provider()

        # Base tools are what children inherit; loop-bound task and
        # sub-task tools are only added to self.tools
        self._base_tools = tools.copy() if tools is not None else create_default_registry()
        self.tools = self._base_tools.copy()

        self._messages: list[Message] = []
        self._stats = Stats()
        self._tasks = TaskList()
        self._cancel_event: threading.Event | None = None
        self._run_started: float | None = None

        register_task_tools(self.tools, self._tasks, self._notify_task_update, self.config.name)

        self.sub_tasks: SubTaskManager | None = None
        if self.config.enable_sub_tasks:
            parent_provider = self.provider

            def _child_provider(child_config: AgentConfig) -> LLMProvider:
                if child_config.provider_factory is not None:
                    return child_config.provider_factory(child_config)
                return parent_provider.clone()

            self.sub_tasks = SubTaskManager(
                host, self.config, tools=self._base_tools, provider_factory=_child_provider,
            )
            register_sub_task_tools(self.tools, self.sub_tasks)

    # ---- Properties ----

    @property
    def model(self) -> str:
        return self.provider.model

    @model.setter
    def model(self, value: str) -> None:
        self.provider.model = value

    @property
    def name(self) -> str:
        return self.config.name

    # ---- Public API ----

    def run(self, user_text: str, cancel_event: threading.Event | None = None) -> str:
        """Run turns until the model stops requesting tools.

        Returns the final assistant text, ``MAX_TURNS_SENTINEL``,
        ``ABORTED_SENTINEL`` or ``"[steward error: ...]"``. Programming
        errors propagate.
        """
        cancel_event = cancel_event or threading.Event()
        self._cancel_event = cancel_event
        self._run_started = time.monotonic()
        bus = get_event_bus()
        agent = self.config.name

        self._messages.append(Message("user", user_text))
        bus.emit(USER_MESSAGE, agent=agent, level="info", msg=f"User: {user_text}",
                 data={"text": user_text})

        system = self.config.system_prompt
        if system is None:
            system = build_system_prompt(self.host, self.tools.names())
        max_turns = self.config.max_turns or get_limit("agent.max_turns")
        turns = 0

        try:
            while turns < max_turns:
                if cancel_event.is_set():
                    raise Cancelled("Run cancelled")

                result = self._call_provider(system, cancel_event)
                turns += 1
                self._stats.turns += 1
                track_usage(result.input_tokens, result.output_tokens, self._stats, agent)
                self._messages.append(Message("assistant", list(result.content)))
                self._emit_thinking(result)
                if self.config.on_stats:
                    self.config.on_stats(self.get_stats())

                tool_uses = result.tool_uses
                if not tool_uses:
                    text = result.text
                    bus.emit(AGENT_RESPONSE, agent=agent, level="info", msg=f"Agent: {text}",
                             data={"text": text, "stop_reason": result.stop_reason})
                    return text

                self._messages.append(Message("user", self._execute_tools(tool_uses, cancel_event)))

            bus.emit(DEBUG, agent=agent, level="warning",
                     msg=f"Max turns ({max_turns}) reached", data={"max_turns": max_turns})
            return MAX_TURNS_SENTINEL

        except Cancelled:
            bus.emit(DEBUG, agent=agent, level="info", msg="Run aborted")
            return ABORTED_SENTINEL
        except (NetworkFailure, HttpFailure, StreamFailure) as e:
            log_error("Provider call failed", exc=e,
                      context={"provider": self.provider.name, "model": self.provider.model},
                      agent=agent)
            if self.config.on_error:
                self.config.on_error(e)
            return format_error(e)
        finally:
            self._stats.elapsed += time.monotonic() - self._run_started
            self._run_started = None

    def abort(self) -> None:
        """Cancel the active run (if any) and every running sub-task."""
        if self._cancel_event is not None:
            self._cancel_event.set()
        if self.sub_tasks is not None:
            self.sub_tasks.abort_all()

    def clear_history(self) -> None:
        """Drop the conversation, statistics and task checklist."""
        self._messages = []
        self._stats = Stats()
        self._tasks.clear()
        if self.config.on_task_update:
            self.config.on_task_update([])

    def compact(self) -> str:
        """Replace the conversation with a model-written summary.

        Afterwards the conversation holds exactly two messages: the summary
        and a fixed acknowledgment. On failure the conversation is left
        untouched and a bracketed error string is returned.
        """
        if not self._messages:
            return "Nothing to compact."

        cancel_event = threading.Event()
        self._cancel_event = cancel_event
        agent = self.config.name
        system = self.config.system_prompt
        if system is None:
            system = build_system_prompt(self.host, self.tools.names())
        messages = self._messages + [Message("user", COMPACT_INSTRUCTION)]

        try:
            result = call_with_retry(
                lambda: self.provider.send_streaming(
                    system, messages, self.tools.get_definitions(), self._max_tokens(),
                    cancel_event=cancel_event,
                ),
                cancel_event=cancel_event,
                on_retry=self.config.on_retry,
                agent_name=agent,
            )
        except Cancelled:
            return ABORTED_SENTINEL
        except (NetworkFailure, HttpFailure, StreamFailure) as e:
            log_error("Compaction failed", exc=e, agent=agent)
            if self.config.on_error:
                self.config.on_error(e)
            return format_error(e)

        track_usage(result.input_tokens, result.output_tokens, self._stats, agent)
        summary = result.text.strip()
        if not summary:
            return "[steward error: compaction produced an empty summary]"

        count = len(self._messages)
        self._messages = [
            Message("user", SUMMARY_PREFIX + summary),
            Message("assistant", COMPACT_ACKNOWLEDGMENT),
        ]
        get_event_bus().emit(COMPACTION, agent=agent, level="info",
                             msg=f"Compacted {count} messages ({len(summary)} chars summary)",
                             data={"messages_before": count, "summary_chars": len(summary)})
        return f"Compacted {count} messages into a summary."

    def register_tool(
        self,
        definition: ToolDefinition,
        executor: ToolExecutor,
        *,
        timeout: float | None = None,
    ) -> None:
        """Add or replace a tool; sub-tasks spawned afterwards inherit it."""
        self._base_tools.register(definition, executor, timeout=timeout)
        self.tools.register(definition, executor, timeout=timeout)

    def get_messages(self) -> list[Message]:
        return list(self._messages)

    def get_stats(self) -> Stats:
        stats = dataclasses.replace(self._stats)
        if self._run_started is not None:
            stats.elapsed += time.monotonic() - self._run_started
        return stats

    def get_tasks(self) -> list[Task]:
        return self._tasks.list()

    def close(self) -> None:
        """Abort running work and release the sub-task pool."""
        self.abort()
        if self.sub_tasks is not None:
            self.sub_tasks.shutdown()

    # ---- Provider call ----

    def _max_tokens(self) -> int:
        return self.config.max_tokens or get_limit("agent.max_tokens")

    def _thinking_budget(self) -> int | None:
        budget = self.config.thinking_budget
        if budget is None:
            budget = app_config.THINKING_BUDGET
        if budget and self.provider.capabilities.thinking:
            return int(budget)
        return None

    def _call_provider(self, system: str, cancel_event: threading.Event) -> StreamedResult:
        cfg = self.config
        tools = self.tools.get_definitions()
        messages = list(self._messages)
        get_event_bus().emit(
            LLM_CALL, agent=cfg.name, level="debug",
            msg=f"Calling {self.provider.name}/{self.provider.model} "
                f"({len(messages)} messages, {len(tools)} tools)",
            data={"provider": self.provider.name, "model": self.provider.model,
                  "messages": len(messages), "tools": len(tools)},
        )

        def _send() -> StreamedResult:
            return self.provider.send_streaming(
                system, messages, tools, self._max_tokens(),
                thinking_budget=self._thinking_budget(),
                cancel_event=cancel_event,
                on_text=cfg.on_text,
                on_thinking=cfg.on_thinking,
            )

        return call_with_retry(_send, cancel_event=cancel_event, on_retry=cfg.on_retry,
                               agent_name=cfg.name)

    def _emit_thinking(self, result: StreamedResult) -> None:
        for block in result.content:
            if isinstance(block, ThinkingBlock) and block.text:
                get_event_bus().emit(THINKING, agent=self.config.name, level="debug",
                                     msg=f"[Thinking] {block.text}", data={"text": block.text})

    # ---- Tool execution ----

    def _execute_tools(
        self,
        tool_uses: list[ToolUseBlock],
        cancel_event: threading.Event,
    ) -> list[ToolResultBlock]:
        """Execute *tool_uses* strictly in order, one result per use."""
        results: list[ToolResultBlock] = []
        for i, use in enumerate(tool_uses):
            if cancel_event.is_set():
                # Keep the use/result pairing intact for the next provider call
                results.extend(
                    ToolResultBlock(u.id, CANCELLED_TOOL_MESSAGE, is_error=True)
                    for u in tool_uses[i:]
                )
                break
            results.append(self._execute_tool(use))
        return results

    def _execute_tool(self, use: ToolUseBlock) -> ToolResultBlock:
        cfg = self.config
        agent = cfg.name
        bus = get_event_bus()

        self._stats.tool_calls += 1
        if cfg.on_tool_start:
            cfg.on_tool_start(use.name, use.input)
        log_tool_call(use.name, use.input, agent)
        bus.emit(TOOL_CALL, agent=agent, level="debug", msg=f"Tool: {use.name}({use.input})",
                 data={"tool_name": use.name, "tool_input": use.input, "tool_use_id": use.id})

        t0 = time.monotonic()
        try:
            self._check_permission(use)
            content = self._run_tool(use)
            is_error = False
        except PermissionDenied as e:
            content = str(e)
            is_error = True
        except Exception as e:
            content = f"Error: {str(e) or type(e).__name__}"
            is_error = True
            bus.emit(TOOL_ERROR, agent=agent, level="warning",
                     msg=f"Tool error: {use.name} -> {content}",
                     data={"tool_name": use.name, "error": content})
            if cfg.on_error:
                cfg.on_error(e)
        elapsed_ms = int((time.monotonic() - t0) * 1000)

        log_tool_result(use.name, content, is_error, elapsed_ms, agent)
        bus.emit(TOOL_RESULT, agent=agent, level="debug",
                 msg=f"{use.name} -> {'error' if is_error else 'success'}",
                 data={"tool_name": use.name, "status": "error" if is_error else "success",
                       "elapsed_ms": elapsed_ms})
        if cfg.on_tool_end:
            cfg.on_tool_end(use.name, content, is_error)
        return ToolResultBlock(use.id, content, is_error=is_error)

    def _check_permission(self, use: ToolUseBlock) -> None:
        hook = self.config.on_permission_request
        if use.name not in GATED_TOOLS or hook is None:
            return
        request = PermissionRequest(use.name, describe_tool_use(use.name, use.input), dict(use.input))
        allowed = bool(hook(request))
        get_event_bus().emit(
            PERMISSION, agent=self.config.name, level="info",
            msg=f"Permission {'granted' if allowed else 'denied'}: {use.name} ({request.description})",
            data={"tool_name": use.name, "description": request.description, "allowed": allowed},
        )
        if not allowed:
            raise PermissionDenied(PERMISSION_DENIED_MESSAGE)

    def _run_tool(self, use: ToolUseBlock) -> str:
        registered = self.tools.get(use.name)
        if registered is None:
            raise UnknownToolError(use.name)
        timeout = registered.timeout or self.config.tool_timeout or get_limit("tool.timeout_s")
        output: Any = run_with_timeout(
            lambda: self.tools.execute(use.name, use.input, self.host),
            timeout,
            name=use.name,
        )
        return output if isinstance(output, str) else str(output)

    def _notify_task_update(self, tasks: list[Task]) -> None:
        if self.config.on_task_update:
            self.config.on_task_update(tasks)
