"""Sub-task manager - runs independent AgentLoops concurrently.

Each spawned sub-task is a fresh ``AgentLoop`` sharing the parent's host
and a derived, silent configuration. Children never hold a reference to
the parent; the manager owns the id → {loop, future} map.

An id lives in exactly one of ``_running`` / ``_completed`` at any instant:
registration and the running → completed move both happen under the lock.
"""

from __future__ import annotations

import contextvars
import dataclasses
import threading
import typing
from concurrent import futures
from dataclasses import dataclass

from .event_bus import get_event_bus, SUB_TASK_CANCELLED, SUB_TASK_DONE, SUB_TASK_STARTED
from .limits import get_limit
from .logging import log_error

if typing.TYPE_CHECKING:
    from .agent_loop import AgentConfig, AgentLoop
    from .host import HostEnvironment
    from .llm.base import LLMProvider
    from .tools.registry import ToolRegistry

COMPLETED = "completed"
ERROR = "error"

# Length of the prompt prefix used as a label when no description is given
_LABEL_CHARS = 80


@dataclass(frozen=True)
class SubTaskResult:
    id: str
    prompt: str  # description, or the first characters of the prompt
    result: str
    status: str  # "completed" or "error"
    error: str | None = None

    def to_dict(self) -> dict:
        d = {"id": self.id, "prompt": self.prompt, "result": self.result, "status": self.status}
        if self.error is not None:
            d["error"] = self.error
        return d


@dataclass
class _SubTask:
    id: str
    label: str
    loop: "AgentLoop"
    cancel_event: threading.Event
    future: futures.Future | None = None


UpdateCallback = typing.Callable[[list[SubTaskResult]], None]


class SubTaskManager:
    """Thread-safe registry of running and finished sub-tasks.

    Args:
        host: Host capability object shared with every child.
        config: The parent's configuration; children get a derived copy.
        tools: Base tool registry handed to each child (copied per child).
        provider_factory: Builds the provider for a child from its config;
            when None the child builds one from the config itself.
    """

    def __init__(
        self,
        host: "HostEnvironment",
        config: "AgentConfig",
        tools: "ToolRegistry | None" = None,
        provider_factory: "typing.Callable[[AgentConfig], LLMProvider] | None" = None,
    ) -> None:
        self._host = host
        self._config = config
        self._tools = tools
        self._provider_factory = provider_factory
        self._lock = threading.RLock()
        self._running: dict[str, _SubTask] = {}
        self._completed: dict[str, SubTaskResult] = {}
        self._id_counter = 0
        self._pool: futures.ThreadPoolExecutor | None = None
        self._on_update: UpdateCallback | None = None

    # ── Configuration ─────────────────────────────────────────────

    def set_on_update(self, callback: UpdateCallback | None) -> None:
        """Register a callback fired with all finished results after each completion."""
        self._on_update = callback

    def child_config(self) -> "AgentConfig":
        """Derive the silent, turn-clamped configuration used for children."""
        parent_turns = self._config.max_turns or get_limit("agent.max_turns")
        return dataclasses.replace(
            self._config,
            max_turns=min(parent_turns, get_limit("sub_task.max_turns")),
            enable_sub_tasks=False,
            name=f"{self._config.name}/sub",
            # Children run silently; only error reporting is kept
            on_text=None,
            on_thinking=None,
            on_tool_start=None,
            on_tool_end=None,
            on_permission_request=None,
            on_stats=None,
            on_task_update=None,
            on_retry=None,
        )

    def _get_pool(self) -> futures.ThreadPoolExecutor:
        if self._pool is None:
            self._pool = futures.ThreadPoolExecutor(
                max_workers=get_limit("sub_task.max_workers"),
                thread_name_prefix="subtask",
            )
        return self._pool

    # ── Lifecycle ─────────────────────────────────────────────────

    def spawn(self, prompt: str, description: str | None = None) -> str:
        """Start a child loop on *prompt* and return its id without waiting."""
        from .agent_loop import AgentLoop

        with self._lock:
            self._id_counter += 1
            task_id = str(self._id_counter)
            label = description or prompt[:_LABEL_CHARS]
            config = self.child_config()
            provider = self._provider_factory(config) if self._provider_factory else None
            loop = AgentLoop(self._host, config, provider=provider, tools=self._tools)
            sub = _SubTask(id=task_id, label=label, loop=loop, cancel_event=threading.Event())
            # Registered before the worker can finish, so the completion
            # move always finds it
            self._running[task_id] = sub
            ctx = contextvars.copy_context()
            sub.future = self._get_pool().submit(ctx.run, self._run_child, sub, prompt)

        get_event_bus().emit(
            SUB_TASK_STARTED, agent=self._config.name, level="info",
            msg=f"Sub-task #{task_id} started: {label}",
            data={"id": task_id, "prompt": label},
        )
        return task_id

    def _run_child(self, sub: _SubTask, prompt: str) -> SubTaskResult:
        try:
            text = sub.loop.run(prompt, cancel_event=sub.cancel_event)
            result = SubTaskResult(sub.id, sub.label, text, COMPLETED)
        except Exception as e:
            log_error(f"Sub-task #{sub.id} failed", exc=e, agent=self._config.name)
            result = SubTaskResult(sub.id, sub.label, "", ERROR, error=str(e) or type(e).__name__)

        with self._lock:
            self._running.pop(sub.id, None)
            self._completed[sub.id] = result
            finished = list(self._completed.values())

        get_event_bus().emit(
            SUB_TASK_DONE, agent=self._config.name,
            level="info" if result.status == COMPLETED else "warning",
            msg=f"Sub-task #{sub.id} {result.status}: {sub.label}",
            data=result.to_dict(),
        )
        if self._on_update:
            try:
                self._on_update(finished)
            except Exception as e:
                log_error("Sub-task update callback failed", exc=e, agent=self._config.name)
        return result

    # ── Waiting ───────────────────────────────────────────────────

    def wait_for(self, task_id: str, timeout: float | None = None) -> SubTaskResult:
        """Return the result of *task_id*, blocking while it is still running.

        Raises:
            KeyError: If *task_id* was never spawned.
            concurrent.futures.TimeoutError: If *timeout* elapses first.
        """
        with self._lock:
            sub = self._running.get(task_id)
            if sub is None:
                if task_id in self._completed:
                    return self._completed[task_id]
                raise KeyError(f"Sub-task {task_id} not found")
        return sub.future.result(timeout=timeout)

    def wait_all(self, timeout: float | None = None) -> list[SubTaskResult]:
        """Wait concurrently for every currently-running sub-task.

        Returns one result per task, in spawn order. A task whose worker
        raised, or that is still running when *timeout* elapses, is
        reported as a synthetic ``error`` entry.
        """
        with self._lock:
            pending = list(self._running.values())
        if not pending:
            return []

        done, _ = futures.wait([s.future for s in pending], timeout=timeout)
        results: list[SubTaskResult] = []
        for sub in pending:
            if sub.future in done:
                try:
                    results.append(sub.future.result())
                except Exception as e:
                    results.append(SubTaskResult(sub.id, sub.label, "", ERROR, error=str(e)))
            else:
                results.append(SubTaskResult(
                    sub.id, sub.label, "", ERROR,
                    error=f"Still running after {timeout:g}s",
                ))
        return results

    # ── Query ─────────────────────────────────────────────────────

    def get_status(self) -> dict:
        """Return ``{"running": [(id, label)...], "completed": [SubTaskResult...]}``."""
        with self._lock:
            return {
                "running": [(s.id, s.label) for s in self._running.values()],
                "completed": list(self._completed.values()),
            }

    def has_running(self) -> bool:
        with self._lock:
            return bool(self._running)

    # ── Control ───────────────────────────────────────────────────

    def abort(self, task_id: str) -> bool:
        """Signal cancellation to a running sub-task. Returns False if not running."""
        with self._lock:
            sub = self._running.get(task_id)
            if sub is None:
                return False
            sub.cancel_event.set()
        get_event_bus().emit(
            SUB_TASK_CANCELLED, agent=self._config.name, level="info",
            msg=f"Sub-task #{task_id} cancelled", data={"id": task_id},
        )
        return True

    def abort_all(self) -> int:
        """Signal cancellation to every running sub-task. Returns count signalled."""
        with self._lock:
            ids = list(self._running)
        return sum(1 for task_id in ids if self.abort(task_id))

    def shutdown(self, wait: bool = False) -> None:
        """Abort everything and release the worker pool."""
        self.abort_all()
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=wait, cancel_futures=True)
