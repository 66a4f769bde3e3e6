"""Sub-task tools: let the model fan work out to concurrent child loops."""

from __future__ import annotations

from ..host import HostEnvironment
from ..limits import get_limit
from ..llm.base import ToolDefinition
from ..sub_tasks import SubTaskManager, SubTaskResult
from .registry import ToolRegistry

# Extra seconds the wait tool's own deadline is given over the inner wait,
# so an overdue wait reports partial results instead of a bare timeout
_WAIT_TOOL_GRACE_S = 5

SPAWN_SUBTASK = ToolDefinition(
    name="spawn_subtask",
    description=(
        "Start an independent sub-task that works on a self-contained prompt "
        "concurrently with you. Returns the sub-task id immediately; collect "
        "the outcome with wait_subtasks. The sub-task does not see this "
        "conversation, so the prompt must include all needed context."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "prompt": {"type": "string", "description": "Complete instructions for the sub-task"},
            "description": {"type": "string", "description": "Short label shown in status listings"},
        },
        "required": ["prompt"],
    },
)

WAIT_SUBTASKS = ToolDefinition(
    name="wait_subtasks",
    description=(
        "Wait for sub-tasks to finish and return their results. With 'id', "
        "waits for that one sub-task; otherwise waits for every running one."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "id": {"type": "string", "description": "Sub-task id to wait for (omit to wait for all)"},
        },
    },
)

SUBTASK_STATUS = ToolDefinition(
    name="subtask_status",
    description="List running and finished sub-tasks.",
    input_schema={"type": "object", "properties": {}},
)

ABORT_SUBTASK = ToolDefinition(
    name="abort_subtask",
    description="Cancel a running sub-task.",
    input_schema={
        "type": "object",
        "properties": {
            "id": {"type": "string", "description": "Sub-task id to cancel"},
        },
        "required": ["id"],
    },
)


def format_result(result: SubTaskResult) -> str:
    header = f"#{result.id} [{result.status}] {result.prompt}"
    if result.status == "error":
        return f"{header}\nError: {result.error}"
    return f"{header}\n{result.result}"


def register_sub_task_tools(registry: ToolRegistry, manager: SubTaskManager) -> None:
    """Register the four sub-task tools bound to *manager*."""
    wait_timeout = get_limit("sub_task.wait_timeout_s")
    # Finished results already handed to the model by wait_subtasks
    reported: set[str] = set()

    def _mark_reported(results: list[SubTaskResult]) -> None:
        completed_ids = {r.id for r in manager.get_status()["completed"]}
        reported.update(r.id for r in results if r.id in completed_ids)

    def execute_spawn_subtask(tool_input: dict, host: HostEnvironment) -> str:
        prompt = tool_input.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("'prompt' must be a non-empty string")
        task_id = manager.spawn(prompt, tool_input.get("description"))
        return f"Spawned sub-task #{task_id}"

    def execute_wait_subtasks(tool_input: dict, host: HostEnvironment) -> str:
        task_id = tool_input.get("id")
        if task_id:
            try:
                result = manager.wait_for(str(task_id), timeout=wait_timeout)
            except KeyError:
                raise ValueError(f"Unknown sub-task: {task_id}") from None
            _mark_reported([result])
            return format_result(result)

        results = manager.wait_all(timeout=wait_timeout)
        # Tasks that finished before this call are not in wait_all's snapshot
        waited_ids = {r.id for r in results}
        results += [
            r for r in manager.get_status()["completed"]
            if r.id not in reported and r.id not in waited_ids
        ]
        if not results:
            return "No sub-tasks to wait for."
        results.sort(key=lambda r: int(r.id))
        _mark_reported(results)
        return "\n\n".join(format_result(r) for r in results)

    def execute_subtask_status(tool_input: dict, host: HostEnvironment) -> str:
        status = manager.get_status()
        lines = [f"#{task_id} [running] {label}" for task_id, label in status["running"]]
        lines += [f"#{r.id} [{r.status}] {r.prompt}" for r in status["completed"]]
        return "\n".join(lines) if lines else "No sub-tasks."

    def execute_abort_subtask(tool_input: dict, host: HostEnvironment) -> str:
        task_id = str(tool_input.get("id", ""))
        if manager.abort(task_id):
            return f"Cancellation requested for sub-task #{task_id}"
        raise ValueError(f"Sub-task {task_id} is not running")

    registry.register(SPAWN_SUBTASK, execute_spawn_subtask)
    registry.register(WAIT_SUBTASKS, execute_wait_subtasks, timeout=wait_timeout + _WAIT_TOOL_GRACE_S)
    registry.register(SUBTASK_STATUS, execute_subtask_status)
    registry.register(ABORT_SUBTASK, execute_abort_subtask)
