"""Task checklist tools.

These are the only writers of a loop's ``TaskList``. Executors are closures
bound to one list, so each loop registers its own set.
"""

from __future__ import annotations

import json
from typing import Callable

from ..event_bus import get_event_bus, TASK_UPDATE
from ..host import HostEnvironment
from ..llm.base import ToolDefinition
from ..tasks import Task, TaskList, TaskStatus
from .registry import ToolRegistry

TaskUpdateCallback = Callable[[list[Task]], None]

_STATUS_VALUES = [s.value for s in TaskStatus]

TASK_CREATE = ToolDefinition(
    name="task_create",
    description=(
        "Add an item to the task checklist. Use this to plan multi-step work "
        "so progress stays visible to the user."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "subject": {"type": "string", "description": "Short imperative title of the task"},
            "description": {"type": "string", "description": "Optional details"},
        },
        "required": ["subject"],
    },
)

TASK_UPDATE_TOOL = ToolDefinition(
    name="task_update",
    description="Update a checklist item's status, subject or description.",
    input_schema={
        "type": "object",
        "properties": {
            "id": {"type": "string", "description": "Task id as returned by task_create"},
            "status": {"type": "string", "enum": _STATUS_VALUES, "description": "New status"},
            "subject": {"type": "string", "description": "New subject"},
            "description": {"type": "string", "description": "New description"},
        },
        "required": ["id"],
    },
)

TASK_LIST = ToolDefinition(
    name="task_list",
    description="Show the current task checklist.",
    input_schema={"type": "object", "properties": {}},
)


def register_task_tools(
    registry: ToolRegistry,
    task_list: TaskList,
    on_update: TaskUpdateCallback | None = None,
    agent_name: str = "agent",
) -> None:
    """Register task_create / task_update / task_list bound to *task_list*."""

    def _notify(action: str, task: Task) -> None:
        tasks = task_list.list()
        get_event_bus().emit(
            TASK_UPDATE, agent=agent_name, level="info",
            msg=f"Task #{task.id} {action}: {task.subject} [{task.status.value}]",
            data={"action": action, "task": task.to_dict(), "tasks": [t.to_dict() for t in tasks]},
        )
        if on_update:
            on_update(tasks)

    def execute_task_create(tool_input: dict, host: HostEnvironment) -> str:
        subject = tool_input.get("subject")
        if not isinstance(subject, str) or not subject.strip():
            raise ValueError("'subject' must be a non-empty string")
        task = task_list.create(subject.strip(), tool_input.get("description"))
        _notify("created", task)
        return f"Created task #{task.id}: {task.subject}"

    def execute_task_update(tool_input: dict, host: HostEnvironment) -> str:
        task_id = tool_input.get("id")
        if task_id is None:
            raise ValueError("'id' is required")
        status = tool_input.get("status")
        if status is not None and status not in _STATUS_VALUES:
            raise ValueError(f"Invalid status {status!r}; expected one of {_STATUS_VALUES}")
        try:
            task = task_list.update(
                str(task_id),
                status=status,
                subject=tool_input.get("subject"),
                description=tool_input.get("description"),
            )
        except KeyError:
            raise ValueError(f"Unknown task: {task_id}") from None
        _notify("updated", task)
        return f"Updated task #{task.id}: {task.subject} [{task.status.value}]"

    def execute_task_list(tool_input: dict, host: HostEnvironment) -> str:
        tasks = task_list.list()
        if not tasks:
            return "No tasks."
        return json.dumps([t.to_dict() for t in tasks], indent=2)

    registry.register(TASK_CREATE, execute_task_create)
    registry.register(TASK_UPDATE_TOOL, execute_task_update)
    registry.register(TASK_LIST, execute_task_list)
