"""
Task checklist data structures.

This module provides:
- TaskStatus: Enum for task lifecycle states
- Task: One checklist item
- TaskList: The per-loop checklist, mutated only through the task tools
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class TaskStatus(Enum):
    """Lifecycle states for a task."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


STATUS_ICONS = {
    TaskStatus.PENDING: "[ ]",
    TaskStatus.IN_PROGRESS: "[~]",
    TaskStatus.COMPLETED: "[x]",
}


@dataclass
class Task:
    """A single checklist item.

    Attributes:
        id: Sequential identifier ("1", "2", ...)
        subject: Short imperative title
        status: Current lifecycle state
        description: Optional longer explanation
    """
    id: str
    subject: str
    status: TaskStatus = TaskStatus.PENDING
    description: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dictionary."""
        d = {"id": self.id, "subject": self.subject, "status": self.status.value}
        if self.description:
            d["description"] = self.description
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        """Create a Task from a dictionary."""
        return cls(
            id=str(data["id"]),
            subject=data["subject"],
            status=TaskStatus(data.get("status", "pending")),
            description=data.get("description"),
        )


class TaskList:
    """Ordered checklist owned by one AgentLoop.

    Thread-safe so the sub-task status tools and the CLI can read it while
    the loop thread mutates it.
    """

    def __init__(self) -> None:
        self._tasks: list[Task] = []
        self._next_id = 0
        self._lock = threading.Lock()

    def create(self, subject: str, description: Optional[str] = None) -> Task:
        with self._lock:
            self._next_id += 1
            task = Task(id=str(self._next_id), subject=subject, description=description)
            self._tasks.append(task)
            return replace(task)

    def update(
        self,
        task_id: str,
        *,
        status: TaskStatus | str | None = None,
        subject: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Task:
        """Update fields of an existing task.

        Raises:
            KeyError: If no task has *task_id*.
            ValueError: If *status* is not a valid TaskStatus value.
        """
        if isinstance(status, str):
            status = TaskStatus(status)
        with self._lock:
            for task in self._tasks:
                if task.id == str(task_id):
                    if status is not None:
                        task.status = status
                    if subject:
                        task.subject = subject
                    if description is not None:
                        task.description = description
                    return replace(task)
        raise KeyError(f"Unknown task: {task_id}")

    def list(self) -> list[Task]:
        """Return copies of all tasks in creation order."""
        with self._lock:
            return [replace(t) for t in self._tasks]

    def clear(self) -> None:
        with self._lock:
            self._tasks.clear()
            self._next_id = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def format_checklist(self) -> str:
        tasks = self.list()
        if not tasks:
            return "No tasks."
        return "\n".join(f"{STATUS_ICONS[t.status]} #{t.id} {t.subject}" for t in tasks)
