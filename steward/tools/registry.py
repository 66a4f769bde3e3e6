"""Name-keyed table of tool schemas and executors.

The registry is a pure lookup/dispatch layer. Timeouts, permission gating
and error wrapping are applied by the agent loop around ``execute``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from ..errors import UnknownToolError
from ..llm.base import ToolDefinition

if TYPE_CHECKING:
    from ..host import HostEnvironment

ToolExecutor = Callable[[dict, "HostEnvironment"], str]


@dataclass(frozen=True)
class RegisteredTool:
    definition: ToolDefinition
    executor: ToolExecutor
    timeout: float | None = None  # seconds; None means the loop default


class ToolRegistry:
    """Insertion-ordered mapping of tool name → (definition, executor)."""

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def register(
        self,
        definition: ToolDefinition,
        executor: ToolExecutor,
        *,
        timeout: float | None = None,
    ) -> None:
        """Add or overwrite the tool named ``definition.name``."""
        self._tools[definition.name] = RegisteredTool(definition, executor, timeout)

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def get_definitions(self) -> list[ToolDefinition]:
        return [t.definition for t in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def execute(self, name: str, tool_input: dict[str, Any], host: "HostEnvironment") -> str:
        """Dispatch to the executor registered under *name*.

        Raises:
            UnknownToolError: If nothing is registered under *name*.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool.executor(tool_input, host)

    def copy(self) -> "ToolRegistry":
        """Return an independent registry with the same entries."""
        clone = ToolRegistry()
        clone._tools = dict(self._tools)
        return clone

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
