"""Agent orchestration engine: provider client, tool registry, agent loop, sub-tasks.

Lazy imports keep ``import steward`` cheap and avoid the cycle
steward.host → steward.__init__ → steward.agent_loop → steward.host.
"""

__version__ = "0.1.0"

_AGENT_LOOP_NAMES = (
    "AgentLoop", "AgentConfig", "Stats", "PermissionRequest",
    "MAX_TURNS_SENTINEL", "ABORTED_SENTINEL", "GATED_TOOLS",
)


def __getattr__(name: str):
    if name in _AGENT_LOOP_NAMES:
        from . import agent_loop
        return getattr(agent_loop, name)
    if name in ("SubTaskManager", "SubTaskResult"):
        from . import sub_tasks
        return getattr(sub_tasks, name)
    if name in ("HostEnvironment", "LocalHost"):
        from . import host
        return getattr(host, name)
    if name in ("ToolRegistry", "create_default_registry"):
        from . import tools
        return getattr(tools, name)
    if name == "create_provider":
        from .llm import create_provider
        return create_provider
    raise AttributeError(f"module 'steward' has no attribute {name!r}")
