"""Tools registry for managing AI assistant tools."""

from app.models.llm import LLMToolDefinition
from app.services.scheduler import TaskScheduler, task_scheduler
from app.tools.base import ToolDefinition
from app.tools.scheduling import (
    create_cancel_scheduled_task_tool,
    create_get_scheduled_tasks_tool,
    create_schedule_task_tool,
)


class ToolsRegistry:
    """Registry for managing AI assistant tools."""

    def __init__(self, scheduler: TaskScheduler):
        """Initialize tools registry with service dependencies."""
        self.scheduler = scheduler
        self._tools: dict[str, ToolDefinition] = {}
        self._register_default_tools()

    def _register_default_tools(self) -> None:
        """Register the default set of scheduling tools."""
        tools = [
            create_schedule_task_tool(self.scheduler),
            create_get_scheduled_tasks_tool(self.scheduler),
            create_cancel_scheduled_task_tool(self.scheduler),
        ]

        for tool in tools:
            self.register_tool(tool)

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a new tool in the registry."""
        self._tools[tool.name] = tool

    def get_tool_definitions(self) -> dict[str, ToolDefinition]:
        """Get the name → descriptor table handed to the orchestrator."""
        return dict(self._tools)

    def get_llm_tools(self) -> list[LLMToolDefinition]:
        """Get the schemas advertised to the model."""
        return [tool.to_llm_definition() for tool in self._tools.values()]

    def get(self, name: str) -> ToolDefinition | None:
        """Look up a registered tool by name."""
        return self._tools.get(name)


_tools_registry: ToolsRegistry | None = None


def get_tools_registry(scheduler: TaskScheduler | None = None) -> ToolsRegistry:
    """Get or create tools registry instance."""
    global _tools_registry

    if _tools_registry is None:
        _tools_registry = ToolsRegistry(scheduler or task_scheduler)

    return _tools_registry
