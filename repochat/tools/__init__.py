"""Read-only repository tools for the conversational AI assistant."""

from repochat.tools.base import RepositoryScope, ToolDefinition, ToolExecutionError
from repochat.tools.registry import ToolsRegistry, get_tools_registry

__all__ = ["RepositoryScope", "ToolDefinition", "ToolExecutionError", "ToolsRegistry", "get_tools_registry"]
