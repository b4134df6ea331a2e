"""Tools registry for managing AI assistant tools."""

from functools import partial
from typing import Any

from repochat.clients.github import GitHubClient, get_github_client
from repochat.models.llm import LLMTool
from repochat.tools.base import RepositoryScope, ToolDefinition
from repochat.tools.history import create_list_branches_tool, create_recent_commits_tool
from repochat.tools.repository import (
    create_file_content_tool,
    create_list_directory_tool,
    create_readme_tool,
    create_repository_info_tool,
    create_repository_tree_tool,
)
from repochat.tools.search import create_search_code_tool, create_search_issues_tool
from repochat.utils.logging import get_logger

logger = get_logger(__name__)

SCOPE_FIELDS = ("owner", "repo")


class ToolsRegistry:
    """Registry for managing AI assistant tools."""

    def __init__(self, github: GitHubClient | None = None):
        """Initialize tools registry.

        Args:
            github: GitHub client (defaults to global instance on first use)
        """
        self._github = github
        self._tools: dict[str, ToolDefinition] = {}
        self._register_default_tools()

    @property
    def github(self) -> GitHubClient:
        if self._github is None:
            self._github = get_github_client()
        return self._github

    def _register_default_tools(self) -> None:
        """Register the read-only repository inspection tools."""
        tools = [
            create_repository_info_tool(),
            create_list_directory_tool(),
            create_file_content_tool(),
            create_search_code_tool(),
            create_repository_tree_tool(),
            create_recent_commits_tool(),
            create_list_branches_tool(),
            create_readme_tool(),
            create_search_issues_tool(),
        ]

        for tool in tools:
            self.register_tool(tool)

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a new tool in the registry."""
        self._tools[tool.name] = tool

    async def invoke(self, tool: ToolDefinition, scope: RepositoryScope, params: dict[str, Any]) -> Any:
        """Validate input and run a tool against the bound repository.

        Any owner/repo the model supplies is discarded in favour of the scope.
        """
        supplied = {field: params[field] for field in SCOPE_FIELDS if field in params}
        if supplied and supplied != {"owner": scope.owner, "repo": scope.repo}:
            logger.warning(f"Ignoring {supplied} supplied to {tool.name}; conversation is bound to {scope.full_name}")

        arguments = {key: value for key, value in params.items() if key not in SCOPE_FIELDS}
        parsed_params = tool.parse_input(arguments)
        return await tool.handler(parsed_params, scope, self.github)

    def get_llm_tools(self, scope: RepositoryScope) -> dict[str, LLMTool]:
        """Get LLM tools with both schemas and callables bound to a repository."""
        return {
            name: LLMTool(
                name=tool.name,
                description=tool.description,
                input_schema=tool.get_json_schema(),
                callable=partial(self.invoke, tool, scope),
            )
            for name, tool in self._tools.items()
        }

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools


_tools_registry: ToolsRegistry | None = None


def get_tools_registry(github: GitHubClient | None = None) -> ToolsRegistry:
    """Get or create tools registry instance."""
    global _tools_registry

    if _tools_registry is None:
        _tools_registry = ToolsRegistry(github)

    return _tools_registry
