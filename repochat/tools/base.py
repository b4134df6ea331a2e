"""Base types and definitions for tools."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from repochat.clients.github import GitHubClient


class ToolExecutionError(Exception):
    """A tool failed; the message is shown to the model as the tool's error output."""


@dataclass(frozen=True)
class RepositoryScope:
    """The repository a conversation is bound to."""

    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


ToolHandler = Callable[[BaseModel, RepositoryScope, GitHubClient], Awaitable[Any]]


class EmptyInput(BaseModel):
    """Input schema for tools that take no parameters."""


@dataclass
class ToolDefinition:
    """Definition of a tool available to the AI assistant."""

    name: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        return self.input_schema_class.model_json_schema()

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)


def failure(action: str, error: Exception) -> ToolExecutionError:
    """Wrap an underlying error with the name of the failed action."""
    return ToolExecutionError(f"Failed to {action}: {error}")
