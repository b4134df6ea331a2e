"""Message and part data models for the conversation history."""

from collections.abc import Iterator
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from cuid2 import cuid_wrapper
from pydantic import BaseModel, Field

new_id = cuid_wrapper()


class ToolState(StrEnum):
    """Lifecycle of a tool invocation part."""

    INPUT_STREAMING = "input-streaming"
    INPUT_AVAILABLE = "input-available"
    OUTPUT_AVAILABLE = "output-available"
    OUTPUT_ERROR = "output-error"

    @property
    def is_final(self) -> bool:
        return self in (ToolState.OUTPUT_AVAILABLE, ToolState.OUTPUT_ERROR)


class ApprovalState(StrEnum):
    """Human approval sub-state for tools that require confirmation."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class Approval(StrEnum):
    """Decision delivered by the client for a confirmation-required tool call."""

    YES = "yes"
    NO = "no"


DENIED_OUTPUT = "Error: User denied access to tool execution"


class TextPart(BaseModel):
    """A fragment of text in a message."""

    type: Literal["text"] = "text"
    text: str = ""


class ToolInvocationPart(BaseModel):
    """A tool call requested by the assistant and its resolution."""

    type: Literal["tool-invocation"] = "tool-invocation"
    tool_call_id: str
    tool_name: str
    state: ToolState = ToolState.INPUT_STREAMING
    input: dict[str, Any] = Field(default_factory=dict)
    input_text: str = ""  # raw argument JSON as streamed
    approval: ApprovalState | None = None
    output: Any = None
    error_text: str | None = None

    def mark_available(self, tool_input: dict[str, Any]) -> None:
        self.input = tool_input
        self.state = ToolState.INPUT_AVAILABLE

    def set_output(self, output: Any) -> None:
        self.output = output
        self.error_text = None
        self.state = ToolState.OUTPUT_AVAILABLE

    def set_error(self, error_text: str) -> None:
        self.output = None
        self.error_text = error_text
        self.state = ToolState.OUTPUT_ERROR


Part = Annotated[TextPart | ToolInvocationPart, Field(discriminator="type")]


class Message(BaseModel):
    """One turn in the conversation."""

    id: str = Field(default_factory=new_id)
    role: Literal["user", "assistant", "system"]
    parts: list[Part] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def user(cls, text: str) -> "Message":
        """Create a user message holding a single text part."""
        return cls(role="user", parts=[TextPart(text=text)])

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    def tool_invocations(self) -> Iterator[ToolInvocationPart]:
        for part in self.parts:
            if isinstance(part, ToolInvocationPart):
                yield part


def iter_tool_invocations(messages: list[Message]) -> Iterator[ToolInvocationPart]:
    """Yield every tool invocation part in history order."""
    for message in messages:
        yield from message.tool_invocations()


def find_tool_invocation(messages: list[Message], tool_call_id: str) -> ToolInvocationPart | None:
    """Find a tool invocation part by its call id."""
    for part in iter_tool_invocations(messages):
        if part.tool_call_id == tool_call_id:
            return part
    return None
