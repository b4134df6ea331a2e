"""Stream events published while a turn is generated."""

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from repochat.models.messages import ToolState


class LoopState(StrEnum):
    """States of the conversation loop."""

    IDLE = "idle"
    GENERATING = "generating"
    TOOLS_PENDING = "tools-pending"
    DONE = "done"


class FinishReason(StrEnum):
    """Why a turn stopped."""

    STOP = "stop"
    MAX_ROUNDS = "max-rounds"
    AWAITING_APPROVAL = "awaiting-approval"
    ERROR = "error"


class BaseEvent(BaseModel):
    """Fields shared by every event.

    ``seq`` is assigned by the publisher; ``round`` is the model-generation
    round the event belongs to (0 for tool results carried over from an
    earlier turn).
    """

    seq: int = 0
    round: int = 0


class TextDeltaEvent(BaseEvent):
    type: Literal["text-delta"] = "text-delta"
    message_id: str
    delta: str


class ToolCallStartEvent(BaseEvent):
    type: Literal["tool-call-start"] = "tool-call-start"
    message_id: str
    tool_call_id: str
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolCallDeltaEvent(BaseEvent):
    type: Literal["tool-call-delta"] = "tool-call-delta"
    tool_call_id: str
    input_text_delta: str


class ToolCallReadyEvent(BaseEvent):
    type: Literal["tool-call-ready"] = "tool-call-ready"
    tool_call_id: str
    tool_name: str
    input: dict[str, Any]


class ToolResultEvent(BaseEvent):
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str
    state: ToolState
    output: Any = None
    error_text: str | None = None


class StepFinishEvent(BaseEvent):
    """End of one round: generation plus resolution of its tool calls."""

    type: Literal["step-finish"] = "step-finish"
    stop_reason: str | None = None


class ErrorEvent(BaseEvent):
    type: Literal["error"] = "error"
    message: str


class TurnCompleteEvent(BaseEvent):
    type: Literal["turn-complete"] = "turn-complete"
    finish_reason: FinishReason
    state: LoopState
    rounds: int
    pending_tool_call_ids: list[str] = Field(default_factory=list)


StreamEvent = Annotated[
    TextDeltaEvent
    | ToolCallStartEvent
    | ToolCallDeltaEvent
    | ToolCallReadyEvent
    | ToolResultEvent
    | StepFinishEvent
    | ErrorEvent
    | TurnCompleteEvent,
    Field(discriminator="type"),
]
