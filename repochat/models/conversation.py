"""Request and response models for the HTTP API."""

from datetime import datetime

from pydantic import BaseModel, Field

from repochat.models.events import LoopState
from repochat.models.messages import Approval, Message


class CreateConversationRequest(BaseModel):
    """Request model for creating a conversation bound to a repository."""

    owner: str = Field(..., min_length=1, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")
    repo: str = Field(..., min_length=1, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")


class ConversationSummary(BaseModel):
    """Conversation identity and current loop state."""

    conversation_id: str
    owner: str
    repo: str
    state: LoopState
    message_count: int = 0
    pending_tool_call_ids: list[str] = Field(default_factory=list)


class ChatRequest(BaseModel):
    """A user turn: free text or the ``clear`` command."""

    text: str = Field(..., min_length=1, max_length=16000)


class ClearResponse(BaseModel):
    cleared: bool = True


class MessageHistoryResponse(BaseModel):
    conversation_id: str
    state: LoopState
    messages: list[Message]


class ApprovalRequest(BaseModel):
    """Out-of-band decision for a tool call awaiting confirmation."""

    tool_call_id: str
    decision: Approval


class ApprovalResponse(BaseModel):
    applied: bool
    resumed: bool


class ValidateRepoResponse(BaseModel):
    valid: bool
    error: str | None = None


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
