"""API endpoints for the repository chat service."""

from collections.abc import AsyncIterator
from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse

from repochat import __version__
from repochat.clients.github import GitHubAPIError, get_github_client
from repochat.models.conversation import (
    ApprovalRequest,
    ApprovalResponse,
    ChatRequest,
    ClearResponse,
    ConversationSummary,
    CreateConversationRequest,
    HealthResponse,
    MessageHistoryResponse,
    ValidateRepoResponse,
)
from repochat.services.conversation import Conversation, ConversationBusyError
from repochat.services.session_manager import conversation_manager
from repochat.services.stream import StreamPublisher
from repochat.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _get_conversation(conversation_id: str) -> Conversation:
    conversation = conversation_manager.get_conversation(conversation_id)
    if not conversation:
        logger.warning(f"Unknown conversation ID: {conversation_id}")
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")
    return conversation


def _summary(conversation: Conversation) -> ConversationSummary:
    return ConversationSummary(
        conversation_id=conversation.id,
        owner=conversation.scope.owner,
        repo=conversation.scope.repo,
        state=conversation.state,
        message_count=len(conversation.messages),
        pending_tool_call_ids=conversation.pending_tool_call_ids,
    )


async def _sse_events(publisher: StreamPublisher, start: int = 0) -> AsyncIterator[str]:
    """Format turn events as SSE data lines."""
    async for event in publisher.subscribe(start):
        yield f"data: {event.model_dump_json()}\n\n"


def _event_stream(publisher: StreamPublisher, start: int = 0) -> StreamingResponse:
    return StreamingResponse(_sse_events(publisher, start), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/conversations", response_model=ConversationSummary, tags=["Conversation"])
async def create_conversation(request: CreateConversationRequest) -> ConversationSummary:
    """Create a conversation bound to one repository."""
    conversation = conversation_manager.create_conversation(request.owner, request.repo)
    return _summary(conversation)


@router.get("/conversations/{conversation_id}", response_model=ConversationSummary, tags=["Conversation"])
async def get_conversation(conversation_id: str) -> ConversationSummary:
    """Conversation state, including tool calls awaiting approval."""
    return _summary(_get_conversation(conversation_id))


@router.delete("/conversations/{conversation_id}", status_code=204, tags=["Conversation"])
async def delete_conversation(conversation_id: str) -> None:
    if not conversation_manager.delete_conversation(conversation_id):
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")


@router.get("/conversations/{conversation_id}/messages", response_model=MessageHistoryResponse, tags=["Conversation"])
async def get_messages(conversation_id: str) -> MessageHistoryResponse:
    """Full message history, for clients reconstructing state after a reconnect."""
    conversation = _get_conversation(conversation_id)
    return MessageHistoryResponse(
        conversation_id=conversation.id,
        state=conversation.state,
        messages=conversation.messages,
    )


@router.post("/conversations/{conversation_id}/messages", response_model=None, tags=["Conversation"])
async def send_message(conversation_id: str, request: ChatRequest) -> StreamingResponse | ClearResponse:
    """Start a turn and stream its events, or clear the history on ``clear``."""
    conversation = _get_conversation(conversation_id)

    try:
        publisher = conversation.submit(request.text)
    except ConversationBusyError as e:
        logger.warning(f"Rejected message for busy conversation {conversation_id}")
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ValueError as e:
        # Token validation errors
        logger.warning(f"Message validation error for conversation {conversation_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e

    if publisher is None:
        return ClearResponse()

    return _event_stream(publisher)


@router.delete("/conversations/{conversation_id}/messages", response_model=ClearResponse, tags=["Conversation"])
async def clear_messages(conversation_id: str) -> ClearResponse:
    """Reset the history, same as sending ``clear``."""
    conversation = _get_conversation(conversation_id)
    try:
        conversation.clear()
    except ConversationBusyError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return ClearResponse()


@router.get("/conversations/{conversation_id}/stream", tags=["Conversation"])
async def stream_turn(conversation_id: str, start: int = Query(0, ge=0)) -> StreamingResponse:
    """Replay the latest turn's events from ``start`` and follow it live."""
    conversation = _get_conversation(conversation_id)
    if conversation.publisher is None:
        raise HTTPException(status_code=404, detail="No turn has been started")
    return _event_stream(conversation.publisher, start)


@router.post("/conversations/{conversation_id}/approvals", response_model=ApprovalResponse, tags=["Conversation"])
async def submit_approval(conversation_id: str, request: ApprovalRequest) -> ApprovalResponse:
    """Approve or deny a tool call; resumes the turn once nothing else is pending."""
    conversation = _get_conversation(conversation_id)
    applied, resumed = conversation.record_decision(request.tool_call_id, request.decision)
    return ApprovalResponse(applied=applied, resumed=resumed)


@router.get("/api/validate-repo/{owner}/{repo}", response_model=ValidateRepoResponse, tags=["Repository"])
async def validate_repo(owner: str, repo: str) -> ValidateRepoResponse | JSONResponse:
    """Check that a repository exists and is reachable."""
    try:
        await get_github_client().get_repository(owner, repo)
    except GitHubAPIError as e:
        logger.warning(f"Repository validation failed for {owner}/{repo}: {e}")
        return JSONResponse(
            status_code=500,
            content=ValidateRepoResponse(valid=False, error="Failed to validate repository").model_dump(),
        )
    return ValidateRepoResponse(valid=True)


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
