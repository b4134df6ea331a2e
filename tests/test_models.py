"""Tests for data models."""

import json
from datetime import UTC, datetime

import pytest
from pydantic import TypeAdapter, ValidationError

from repochat.models.conversation import (
    ApprovalRequest,
    ChatRequest,
    CreateConversationRequest,
    HealthResponse,
)
from repochat.models.events import FinishReason, LoopState, StreamEvent, ToolResultEvent, TurnCompleteEvent
from repochat.models.llm import LLMUsage, TextBlock, ToolResultBlock, ToolUseBlock
from repochat.models.messages import (
    Approval,
    Message,
    TextPart,
    ToolInvocationPart,
    ToolState,
    find_tool_invocation,
)
from repochat.tools.history import CommitsInput
from repochat.tools.search import SearchIssuesInput


class TestConversationModels:
    """Tests for API request/response models."""

    def test_create_conversation_request_valid(self):
        """Test valid repository binding."""
        request = CreateConversationRequest(owner="octo-org", repo="widgets.py")
        assert request.owner == "octo-org"
        assert request.repo == "widgets.py"

    def test_create_conversation_request_rejects_paths(self):
        """Test that owner/repo cannot smuggle path segments."""
        with pytest.raises(ValidationError):
            CreateConversationRequest(owner="octo/evil", repo="widgets")
        with pytest.raises(ValidationError):
            CreateConversationRequest(owner="octo", repo="")

    def test_chat_request_from_json(self):
        """Test chat request parsing from JSON."""
        request = ChatRequest.model_validate(json.loads('{"text": "What does main.py do?"}'))
        assert request.text == "What does main.py do?"

    def test_chat_request_empty(self):
        """Test that empty messages are rejected."""
        with pytest.raises(ValidationError):
            ChatRequest(text="")

    def test_approval_request(self):
        """Test approval decisions parse from their wire values."""
        request = ApprovalRequest.model_validate({"tool_call_id": "call_1", "decision": "no"})
        assert request.decision == Approval.NO

        with pytest.raises(ValidationError):
            ApprovalRequest.model_validate({"tool_call_id": "call_1", "decision": "maybe"})

    def test_health_response_valid(self):
        """Test valid health response."""
        now = datetime.now(UTC)
        response = HealthResponse(status="healthy", timestamp=now, version="1.0.0")
        assert response.status == "healthy"
        assert response.timestamp == now


class TestMessageModels:
    """Tests for messages and parts."""

    def test_user_message(self):
        """Test creating a user message."""
        message = Message.user("hello")
        assert message.role == "user"
        assert message.parts == [TextPart(text="hello")]
        assert message.text == "hello"
        assert message.id
        assert message.created_at.tzinfo is not None

    def test_message_ids_unique(self):
        """Test that each message gets its own id."""
        assert Message.user("a").id != Message.user("b").id

    def test_invalid_role(self):
        """Test that unknown roles are rejected."""
        with pytest.raises(ValidationError):
            Message(role="tool")

    def test_tool_invocation_lifecycle(self):
        """Test state transitions of a tool invocation."""
        part = ToolInvocationPart(tool_call_id="call_1", tool_name="getReadme")
        assert part.state == ToolState.INPUT_STREAMING
        assert not part.state.is_final

        part.mark_available({"ref": "main"})
        assert part.state == ToolState.INPUT_AVAILABLE

        part.set_output({"content": "# Hi"})
        assert part.state == ToolState.OUTPUT_AVAILABLE
        assert part.state.is_final

        part.set_error("Error: boom")
        assert part.state == ToolState.OUTPUT_ERROR
        assert part.output is None

    def test_parts_from_json(self):
        """Test that parts are parsed by their type tag."""
        message = Message.model_validate(
            {
                "role": "assistant",
                "parts": [
                    {"type": "text", "text": "Looking"},
                    {
                        "type": "tool-invocation",
                        "tool_call_id": "call_1",
                        "tool_name": "getReadme",
                        "state": "output-available",
                        "output": "ok",
                    },
                ],
            }
        )

        assert isinstance(message.parts[1], ToolInvocationPart)
        assert message.parts[1].state == ToolState.OUTPUT_AVAILABLE
        assert find_tool_invocation([message], "call_1") is message.parts[1]
        assert find_tool_invocation([message], "call_2") is None

    def test_state_wire_values(self):
        """Test serialized state names."""
        part = ToolInvocationPart(tool_call_id="call_1", tool_name="getReadme")
        assert part.model_dump(mode="json")["state"] == "input-streaming"


class TestEventModels:
    """Tests for stream events."""

    def test_event_parsing_by_type(self):
        """Test that events round-trip through the tagged union."""
        adapter = TypeAdapter(StreamEvent)
        event = TurnCompleteEvent(
            seq=5,
            finish_reason=FinishReason.AWAITING_APPROVAL,
            state=LoopState.TOOLS_PENDING,
            rounds=2,
            pending_tool_call_ids=["call_1"],
        )

        parsed = adapter.validate_json(event.model_dump_json())

        assert isinstance(parsed, TurnCompleteEvent)
        assert parsed.pending_tool_call_ids == ["call_1"]

    def test_tool_result_json(self):
        """Test tool result event serialization."""
        event = ToolResultEvent(tool_call_id="call_1", tool_name="getReadme", state=ToolState.OUTPUT_ERROR, error_text="x")
        data = json.loads(event.model_dump_json())

        assert data["type"] == "tool-result"
        assert data["state"] == "output-error"


class TestLLMModels:
    """Tests for LLM-related models."""

    def test_tool_result_block_valid(self):
        """Test valid tool result block."""
        block = ToolResultBlock(tool_use_id="tool_001", content="Success")
        assert block.type == "tool_result"
        assert block.is_error is False

    def test_content_blocks_from_anthropic_json(self):
        """Test parsing Anthropic content blocks, ignoring unknown fields."""
        text_block = TextBlock.model_validate({"citations": None, "text": "Let me check the README.", "type": "text"})
        assert text_block.text == "Let me check the README."

        tool_block = ToolUseBlock.model_validate(
            {"id": "toolu_011NMUEGn7XedTwffFDdTphg", "input": {"ref": "main"}, "name": "getReadme", "type": "tool_use"}
        )
        assert tool_block.name == "getReadme"
        assert tool_block.input == {"ref": "main"}

    def test_usage_accumulates(self):
        """Test summing usage across rounds."""
        usage = LLMUsage()
        usage.add(LLMUsage(input_tokens=100, output_tokens=20, total_tokens=120, cache_read_input_tokens=50))
        usage.add(LLMUsage(input_tokens=50, output_tokens=10, total_tokens=60))

        assert usage.input_tokens == 150
        assert usage.total_tokens == 180
        assert usage.cache_hit_rate == pytest.approx(25.0)


class TestToolInputModels:
    """Tests for tool input validation models."""

    def test_commits_input_defaults(self):
        """Test commit listing defaults."""
        params = CommitsInput()
        assert params.per_page == 10
        assert params.sha is None

    def test_commits_input_validation(self):
        """Test that non-positive page sizes are rejected."""
        with pytest.raises(ValidationError):
            CommitsInput(per_page=0)

    def test_search_issues_input(self):
        """Test issue search filters."""
        params = SearchIssuesInput.model_validate_json('{"query": "crash"}')
        assert params.state == "all"
        assert params.type == "all"

        with pytest.raises(ValidationError):
            SearchIssuesInput(query="crash", state="merged")
