"""Tests for the conversation loop state machine."""

import pytest

from repochat.models.events import (
    ErrorEvent,
    FinishReason,
    LoopState,
    StepFinishEvent,
    TextDeltaEvent,
    ToolCallReadyEvent,
    ToolCallStartEvent,
    ToolResultEvent,
)
from repochat.models.llm import ToolResultBlock
from repochat.models.messages import (
    DENIED_OUTPUT,
    Approval,
    Message,
    TextPart,
    ToolInvocationPart,
    ToolState,
    iter_tool_invocations,
)
from repochat.services.loop import ConversationLoop, LoopConfig
from repochat.services.resolver import ToolInvocationResolver
from repochat.services.stream import StreamPublisher


def _loop(llm_service, tools, **config) -> ConversationLoop:
    loop_config = LoopConfig(**config)
    resolver = ToolInvocationResolver(tools, loop_config.tools_requiring_confirmation)
    return ConversationLoop(llm_service, resolver, "You analyze octo/widgets.", tools, loop_config)


class TestLoopConfig:
    """Tests for loop configuration."""

    def test_defaults(self):
        """Test default round budget and confirmation set."""
        config = LoopConfig()
        assert config.max_rounds == 10
        assert config.tools_requiring_confirmation == frozenset()

    def test_from_env(self, monkeypatch):
        """Test reading configuration from environment variables."""
        monkeypatch.setenv("REPOCHAT_MAX_ROUNDS", "4")
        monkeypatch.setenv("REPOCHAT_CONFIRM_TOOLS", "getFileContent, searchCode,")

        config = LoopConfig.from_env()

        assert config.max_rounds == 4
        assert config.tools_requiring_confirmation == frozenset({"getFileContent", "searchCode"})


class TestSingleTurn:
    """Tests for turns that finish without suspending."""

    @pytest.mark.asyncio
    async def test_text_only_answer(self, scripted_llm, script, tools):
        """Test that a reply without tool calls ends the turn after one round."""
        service, client = scripted_llm(script.text("Hello!"))
        loop = _loop(service, tools)
        history = [Message.user("hi")]

        result = await loop.run(history, StreamPublisher())

        assert result.state == LoopState.DONE
        assert result.finish_reason == FinishReason.STOP
        assert result.rounds == 1
        assert loop.state == LoopState.DONE
        assert [m.role for m in history] == ["user", "assistant"]
        assert history[-1].text == "Hello!"
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_list_root_directory(self, scripted_llm, script, tools, tool_calls):
        """Test one tool round followed by a text summary."""
        service, client = scripted_llm(
            script.tool_calls(("call_1", "listDirectoryContents", {"path": ""})),
            script.text("The root holds README.md and src/."),
        )
        loop = _loop(service, tools)
        history = [Message.user("list the root directory")]
        publisher = StreamPublisher()

        result = await loop.run(history, publisher)

        assert result.state == LoopState.DONE
        assert result.finish_reason == FinishReason.STOP
        assert result.rounds == 2
        assert tool_calls == [("listDirectoryContents", {"path": ""})]

        assert len(history) == 2
        assistant = history[1]
        assert [part.type for part in assistant.parts] == ["tool-invocation", "text"]
        assert assistant.parts[0].state == ToolState.OUTPUT_AVAILABLE

        second_call = client.calls[1]["messages"]
        assert [m.role for m in second_call] == ["user", "assistant", "user"]
        assert isinstance(second_call[-1].content[0], ToolResultBlock)

        steps = [event for event in publisher.events if isinstance(event, StepFinishEvent)]
        assert [step.round for step in steps] == [1, 2]
        assert result.usage.input_tokens == 20

    @pytest.mark.asyncio
    async def test_event_order_per_tool_call(self, scripted_llm, script, tools):
        """Test start, ready and result ordering and round sequencing."""
        service, _ = scripted_llm(
            script.tool_calls(("call_1", "getReadme", {}), ("call_2", "getRepositoryInfo", {})),
            script.text("Summary"),
        )
        publisher = StreamPublisher()

        await _loop(service, tools).run([Message.user("overview")], publisher)

        for call_id in ("call_1", "call_2"):
            kinds = [
                type(event)
                for event in publisher.events
                if getattr(event, "tool_call_id", None) == call_id
                and isinstance(event, ToolCallStartEvent | ToolCallReadyEvent | ToolResultEvent)
            ]
            assert kinds == [ToolCallStartEvent, ToolCallReadyEvent, ToolResultEvent]

        rounds = [event.round for event in publisher.events]
        assert rounds == sorted(rounds)
        first_step = next(i for i, e in enumerate(publisher.events) if isinstance(e, StepFinishEvent))
        assert all(event.round == 1 for event in publisher.events[: first_step + 1])
        assert [event.seq for event in publisher.events] == list(range(len(publisher)))

    @pytest.mark.asyncio
    async def test_tool_failure_visible_to_model(self, scripted_llm, script, tool_factory):
        """Test that a failing tool does not abort the turn."""
        failing = tool_factory("getFileContent", error=RuntimeError("Not Found"))
        service, client = scripted_llm(
            script.tool_calls(("call_1", "getFileContent", {"path": "nope.py"})),
            script.text("That file does not exist."),
        )

        result = await _loop(service, {"getFileContent": failing}).run([Message.user("show nope.py")], StreamPublisher())

        assert result.finish_reason == FinishReason.STOP
        replayed = client.calls[1]["messages"][-1].content[0]
        assert replayed.is_error is True
        assert "Not Found" in replayed.content

    @pytest.mark.asyncio
    async def test_unique_tool_call_ids(self, scripted_llm, script, tools):
        """Test that ids stay unique when the model repeats one."""
        service, _ = scripted_llm(
            script.tool_calls(("call_1", "getReadme", {})),
            script.tool_calls(("call_1", "getReadme", {})),
            script.text("done"),
        )
        history = [Message.user("readme twice")]

        await _loop(service, tools).run(history, StreamPublisher())

        ids = [part.tool_call_id for part in iter_tool_invocations(history)]
        assert len(ids) == 2
        assert len(set(ids)) == 2


class TestRoundBudget:
    """Tests for the round budget guard."""

    @pytest.mark.asyncio
    async def test_stops_after_max_rounds(self, scripted_llm, script, tools, tool_calls):
        """Test that eleven requested tool rounds stop after the tenth."""
        rounds = [script.tool_calls((f"call_{i}", "getReadme", {})) for i in range(11)]
        service, client = scripted_llm(*rounds)
        history = [Message.user("keep going")]

        result = await _loop(service, tools).run(history, StreamPublisher())

        assert result.state == LoopState.DONE
        assert result.finish_reason == FinishReason.MAX_ROUNDS
        assert result.rounds == 10
        assert len(client.calls) == 10
        assert len(tool_calls) == 10
        assert len(client.rounds) == 1

    @pytest.mark.asyncio
    async def test_configured_budget(self, scripted_llm, script, tools):
        """Test that the loop terminates within a smaller configured budget."""
        rounds = [script.tool_calls((f"call_{i}", "getReadme", {})) for i in range(5)]
        service, client = scripted_llm(*rounds)

        result = await _loop(service, tools, max_rounds=3).run([Message.user("go")], StreamPublisher())

        assert result.rounds == 3
        assert len(client.calls) == 3


class TestModelErrors:
    """Tests for model-generation failures."""

    @pytest.mark.asyncio
    async def test_error_returns_to_idle(self, scripted_llm, tools):
        """Test that a model failure ends the turn in Idle with an error event."""
        service, _ = scripted_llm(RuntimeError("overloaded"))
        loop = _loop(service, tools)
        history = [Message.user("hi")]
        publisher = StreamPublisher()

        result = await loop.run(history, publisher)

        assert result.state == LoopState.IDLE
        assert result.finish_reason == FinishReason.ERROR
        assert result.error == "overloaded"
        assert loop.state == LoopState.IDLE
        assert [m.role for m in history] == ["user"]
        assert isinstance(publisher.events[-1], ErrorEvent)

    @pytest.mark.asyncio
    async def test_error_keeps_earlier_output(self, scripted_llm, script, tools):
        """Test that text already produced is not retracted on a later failure."""
        service, _ = scripted_llm(
            script.tool_calls(("call_1", "getReadme", {}), text="Reading the README."),
            RuntimeError("timeout"),
        )
        history = [Message.user("hi")]
        publisher = StreamPublisher()

        result = await _loop(service, tools).run(history, publisher)

        assert result.finish_reason == FinishReason.ERROR
        assert history[-1].text == "Reading the README."
        assert any(isinstance(event, TextDeltaEvent) for event in publisher.events)


class TestApprovalSuspension:
    """Tests for suspending on confirmation-required tools."""

    @pytest.mark.asyncio
    async def test_suspends_then_resumes_after_denial(self, scripted_llm, script, tools, tool_calls):
        """Test that a gated call parks the loop and a NO resumes it with the declined output."""
        service, client = scripted_llm(
            script.tool_calls(("call_1", "getFileContent", {"path": "secrets.env"})),
            script.text("Understood, I won't read that file."),
        )
        loop = _loop(service, tools, tools_requiring_confirmation=frozenset({"getFileContent"}))
        history = [Message.user("show secrets.env")]

        first = await loop.run(history, StreamPublisher())

        assert first.state == LoopState.TOOLS_PENDING
        assert first.finish_reason == FinishReason.AWAITING_APPROVAL
        assert first.pending_tool_call_ids == ["call_1"]
        assert loop.state == LoopState.TOOLS_PENDING
        assert len(client.calls) == 1

        assert loop.resolver.record_decision(history, "call_1", Approval.NO)
        publisher = StreamPublisher()
        second = await loop.run(history, publisher, rounds_used=first.rounds)

        assert second.state == LoopState.DONE
        assert second.rounds == 2
        part: ToolInvocationPart = next(iter_tool_invocations(history))
        assert part.output == DENIED_OUTPUT
        assert tool_calls == []
        assert isinstance(publisher.events[0], ToolResultEvent)
        assert client.calls[1]["messages"][-1].content[0].content == DENIED_OUTPUT
        assert [m.role for m in history] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_stays_suspended_without_decision(self, scripted_llm, script, tools):
        """Test that running again without a decision makes no model call."""
        service, client = scripted_llm(script.tool_calls(("call_1", "getFileContent", {"path": "a"})))
        loop = _loop(service, tools, tools_requiring_confirmation=frozenset({"getFileContent"}))
        history = [Message.user("read a")]
        first = await loop.run(history, StreamPublisher())

        again = await loop.run(history, StreamPublisher(), rounds_used=first.rounds)

        assert again.finish_reason == FinishReason.AWAITING_APPROVAL
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_approved_call_executes_on_resume(self, scripted_llm, script, tools, tool_calls):
        """Test that a YES runs the tool before the next model round."""
        service, _ = scripted_llm(
            script.tool_calls(("call_1", "getFileContent", {"path": "a.py"}), ("call_2", "getReadme", {})),
            script.text("Here is a.py"),
        )
        loop = _loop(service, tools, tools_requiring_confirmation=frozenset({"getFileContent"}))
        history = [Message.user("read a.py")]
        first = await loop.run(history, StreamPublisher())

        assert tool_calls == [("getReadme", {})]

        loop.resolver.record_decision(history, "call_1", Approval.YES)
        second = await loop.run(history, StreamPublisher(), rounds_used=first.rounds)

        assert second.finish_reason == FinishReason.STOP
        assert tool_calls == [("getReadme", {}), ("getFileContent", {"path": "a.py"})]

    @pytest.mark.asyncio
    async def test_final_round_calls_parked_at_budget(self, scripted_llm, script, tools):
        """Test that reaching the budget forces Done even with a call awaiting approval."""
        service, client = scripted_llm(script.tool_calls(("call_1", "getFileContent", {"path": "a"})))
        loop = _loop(service, tools, max_rounds=1, tools_requiring_confirmation=frozenset({"getFileContent"}))

        result = await loop.run([Message.user("read a")], StreamPublisher())

        assert result.state == LoopState.DONE
        assert result.finish_reason == FinishReason.MAX_ROUNDS
        assert result.pending_tool_call_ids == ["call_1"]


class TestSanitizationOnEntry:
    """Tests for the sanitized history sent to the model."""

    @pytest.mark.asyncio
    async def test_interrupted_call_kept_in_history(self, scripted_llm, script, tools):
        """Test that a call left streaming is hidden from the model but stays recorded."""
        service, client = scripted_llm(script.text("Fresh answer"))
        interrupted = Message(
            role="assistant",
            parts=[TextPart(text="Checking. "), ToolInvocationPart(tool_call_id="call_x", tool_name="getReadme")],
        )
        history = [Message.user("first"), interrupted]

        await _loop(service, tools).run(history, StreamPublisher())

        assert [(p.tool_call_id, p.state) for p in iter_tool_invocations(history)] == [
            ("call_x", ToolState.INPUT_STREAMING)
        ]
        assert history[-1] is interrupted
        assert history[-1].text == "Checking. Fresh answer"
        sent = client.calls[0]["messages"]
        assert [m.role for m in sent] == ["user", "assistant"]
        assert [block.type for block in sent[1].content] == ["text"]

    @pytest.mark.asyncio
    async def test_message_with_only_interrupted_call(self, scripted_llm, script, tools):
        """Test that a trailing message holding only an unfinished call is not sent."""
        service, client = scripted_llm(script.text("Fresh answer"))
        interrupted = Message(role="assistant", parts=[ToolInvocationPart(tool_call_id="call_x", tool_name="getReadme")])
        history = [Message.user("first"), interrupted]

        await _loop(service, tools).run(history, StreamPublisher())

        assert len(history) == 2
        assert history[-1].parts[0].tool_call_id == "call_x"
        assert history[-1].text == "Fresh answer"
        assert [m.role for m in client.calls[0]["messages"]] == ["user"]

    @pytest.mark.asyncio
    async def test_earlier_interrupted_call_not_replayed(self, scripted_llm, script, tools):
        """Test that an unfinished call from an older message never reaches the model."""
        service, client = scripted_llm(script.text("Fresh answer"))
        interrupted = Message(role="assistant", parts=[ToolInvocationPart(tool_call_id="call_x", tool_name="getReadme")])
        history = [Message.user("first"), interrupted, Message.user("second")]

        await _loop(service, tools).run(history, StreamPublisher())

        assert [m.role for m in client.calls[0]["messages"]] == ["user"]
        assert [block.text for block in client.calls[0]["messages"][0].content] == ["first", "second"]
