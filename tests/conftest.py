"""Shared fixtures: a scripted model client and in-memory tools."""

import json
from typing import Any

import pytest

from repochat.models.llm import (
    FinishChunk,
    LLMTool,
    LLMUsage,
    TextDeltaChunk,
    ToolCallDeltaChunk,
    ToolCallEndChunk,
    ToolCallStartChunk,
)
from repochat.services.llm import LLMService


class ScriptedModelClient:
    """Stands in for AnthropicClient, replaying one scripted chunk list per call."""

    def __init__(self, rounds: list):
        self.rounds = list(rounds)
        self.calls: list[dict[str, Any]] = []

    async def stream_message(self, messages, system_prompt, tools=None, **kwargs):
        self.calls.append({"messages": messages, "system_prompt": system_prompt, "tools": tools})
        if not self.rounds:
            raise AssertionError("Unexpected model call")

        script = self.rounds.pop(0)
        if isinstance(script, Exception):
            raise script
        for chunk in script:
            yield chunk

    def validate_message_tokens(self, message: str) -> None:
        if len(message) > 1000:
            raise ValueError("Message exceeds token limit")


class Script:
    """Builders for scripted model rounds."""

    @staticmethod
    def text(text: str, stop_reason: str = "end_turn") -> list:
        return [TextDeltaChunk(text=text), FinishChunk(stop_reason=stop_reason, usage=LLMUsage(10, 5, 15))]

    @staticmethod
    def tool_calls(*calls: tuple[str, str, dict], text: str | None = None) -> list:
        """One round requesting ``(tool_call_id, tool_name, input)`` calls."""
        chunks: list = []
        if text:
            chunks.append(TextDeltaChunk(text=text))
        for tool_call_id, tool_name, tool_input in calls:
            raw = json.dumps(tool_input)
            middle = len(raw) // 2
            chunks.append(ToolCallStartChunk(id=tool_call_id, name=tool_name))
            chunks.append(ToolCallDeltaChunk(id=tool_call_id, partial_json=raw[:middle]))
            chunks.append(ToolCallDeltaChunk(id=tool_call_id, partial_json=raw[middle:]))
            chunks.append(ToolCallEndChunk(id=tool_call_id))
        chunks.append(FinishChunk(stop_reason="tool_use", usage=LLMUsage(10, 5, 15)))
        return chunks


def make_tool(name: str, calls: list | None = None, result: Any = None, error: Exception | None = None) -> LLMTool:
    async def run(params: dict[str, Any]) -> Any:
        if calls is not None:
            calls.append((name, params))
        if error is not None:
            raise error
        return result if result is not None else {"tool": name, "input": params}

    return LLMTool(
        name=name,
        description=f"{name} test tool",
        input_schema={"type": "object", "properties": {}},
        callable=run,
    )


@pytest.fixture
def script():
    return Script


@pytest.fixture
def scripted_llm():
    """Factory returning an LLMService over a ScriptedModelClient."""

    def build(*rounds) -> tuple[LLMService, ScriptedModelClient]:
        client = ScriptedModelClient(list(rounds))
        return LLMService(client), client

    return build


@pytest.fixture
def tool_calls() -> list:
    """Records every (tool_name, input) the fake tools receive."""
    return []


@pytest.fixture
def tools(tool_calls) -> dict[str, LLMTool]:
    return {
        name: make_tool(name, calls=tool_calls)
        for name in ("listDirectoryContents", "getFileContent", "getReadme", "getRepositoryInfo")
    }


@pytest.fixture
def tool_factory():
    return make_tool
