"""LLM service: one streamed model-generation round over the message history."""

import json
from dataclasses import dataclass, field
from typing import Any

from repochat.clients.anthropic import (
    AnthropicClient,
    AnthropicMessage,
    AnthropicTool,
    CacheControl,
    get_anthropic_client,
)
from repochat.models.events import TextDeltaEvent, ToolCallDeltaEvent, ToolCallReadyEvent, ToolCallStartEvent, ToolResultEvent
from repochat.models.llm import (
    ContentBlock,
    FinishChunk,
    LLMTool,
    LLMUsage,
    TextBlock,
    TextDeltaChunk,
    ToolCallDeltaChunk,
    ToolCallEndChunk,
    ToolCallStartChunk,
    ToolResultBlock,
    ToolUseBlock,
)
from repochat.models.messages import Message, TextPart, ToolInvocationPart, iter_tool_invocations, new_id
from repochat.services.stream import StreamPublisher
from repochat.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class GenerationResult:
    """Outcome of one model-generation round."""

    invocations: list[ToolInvocationPart] = field(default_factory=list)
    stop_reason: str | None = None
    usage: LLMUsage = field(default_factory=LLMUsage)


def _tool_result_content(part: ToolInvocationPart) -> str:
    if part.error_text is not None:
        return part.error_text
    if isinstance(part.output, str):
        return part.output
    return json.dumps(part.output, default=str)


def _append(result: list[AnthropicMessage], role: str, blocks: list[ContentBlock]) -> None:
    """Append blocks, merging with the previous message when the role repeats."""
    if not blocks:
        return
    if result and result[-1].role == role and isinstance(result[-1].content, list):
        result[-1].content.extend(blocks)
    else:
        result.append(AnthropicMessage(role=role, content=list(blocks)))


class LLMService:
    """Streams model rounds into assistant messages and stream events."""

    def __init__(self, client: AnthropicClient | None = None):
        """Initialize LLM service.

        Args:
            client: Anthropic client (defaults to global instance on first use)
        """
        self._client = client

    @property
    def client(self) -> AnthropicClient:
        if self._client is None:
            self._client = get_anthropic_client()
        return self._client

    def validate_user_message(self, text: str) -> None:
        """Raises ValueError if the message exceeds the token limit."""
        self.client.validate_message_tokens(text)

    def to_llm_messages(self, messages: list[Message]) -> list[AnthropicMessage]:
        """Convert the conversation history into model messages.

        An assistant message that interleaves text and tool calls becomes
        alternating assistant (text and ``tool_use``) and user
        (``tool_result``) messages. Only resolved invocations are replayed.
        """
        result: list[AnthropicMessage] = []

        for message in messages:
            if message.role == "system":
                continue

            if message.role == "user":
                blocks = [TextBlock(text=part.text) for part in message.parts if isinstance(part, TextPart) and part.text]
                _append(result, "user", blocks)
                continue

            assistant_blocks: list[ContentBlock] = []
            tool_results: list[ContentBlock] = []
            for part in message.parts:
                if isinstance(part, TextPart):
                    if not part.text:
                        continue
                    if tool_results:
                        _append(result, "assistant", assistant_blocks)
                        _append(result, "user", tool_results)
                        assistant_blocks, tool_results = [], []
                    assistant_blocks.append(TextBlock(text=part.text))
                elif part.state.is_final:
                    assistant_blocks.append(ToolUseBlock(id=part.tool_call_id, name=part.tool_name, input=part.input))
                    tool_results.append(
                        ToolResultBlock(
                            tool_use_id=part.tool_call_id,
                            content=_tool_result_content(part),
                            is_error=part.error_text is not None,
                        )
                    )

            _append(result, "assistant", assistant_blocks)
            _append(result, "user", tool_results)

        return result

    def _build_tools(self, tools: dict[str, LLMTool]) -> list[AnthropicTool]:
        tool_list = list(tools.values())
        anthropic_tools = []

        for i, tool in enumerate(tool_list):
            # Cache control on the last tool caches all tool definitions
            cache_control = CacheControl(type="ephemeral", ttl="5m") if i == len(tool_list) - 1 else None
            anthropic_tools.append(
                AnthropicTool(
                    name=tool.name,
                    description=tool.description,
                    input_schema=tool.input_schema,
                    cache_control=cache_control,
                )
            )

        return anthropic_tools

    async def generate(
        self,
        messages: list[Message],
        system_prompt: str,
        tools: dict[str, LLMTool],
        assistant: Message,
        publisher: StreamPublisher,
        round_number: int,
        **kwargs: Any,
    ) -> GenerationResult:
        """Run one model call, recording its output into ``assistant``.

        Text deltas extend the current text part, tool calls become
        ``tool-invocation`` parts that move to ``input-available`` once their
        arguments are complete. Model errors propagate to the caller.

        Args:
            messages: Sanitized copy of the history sent to the model
            system_prompt: System prompt for the model
            tools: Tools offered to the model
            assistant: Message receiving the generated parts
            publisher: Stream for this turn's events
            round_number: Current round, stamped on every event

        Returns:
            Invocations whose input completed this round, stop reason and usage
        """
        llm_messages = self.to_llm_messages(messages)
        known_ids = {part.tool_call_id for part in iter_tool_invocations([*messages, assistant])}

        result = GenerationResult()
        text_part: TextPart | None = None
        streaming: dict[str, ToolInvocationPart] = {}

        logger.debug(f"Round {round_number}: calling model with {len(llm_messages)} messages and {len(tools)} tools")

        async for chunk in self.client.stream_message(llm_messages, system_prompt, self._build_tools(tools), **kwargs):
            if isinstance(chunk, TextDeltaChunk):
                if not chunk.text:
                    continue
                if text_part is None:
                    text_part = TextPart()
                    assistant.parts.append(text_part)
                text_part.text += chunk.text
                publisher.publish(TextDeltaEvent(round=round_number, message_id=assistant.id, delta=chunk.text))

            elif isinstance(chunk, ToolCallStartChunk):
                text_part = None
                tool_call_id = chunk.id
                if tool_call_id in known_ids:
                    tool_call_id = f"call_{new_id()}"
                    logger.warning(f"Duplicate tool call id {chunk.id} from model, reassigned to {tool_call_id}")
                known_ids.add(tool_call_id)

                part = ToolInvocationPart(tool_call_id=tool_call_id, tool_name=chunk.name)
                assistant.parts.append(part)
                streaming[chunk.id] = part
                publisher.publish(
                    ToolCallStartEvent(
                        round=round_number,
                        message_id=assistant.id,
                        tool_call_id=tool_call_id,
                        tool_name=chunk.name,
                    )
                )

            elif isinstance(chunk, ToolCallDeltaChunk):
                part = streaming.get(chunk.id)
                if part is None:
                    continue
                part.input_text += chunk.partial_json
                publisher.publish(
                    ToolCallDeltaEvent(
                        round=round_number,
                        tool_call_id=part.tool_call_id,
                        input_text_delta=chunk.partial_json,
                    )
                )

            elif isinstance(chunk, ToolCallEndChunk):
                part = streaming.pop(chunk.id, None)
                if part is None:
                    continue
                self._complete_input(part, publisher, round_number)
                result.invocations.append(part)

            elif isinstance(chunk, FinishChunk):
                result.stop_reason = chunk.stop_reason
                if chunk.usage:
                    result.usage.add(chunk.usage)

        if streaming:
            logger.warning(f"Model stream ended with incomplete tool calls: {list(streaming)}")

        logger.info(
            f"Round {round_number} generated {len(result.invocations)} tool calls, stop reason: {result.stop_reason}"
        )
        return result

    def _complete_input(self, part: ToolInvocationPart, publisher: StreamPublisher, round_number: int) -> None:
        """Parse the streamed arguments and mark the invocation ready.

        Arguments that are not a JSON object resolve the invocation as an
        error right away.
        """
        try:
            tool_input = json.loads(part.input_text) if part.input_text.strip() else {}
        except json.JSONDecodeError:
            tool_input = None

        valid = isinstance(tool_input, dict)
        part.mark_available(tool_input if valid else {})
        publisher.publish(
            ToolCallReadyEvent(
                round=round_number,
                tool_call_id=part.tool_call_id,
                tool_name=part.tool_name,
                input=part.input,
            )
        )

        if not valid:
            logger.warning(f"Invalid input for {part.tool_name} ({part.tool_call_id}): {part.input_text[:200]}")
            part.set_error(f"Error: Invalid JSON input for tool {part.tool_name}")
            publisher.publish(
                ToolResultEvent(
                    round=round_number,
                    tool_call_id=part.tool_call_id,
                    tool_name=part.tool_name,
                    state=part.state,
                    error_text=part.error_text,
                )
            )
