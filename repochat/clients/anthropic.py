"""Anthropic API client with streaming, rate limiting and error handling."""

import asyncio
import json
import os
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Literal

import tiktoken
from anthropic import APIError, AsyncAnthropic
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from pydantic import BaseModel

from repochat.models.llm import (
    ContentBlock,
    FinishChunk,
    LLMUsage,
    ModelChunk,
    TextBlock,
    TextDeltaChunk,
    ToolCallDeltaChunk,
    ToolCallEndChunk,
    ToolCallStartChunk,
    ToolResultBlock,
    ToolUseBlock,
)
from repochat.utils.logging import get_logger

logger = get_logger(__name__)


class CacheControl(BaseModel):
    """Cache control configuration for prompt caching."""

    type: Literal["ephemeral"] = "ephemeral"
    ttl: Literal["5m", "1h"] = "5m"


class AnthropicMessage(BaseModel):
    """Message format for Anthropic API."""

    role: Literal["user", "assistant"]
    content: str | list[ContentBlock]


class AnthropicTool(BaseModel):
    """Tool definition for Anthropic API."""

    name: str
    description: str
    input_schema: dict[str, Any]
    cache_control: CacheControl | None = None


@dataclass
class AnthropicConfig:
    """Configuration for Anthropic API client."""

    model: str = os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-20241022")
    max_tokens: int = 4096
    temperature: float = 0.1
    max_retries: int = 3
    retry_delay: float = 1.0

    # Token limits for validation and truncation
    max_message_tokens: int = 4000
    max_conversation_tokens: int = 200000
    token_headroom: int = 4096


class AnthropicRateLimiter:
    """Moving-window limiter for requests and estimated tokens."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 40_000):
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum requests per minute
            tokens_per_minute: Maximum tokens per minute
        """
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)

        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def check_rate_limit(self, estimated_tokens: int, identifier: str = "anthropic") -> None:
        """Wait until the request fits within the request and token windows."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            await self._wait_for_reset(self.request_limit, identifier, "Request")

        token_identifier = f"{identifier}_tokens"
        if not self.limiter.hit(self.token_limit, token_identifier, cost=max(estimated_tokens, 1)):
            await self._wait_for_reset(self.token_limit, token_identifier, "Token")

    async def _wait_for_reset(self, limit, identifier: str, label: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        if window_stats:
            wait_time = max(0, window_stats.reset_time - time.time())
            if wait_time > 0:
                logger.warning(f"{label} rate limit exceeded, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)


class AnthropicClient:
    """Low-level streaming Anthropic client.

    ``stream_message`` turns one Messages API stream into provider-neutral
    ``ModelChunk`` objects. Transport failures are retried only while no
    chunk has been produced yet.
    """

    tokenizer: tiktoken.Encoding | None = None
    api_key: str
    client: AsyncAnthropic
    config: AnthropicConfig
    rate_limiter: AnthropicRateLimiter = AnthropicRateLimiter()

    def __init__(self, api_key: str | None = None, config: AnthropicConfig | None = None):
        """Initialize Anthropic client.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            config: Client configuration
        """
        anthropic_api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")

        self.api_key = anthropic_api_key
        self.config = config or AnthropicConfig()
        # Retries are handled here so they never happen mid-stream
        self.client = AsyncAnthropic(api_key=self.api_key, max_retries=0)

        try:
            # Close approximation for Claude
            self.tokenizer = tiktoken.encoding_for_model("gpt-4")
        except Exception:
            self.tokenizer = None

    async def stream_message(
        self,
        messages: list[AnthropicMessage],
        system_prompt: str,
        tools: list[AnthropicTool] | None = None,
        **kwargs,
    ) -> AsyncIterator[ModelChunk]:
        """Stream one model response.

        Args:
            messages: Conversation history
            system_prompt: System prompt
            tools: Available tools
            **kwargs: Overrides for model, max_tokens and temperature

        Yields:
            Text deltas, tool call lifecycle chunks and a final ``FinishChunk``
        """
        truncated_messages = self.truncate_conversation(messages, system_prompt, tools)

        estimated_tokens = self._estimate_tokens(truncated_messages, system_prompt)
        logger.debug(f"Estimated tokens: {estimated_tokens}")
        await self.rate_limiter.check_rate_limit(estimated_tokens)

        request_params: dict[str, Any] = {
            "model": kwargs.get("model", self.config.model),
            "max_tokens": kwargs.get("max_tokens", self.config.max_tokens),
            "temperature": kwargs.get("temperature", self.config.temperature),
            "system": system_prompt,
            "messages": [msg.model_dump(exclude_none=True) for msg in truncated_messages],
        }
        if tools:
            request_params["tools"] = [tool.model_dump(exclude_none=True) for tool in tools]

        logger.debug(
            f"Streaming message with {len(truncated_messages)} messages, {len(tools) if tools else 0} tools, "
            f"model: {request_params['model']}"
        )

        for attempt in range(self.config.max_retries):
            produced = False
            try:
                async for chunk in self._stream_once(request_params):
                    produced = True
                    yield chunk
                return

            except APIError as e:
                if produced or attempt >= self.config.max_retries - 1:
                    raise
                delay = self._retry_delay(e, attempt)
                if delay is None:
                    raise
                logger.warning(f"Anthropic request failed ({e}), retrying in {delay:.1f}s")
                await asyncio.sleep(delay)

    async def _stream_once(self, request_params: dict[str, Any]) -> AsyncIterator[ModelChunk]:
        tool_ids: dict[int, str] = {}

        async with self.client.messages.stream(**request_params) as stream:
            async for event in stream:
                if event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        tool_ids[event.index] = block.id
                        yield ToolCallStartChunk(id=block.id, name=block.name)

                elif event.type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        yield TextDeltaChunk(text=delta.text)
                    elif delta.type == "input_json_delta" and event.index in tool_ids:
                        yield ToolCallDeltaChunk(id=tool_ids[event.index], partial_json=delta.partial_json)

                elif event.type == "content_block_stop" and event.index in tool_ids:
                    yield ToolCallEndChunk(id=tool_ids[event.index])

            final = await stream.get_final_message()

        usage = None
        if final.usage:
            usage = LLMUsage(
                input_tokens=final.usage.input_tokens,
                output_tokens=final.usage.output_tokens,
                total_tokens=final.usage.input_tokens + final.usage.output_tokens,
                cache_creation_input_tokens=final.usage.cache_creation_input_tokens or 0,
                cache_read_input_tokens=final.usage.cache_read_input_tokens or 0,
            )

        logger.debug(f"Stream finished - Stop reason: {final.stop_reason}, Content blocks: {len(final.content)}")
        yield FinishChunk(stop_reason=final.stop_reason, usage=usage)

    def _retry_delay(self, error: APIError, attempt: int) -> float | None:
        """Seconds to wait before retrying, or None if the error is not retryable."""
        status_code = getattr(error, "status_code", None)

        if status_code == 429:
            retry_after = 60
            response = getattr(error, "response", None)
            if response is not None and hasattr(response, "headers"):
                retry_after = int(response.headers.get("retry-after", 60))
            return float(retry_after) if retry_after < 120 else None

        # Connection errors carry no status code
        if status_code is None or status_code >= 500:
            return self.config.retry_delay * (2**attempt)

        return None

    def _message_text(self, message: AnthropicMessage) -> str:
        if isinstance(message.content, str):
            return message.content

        text_content = ""
        for item in message.content:
            if isinstance(item, TextBlock):
                text_content += item.text
            elif isinstance(item, ToolResultBlock):
                text_content += item.content
            elif isinstance(item, ToolUseBlock):
                text_content += item.name + json.dumps(item.input)
        return text_content

    def _estimate_tokens(self, messages: list[AnthropicMessage], system_prompt: str) -> int:
        """Estimate token count of a request for rate limiting."""
        text_content = system_prompt + "".join(self._message_text(message) for message in messages)
        return self.estimate_message_tokens(text_content)

    def estimate_message_tokens(self, message: str) -> int:
        """Estimate token count for a single message.

        Args:
            message: Message content

        Returns:
            Estimated token count
        """
        try:
            return len(self.tokenizer.encode(message)) if self.tokenizer else len(message) // 4
        except Exception:
            # Fallback: roughly 4 characters per token
            return len(message) // 4

    def validate_message_tokens(self, message: str) -> None:
        """Validate that a message doesn't exceed token limits.

        Raises:
            ValueError: If message exceeds token limit
        """
        token_count = self.estimate_message_tokens(message)
        if token_count > self.config.max_message_tokens:
            raise ValueError(
                f"Message exceeds token limit: {token_count} tokens > {self.config.max_message_tokens} limit"
            )

    def truncate_conversation(
        self, messages: list[AnthropicMessage], system_prompt: str, tools: list[AnthropicTool] | None = None
    ) -> list[AnthropicMessage]:
        """Truncate conversation from the beginning to fit within token limits.

        A truncated result always opens with a user message that is not made
        only of tool results, since those must follow the assistant message
        that requested them.

        Args:
            messages: Conversation messages
            system_prompt: System prompt
            tools: Available tools

        Returns:
            Truncated message list that fits within limits
        """
        if not messages:
            return messages

        available_tokens = self.config.max_conversation_tokens - self.config.token_headroom

        system_tokens = self.estimate_message_tokens(system_prompt)

        tool_tokens = 0
        if tools:
            tool_content = ""
            for tool in tools:
                tool_content += tool.name + tool.description + str(tool.input_schema)
            tool_tokens = self.estimate_message_tokens(tool_content)

        available_tokens -= system_tokens + tool_tokens

        truncated_messages: list[AnthropicMessage] = []
        current_tokens = 0

        for message in reversed(messages):
            message_tokens = self.estimate_message_tokens(self._message_text(message))

            if current_tokens + message_tokens <= available_tokens:
                truncated_messages.insert(0, message)
                current_tokens += message_tokens
            else:
                break

        while (
            truncated_messages
            and len(truncated_messages) < len(messages)
            and not _can_open_conversation(truncated_messages[0])
        ):
            truncated_messages.pop(0)

        if len(truncated_messages) < len(messages):
            logger.warning(
                f"Truncated conversation from {len(messages)} to {len(truncated_messages)} messages "
                f"to fit within {available_tokens} token limit"
            )

        return truncated_messages


def _can_open_conversation(message: AnthropicMessage) -> bool:
    if message.role != "user":
        return False
    if isinstance(message.content, str):
        return True
    return not all(isinstance(block, ToolResultBlock) for block in message.content)


_anthropic_client: AnthropicClient | None = None


def get_anthropic_client() -> AnthropicClient:
    """Get or create Anthropic client instance."""
    global _anthropic_client
    if _anthropic_client is None:
        _anthropic_client = AnthropicClient()
    return _anthropic_client
