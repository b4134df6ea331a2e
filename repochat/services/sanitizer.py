"""Repair a message history before it is sent to the model."""

from repochat.models.messages import Message, ToolInvocationPart, ToolState
from repochat.utils.logging import get_logger

logger = get_logger(__name__)


def _is_streaming_invocation(part) -> bool:
    return isinstance(part, ToolInvocationPart) and part.state == ToolState.INPUT_STREAMING


def sanitize_messages(messages: list[Message]) -> list[Message]:
    """Return a copy of the history that is safe to submit to the model.

    Walking back from the most recent message: trailing tool invocations still
    in ``input-streaming`` are stripped (the model was cut off mid-call), and
    a message left without parts is dropped, which makes the message before
    it the most recent one. The first message that keeps any parts ends the
    walk; everything before it passes through as the same objects. The
    caller's list and messages are never mutated.
    """
    sanitized = list(messages)

    while sanitized:
        last = sanitized[-1]
        parts = list(last.parts)
        while parts and _is_streaming_invocation(parts[-1]):
            dropped = parts.pop()
            logger.debug(f"Stripping incomplete tool call {dropped.tool_call_id} ({dropped.tool_name})")

        if not parts:
            logger.debug(f"Dropping empty message {last.id}")
            sanitized.pop()
            continue

        if len(parts) != len(last.parts):
            sanitized[-1] = last.model_copy(update={"parts": parts})
        break

    return sanitized
