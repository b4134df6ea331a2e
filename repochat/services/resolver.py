"""Resolution of tool invocations: execution, approval gating and results."""

import asyncio
from collections.abc import Iterable

from pydantic import ValidationError

from repochat.models.events import ToolResultEvent
from repochat.models.llm import LLMTool
from repochat.models.messages import (
    DENIED_OUTPUT,
    Approval,
    ApprovalState,
    Message,
    ToolInvocationPart,
    ToolState,
    find_tool_invocation,
    iter_tool_invocations,
)
from repochat.services.stream import StreamPublisher
from repochat.utils.logging import get_logger

logger = get_logger(__name__)


class ToolInvocationResolver:
    """Executes ready tool calls and parks the ones waiting on a human.

    Tools named in ``requires_confirmation`` are only executed after an
    ``Approval.YES`` decision for their call id; ``Approval.NO`` resolves
    them to the declined output without running anything. Every other tool
    runs as soon as its input is available. Failures never propagate: they
    become ``output-error`` parts the model can read.
    """

    def __init__(self, tools: dict[str, LLMTool], requires_confirmation: Iterable[str] = ()):
        self.tools = tools
        self.requires_confirmation = frozenset(requires_confirmation)
        self._decisions: dict[str, Approval] = {}

    def needs_confirmation(self, tool_name: str) -> bool:
        return tool_name in self.requires_confirmation

    def reset(self) -> None:
        self._decisions.clear()

    def record_decision(self, messages: list[Message], tool_call_id: str, decision: Approval) -> bool:
        """Apply an approval decision to the matching invocation.

        Unknown ids, calls that do not need confirmation and repeated
        decisions are ignored.

        Returns:
            True if the decision changed the invocation's state
        """
        part = find_tool_invocation(messages, tool_call_id)
        if part is None or part.state == ToolState.INPUT_STREAMING:
            logger.warning(f"Ignoring decision for unknown tool call {tool_call_id}")
            return False

        if not self.needs_confirmation(part.tool_name):
            logger.warning(f"Ignoring decision for {tool_call_id}: {part.tool_name} does not require confirmation")
            return False

        if part.state != ToolState.INPUT_AVAILABLE or tool_call_id in self._decisions:
            logger.debug(f"Decision for {tool_call_id} already applied")
            return False

        self._decisions[tool_call_id] = decision
        part.approval = ApprovalState.APPROVED if decision == Approval.YES else ApprovalState.DENIED
        logger.info(f"Recorded decision {decision} for {part.tool_name} ({tool_call_id})")
        return True

    def awaiting_decision(self, messages: list[Message]) -> list[ToolInvocationPart]:
        """Invocations parked until a human approves or denies them."""
        return [
            part
            for part in iter_tool_invocations(messages)
            if part.state == ToolState.INPUT_AVAILABLE and part.approval == ApprovalState.PENDING
        ]

    async def resolve(
        self,
        parts: Iterable[ToolInvocationPart],
        publisher: StreamPublisher | None = None,
        round_number: int = 0,
    ) -> list[ToolInvocationPart]:
        """Resolve every invocation whose input is available.

        Ready calls run concurrently and are joined before returning; results
        are written into their own parts and published in part order. A
        decision delivered while tools are running is applied before this
        returns, so only calls with no decision yet come back as pending.

        Returns:
            Invocations still awaiting an approval decision
        """
        candidates = [part for part in parts if part.state == ToolState.INPUT_AVAILABLE]

        waiting = candidates
        while True:
            ready, waiting = self._triage(waiting)
            if ready:
                logger.info(f"Executing {len(ready)} tool calls: {[part.tool_name for part in ready]}")
                await asyncio.gather(*(self._execute(part) for part in ready))

            if not any(part.tool_call_id in self._decisions for part in waiting):
                break

        if publisher is not None:
            for part in candidates:
                if part.state.is_final:
                    publisher.publish(
                        ToolResultEvent(
                            round=round_number,
                            tool_call_id=part.tool_call_id,
                            tool_name=part.tool_name,
                            state=part.state,
                            output=part.output,
                            error_text=part.error_text,
                        )
                    )

        if waiting:
            logger.info(f"{len(waiting)} tool calls awaiting approval: {[part.tool_call_id for part in waiting]}")

        return waiting

    def _triage(self, parts: list[ToolInvocationPart]) -> tuple[list[ToolInvocationPart], list[ToolInvocationPart]]:
        """Split parts into calls to execute now and calls parked for a decision.

        Declined calls are resolved in place and appear in neither list.
        """
        ready: list[ToolInvocationPart] = []
        waiting: list[ToolInvocationPart] = []

        for part in parts:
            if not self.needs_confirmation(part.tool_name):
                ready.append(part)
                continue

            decision = self._decisions.get(part.tool_call_id)
            if decision is None:
                part.approval = ApprovalState.PENDING
                waiting.append(part)
            elif decision == Approval.YES:
                part.approval = ApprovalState.APPROVED
                ready.append(part)
            else:
                part.approval = ApprovalState.DENIED
                part.set_output(DENIED_OUTPUT)
                logger.info(f"User declined {part.tool_name} ({part.tool_call_id})")

        return ready, waiting

    async def _execute(self, part: ToolInvocationPart) -> None:
        tool = self.tools.get(part.tool_name)
        if tool is None:
            logger.warning(f"Unknown tool requested: {part.tool_name}")
            part.set_error(f"Error: Unknown tool {part.tool_name}")
            return

        logger.debug(f"Executing tool: {part.tool_name} with input: {part.input}")
        try:
            result = await tool.callable(part.input)
        except ValidationError as e:
            logger.warning(f"Tool {part.tool_name} received invalid input: {e}")
            part.set_error(f"Error: Invalid input for {part.tool_name}: {e}")
        except Exception as e:
            logger.error(f"Tool {part.tool_name} failed: {e}")
            part.set_error(f"Error: {e!s}")
        else:
            logger.debug(f"Tool {part.tool_name} succeeded: {str(result)[:100]}...")
            part.set_output(result)
