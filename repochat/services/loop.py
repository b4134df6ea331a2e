"""Conversation loop: rounds of model generation and tool resolution."""

import os
from dataclasses import dataclass, field

from repochat.models.events import ErrorEvent, FinishReason, LoopState, StepFinishEvent
from repochat.models.llm import LLMTool, LLMUsage
from repochat.models.messages import Message, iter_tool_invocations
from repochat.services.llm import LLMService
from repochat.services.resolver import ToolInvocationResolver
from repochat.services.sanitizer import sanitize_messages
from repochat.services.stream import StreamPublisher
from repochat.utils.logging import get_logger

logger = get_logger(__name__)


def _parse_tool_names(value: str) -> frozenset[str]:
    return frozenset(name.strip() for name in value.split(",") if name.strip())


@dataclass
class LoopConfig:
    """Configuration for the conversation loop."""

    max_rounds: int = 10
    tools_requiring_confirmation: frozenset[str] = frozenset()

    @classmethod
    def from_env(cls) -> "LoopConfig":
        return cls(
            max_rounds=int(os.getenv("REPOCHAT_MAX_ROUNDS", "10")),
            tools_requiring_confirmation=_parse_tool_names(os.getenv("REPOCHAT_CONFIRM_TOOLS", "")),
        )


@dataclass
class LoopResult:
    """How a run of the loop ended."""

    state: LoopState
    finish_reason: FinishReason
    rounds: int
    usage: LLMUsage = field(default_factory=LLMUsage)
    pending_tool_call_ids: list[str] = field(default_factory=list)
    error: str | None = None


class ConversationLoop:
    """State machine driving one logical assistant turn.

    ``Idle -> Generating -> (ToolsPending | Done)``. Each round calls the model
    once and resolves the tool calls it produced; rounds continue while every
    call resolves and the round budget allows. A call awaiting approval
    suspends the loop in ``ToolsPending``; running it again after the decision
    arrives continues the same turn and the same round count.
    """

    def __init__(
        self,
        llm_service: LLMService,
        resolver: ToolInvocationResolver,
        system_prompt: str,
        tools: dict[str, LLMTool],
        config: LoopConfig | None = None,
    ):
        self.llm_service = llm_service
        self.resolver = resolver
        self.system_prompt = system_prompt
        self.tools = tools
        self.config = config or LoopConfig()
        self.state = LoopState.IDLE

    def reset(self) -> None:
        self.state = LoopState.IDLE
        self.resolver.reset()

    async def run(self, history: list[Message], publisher: StreamPublisher, rounds_used: int = 0) -> LoopResult:
        """Run the turn until it finishes, fails or suspends.

        Args:
            history: Durable conversation history; new output is appended to it,
                but only a sanitized copy is sent to the model
            publisher: Stream for this turn's events
            rounds_used: Rounds already spent by this turn before it suspended

        Returns:
            Final state, finish reason and the total rounds spent by the turn
        """
        logger.info(f"Starting turn with {len(history)} messages, {rounds_used}/{self.config.max_rounds} rounds used")
        usage = LLMUsage()
        rounds = rounds_used

        # Carry-over: invocations left unresolved by an earlier round
        self.state = LoopState.TOOLS_PENDING
        pending = await self.resolver.resolve(iter_tool_invocations(history), publisher, rounds)
        if pending:
            return self._suspend(pending, rounds, usage)

        while rounds < self.config.max_rounds:
            rounds += 1
            self.state = LoopState.GENERATING
            logger.info(f"Round {rounds}/{self.config.max_rounds}")

            assistant, created = self._assistant_message(history)
            try:
                generation = await self.llm_service.generate(
                    sanitize_messages(history), self.system_prompt, self.tools, assistant, publisher, rounds
                )
            except Exception as e:
                logger.error(f"Model generation failed in round {rounds}: {e}", exc_info=True)
                if created and not assistant.parts:
                    history.remove(assistant)
                publisher.publish(ErrorEvent(round=rounds, message=str(e) or e.__class__.__name__))
                self.state = LoopState.IDLE
                return LoopResult(
                    state=self.state,
                    finish_reason=FinishReason.ERROR,
                    rounds=rounds,
                    usage=usage,
                    error=str(e),
                )

            usage.add(generation.usage)

            if not generation.invocations:
                if created and not assistant.parts:
                    history.remove(assistant)
                publisher.publish(StepFinishEvent(round=rounds, stop_reason=generation.stop_reason))
                self.state = LoopState.DONE
                logger.info(f"Turn finished after {rounds} rounds")
                return LoopResult(state=self.state, finish_reason=FinishReason.STOP, rounds=rounds, usage=usage)

            self.state = LoopState.TOOLS_PENDING
            pending = await self.resolver.resolve(generation.invocations, publisher, rounds)
            publisher.publish(StepFinishEvent(round=rounds, stop_reason=generation.stop_reason))

            if pending and rounds < self.config.max_rounds:
                return self._suspend(pending, rounds, usage)

        logger.warning(f"Turn reached max rounds ({self.config.max_rounds})")
        self.state = LoopState.DONE
        return LoopResult(
            state=self.state,
            finish_reason=FinishReason.MAX_ROUNDS,
            rounds=rounds,
            usage=usage,
            pending_tool_call_ids=[part.tool_call_id for part in self.resolver.awaiting_decision(history)],
        )

    def _suspend(self, pending, rounds: int, usage: LLMUsage) -> LoopResult:
        self.state = LoopState.TOOLS_PENDING
        logger.info(f"Turn suspended awaiting approval after {rounds} rounds")
        return LoopResult(
            state=self.state,
            finish_reason=FinishReason.AWAITING_APPROVAL,
            rounds=rounds,
            usage=usage,
            pending_tool_call_ids=[part.tool_call_id for part in pending],
        )

    def _assistant_message(self, history: list[Message]) -> tuple[Message, bool]:
        """The message receiving this round's output, and whether it is new."""
        if history and history[-1].role == "assistant":
            return history[-1], False

        assistant = Message(role="assistant")
        history.append(assistant)
        return assistant, True
