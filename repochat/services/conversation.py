"""Conversation actor: owns one repository-bound history and runs its turns."""

import asyncio
from datetime import UTC, datetime

from repochat.models.events import ErrorEvent, FinishReason, LoopState, TurnCompleteEvent
from repochat.models.llm import LLMTool
from repochat.models.messages import Approval, Message, new_id
from repochat.services.llm import LLMService
from repochat.services.loop import ConversationLoop, LoopConfig, LoopResult
from repochat.services.resolver import ToolInvocationResolver
from repochat.services.stream import StreamPublisher
from repochat.tools.base import RepositoryScope
from repochat.utils.logging import get_logger

logger = get_logger(__name__)

CLEAR_COMMAND = "clear"


def build_system_prompt(owner: str, repo: str) -> str:
    """System prompt scoping the assistant to a single repository."""
    return f"""You are a technical assistant specialized in analyzing the GitHub repository: {owner}/{repo}

IMPORTANT: You can ONLY answer questions about the repository {owner}/{repo}. If a user asks about a different repository, politely remind them that you're focused on {owner}/{repo}.

When analyzing this repository:
1. Start by getting repository info to understand the project context
2. Explore the codebase structure before diving into specific files
3. Search for relevant code patterns when looking for specific functionality
4. Check the README for project overview and documentation
5. Use multiple tools when needed for comprehensive answers

Guidelines for responses:
- Always use tools to gather information before responding
- Include code excerpts with file paths when useful
- Keep answers concise and focused on the question
- If information isn't in the repository, say so clearly
- Never guess or fabricate code, functions, or files
- Explain how code fits in the overall project structure

Remember: every tool operates on {owner}/{repo}. You do not need to pass owner or repo."""


def is_clear_command(text: str) -> bool:
    return text.strip() == CLEAR_COMMAND


class ConversationBusyError(Exception):
    """Raised when input arrives while a turn is still in flight."""


class Conversation:
    """A conversation bound to one repository.

    All history mutation happens in this object's single control flow: a
    user message starts a turn as a background task, an approval decision
    may resume a suspended one. Input that would race an in-flight turn is
    rejected with ``ConversationBusyError``.
    """

    def __init__(
        self,
        scope: RepositoryScope,
        llm_service: LLMService,
        tools: dict[str, LLMTool],
        config: LoopConfig | None = None,
        conversation_id: str | None = None,
    ):
        self.id = conversation_id or new_id()
        self.scope = scope
        self.llm_service = llm_service
        self.config = config or LoopConfig()
        self.messages: list[Message] = []
        self.created_at = datetime.now(UTC)
        self.last_activity = self.created_at

        self.system_prompt = build_system_prompt(scope.owner, scope.repo)
        self.resolver = ToolInvocationResolver(tools, self.config.tools_requiring_confirmation)
        self.loop = ConversationLoop(llm_service, self.resolver, self.system_prompt, tools, self.config)

        self.publisher: StreamPublisher | None = None
        self.last_result: LoopResult | None = None
        self._task: asyncio.Task | None = None
        self._rounds_used = 0

    @property
    def state(self) -> LoopState:
        return self.loop.state

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending_tool_call_ids(self) -> list[str]:
        return [part.tool_call_id for part in self.resolver.awaiting_decision(self.messages)]

    def update_activity(self) -> None:
        self.last_activity = datetime.now(UTC)

    def submit(self, text: str) -> StreamPublisher | None:
        """Handle user input.

        Returns:
            The new turn's stream, or None if the input was the clear command

        Raises:
            ConversationBusyError: If a turn is generating or awaiting approval
            ValueError: If the message exceeds the token limit
        """
        self.update_activity()

        if is_clear_command(text):
            self.clear()
            return None

        if self.running or self.state == LoopState.TOOLS_PENDING:
            raise ConversationBusyError(f"Conversation {self.id} has a turn in progress ({self.state})")

        self.llm_service.validate_user_message(text)

        self.messages.append(Message.user(text))
        self._rounds_used = 0
        logger.info(f"Conversation {self.id}: new turn for {self.scope.full_name}: {text[:50]}...")
        return self._start_turn()

    def clear(self) -> None:
        """Discard the whole history without calling the model."""
        if self.running:
            raise ConversationBusyError(f"Conversation {self.id} is generating")

        self.messages.clear()
        self.loop.reset()
        self._rounds_used = 0
        self.last_result = None
        logger.info(f"Conversation {self.id}: history cleared")

    def record_decision(self, tool_call_id: str, decision: Approval) -> tuple[bool, bool]:
        """Deliver an approval decision and resume the turn if it was the last one.

        Returns:
            Whether the decision was applied and whether the turn resumed
        """
        self.update_activity()
        applied = self.resolver.record_decision(self.messages, tool_call_id, decision)
        resumed = applied and self.resume_if_ready() is not None
        return applied, resumed

    def resume_if_ready(self) -> StreamPublisher | None:
        """Resume a suspended turn once no invocation awaits a decision."""
        if self.running or self.state != LoopState.TOOLS_PENDING:
            return None
        if self.resolver.awaiting_decision(self.messages):
            return None

        logger.info(f"Conversation {self.id}: resuming turn after {self._rounds_used} rounds")
        return self._start_turn()

    def _start_turn(self) -> StreamPublisher:
        publisher = StreamPublisher()
        self.publisher = publisher
        self._task = asyncio.create_task(self.run_turn(publisher))
        return publisher

    async def run_turn(self, publisher: StreamPublisher) -> LoopResult:
        """Run the loop to its next stopping point and complete the stream."""
        try:
            try:
                result = await self.loop.run(self.messages, publisher, self._rounds_used)
            except asyncio.CancelledError:
                logger.info(f"Conversation {self.id}: turn cancelled")
                self.loop.state = LoopState.IDLE
                publisher.publish(
                    TurnCompleteEvent(
                        finish_reason=FinishReason.ERROR,
                        state=self.loop.state,
                        rounds=self._rounds_used,
                    )
                )
                raise
            except Exception as e:
                logger.error(f"Conversation {self.id}: turn failed: {e}", exc_info=True)
                self.loop.state = LoopState.IDLE
                publisher.publish(ErrorEvent(message=str(e) or e.__class__.__name__))
                result = LoopResult(
                    state=self.loop.state,
                    finish_reason=FinishReason.ERROR,
                    rounds=self._rounds_used,
                    error=str(e),
                )

            self._rounds_used = result.rounds if result.state == LoopState.TOOLS_PENDING else 0
            self.last_result = result
            self.update_activity()

            if result.usage.input_tokens:
                logger.info(
                    f"Token usage - Input: {result.usage.input_tokens}, "
                    f"Output: {result.usage.output_tokens}, "
                    f"Cache hits: {result.usage.cache_read_input_tokens}"
                )

            publisher.publish(
                TurnCompleteEvent(
                    round=result.rounds,
                    finish_reason=result.finish_reason,
                    state=result.state,
                    rounds=result.rounds,
                    pending_tool_call_ids=result.pending_tool_call_ids,
                )
            )
            return result
        finally:
            publisher.close()

    async def wait(self) -> LoopResult | None:
        """Wait for the in-flight turn, if any."""
        if self._task is None:
            return None
        return await self._task

    def cancel(self) -> None:
        if self.running:
            self._task.cancel()
