"""Conversation management for in-memory storage."""

from datetime import UTC, datetime, timedelta

from cuid2 import cuid_wrapper

from repochat.services.conversation import Conversation
from repochat.services.llm import LLMService
from repochat.services.loop import LoopConfig
from repochat.tools.base import RepositoryScope
from repochat.tools.registry import ToolsRegistry, get_tools_registry
from repochat.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


class InMemoryConversationManager:
    """In-memory registry of repository-bound conversations."""

    def __init__(
        self,
        session_timeout_minutes: int = 60,
        llm_service: LLMService | None = None,
        tools_registry: ToolsRegistry | None = None,
        config: LoopConfig | None = None,
    ):
        """Initialize conversation manager.

        Args:
            session_timeout_minutes: Minutes of inactivity before a conversation expires
            llm_service: Service shared by all conversations
            tools_registry: Registry the per-conversation tool sets are bound from
            config: Loop configuration (defaults to environment settings)
        """
        self.conversations: dict[str, Conversation] = {}
        self.session_timeout = timedelta(minutes=session_timeout_minutes)
        self.llm_service = llm_service or LLMService()
        self.tools_registry = tools_registry or get_tools_registry()
        self.config = config or LoopConfig.from_env()

    def create_conversation(self, owner: str, repo: str) -> Conversation:
        """Create an isolated conversation bound to ``owner/repo``."""
        self._cleanup_expired_conversations()

        scope = RepositoryScope(owner=owner, repo=repo)
        conversation = Conversation(
            scope=scope,
            llm_service=self.llm_service,
            tools=self.tools_registry.get_llm_tools(scope),
            config=self.config,
            conversation_id=self._generate_conversation_id(),
        )
        self.conversations[conversation.id] = conversation
        logger.info(f"Created conversation {conversation.id} for {scope.full_name}")
        return conversation

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Get existing conversation by ID.

        Returns:
            Conversation if found and not expired, None otherwise
        """
        self._cleanup_expired_conversations()

        conversation = self.conversations.get(conversation_id)
        if conversation:
            conversation.update_activity()
        return conversation

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation, cancelling any turn in flight.

        Returns:
            True if the conversation was deleted, False if not found
        """
        conversation = self.conversations.pop(conversation_id, None)
        if conversation is None:
            return False
        conversation.cancel()
        return True

    def _generate_conversation_id(self) -> str:
        """Generate a new CUID-based conversation ID."""
        return cuid()

    def _cleanup_expired_conversations(self) -> None:
        """Remove idle conversations; a running turn keeps its conversation alive."""
        current_time = datetime.now(UTC)
        expired = [
            conversation_id
            for conversation_id, conversation in self.conversations.items()
            if not conversation.running and current_time - conversation.last_activity > self.session_timeout
        ]

        for conversation_id in expired:
            logger.info(f"Expiring idle conversation {conversation_id}")
            del self.conversations[conversation_id]

    def get_conversation_count(self) -> int:
        """Get current number of active conversations."""
        self._cleanup_expired_conversations()
        return len(self.conversations)


conversation_manager = InMemoryConversationManager()
