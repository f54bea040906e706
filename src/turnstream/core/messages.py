"""
Message and conversation operations outside the turn pipeline: listing,
edit, pin, react, delete.

All of them apply the conversation ownership rule: a conversation with an
owner is only accessible to that owner.
"""

from ..exceptions import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from ..models.contracts import Caller
from ..models.entities import Conversation, Message
from ..models.enums import Role
from ..utils.logging import get_logger
from .persistence import ConversationStore

logger = get_logger(__name__)

ANONYMOUS_REACTOR = "anonymous"


class MessageService:
    def __init__(self, store: ConversationStore):
        self.store = store

    async def create_conversation(
        self,
        caller: Caller,
        title: str | None = None,
        persona: str | None = None,
    ) -> Conversation:
        conversation = Conversation(user_id=caller.user_id)
        if title:
            conversation.title = title
        if persona:
            conversation.persona = persona
        return await self.store.create_conversation(conversation)

    async def list_conversations(self, caller: Caller) -> list[Conversation]:
        """The caller's conversations, newest first; anonymous callers have none listed."""
        if not caller.is_authenticated:
            return []
        return await self.store.get_conversations(caller.user_id)

    async def delete_conversation(self, conversation_id: str, caller: Caller) -> None:
        """
        Delete a conversation with all of its messages.

        Raises:
            AuthenticationError: Caller is anonymous
            NotFoundError: Conversation does not exist
            AuthorizationError: Caller does not own the conversation
        """
        if not caller.is_authenticated:
            raise AuthenticationError()

        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        if conversation.user_id != caller.user_id:
            raise AuthorizationError(details={"conversation_id": conversation_id})

        await self.store.delete_conversation(conversation_id, caller.user_id)

    async def list_messages(self, conversation_id: str, caller: Caller) -> list[Message]:
        """Messages of a conversation in creation order."""
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        if conversation.user_id and conversation.user_id != caller.user_id:
            raise AuthorizationError(details={"conversation_id": conversation_id})
        return await self.store.get_messages(conversation_id)

    async def edit(self, message_id: str, content: str | None, caller: Caller) -> Message:
        """
        Replace a user message's content and drop everything after it.

        Raises:
            ValidationError: Empty content or not a user message
            NotFoundError: Message or conversation missing
            AuthorizationError: Caller does not own the conversation
        """
        if not content or not content.strip():
            raise ValidationError("Content is required")

        message = await self._require_message(message_id)
        if message.role != Role.USER:
            raise ValidationError("Can only edit user messages")
        await self._check_owner(message, caller, "Unauthorized to edit this message")

        updated = await self.store.update_message_content(message_id, content.strip())
        deleted = await self.store.delete_messages_after(message_id, message.conversation_id)
        logger.info("message_edited", message_id=message_id, deleted_after=deleted)
        return updated

    async def pin(self, message_id: str, is_pinned: bool, caller: Caller) -> Message:
        message = await self._require_message(message_id)
        await self._check_owner(message, caller, "Unauthorized to pin this message")
        return await self.store.pin_message(message_id, is_pinned)

    async def react(self, message_id: str, emoji: str | None, caller: Caller) -> Message:
        """Toggle a reaction; anonymous callers react as "anonymous"."""
        if not emoji:
            raise ValidationError("Emoji is required")

        message = await self._require_message(message_id)
        await self._check_owner(message, caller, "Unauthorized to react to this message")
        return await self.store.toggle_reaction(
            message_id, emoji, caller.user_id or ANONYMOUS_REACTOR
        )

    async def delete(self, message_id: str, caller: Caller) -> None:
        message = await self._require_message(message_id)
        await self._check_owner(message, caller, "Unauthorized to delete this message")
        await self.store.delete_message(message_id)
        logger.info("message_deleted", message_id=message_id)

    async def _require_message(self, message_id: str) -> Message:
        message = await self.store.get_message(message_id)
        if message is None:
            raise NotFoundError("Message", message_id)
        return message

    async def _check_owner(self, message: Message, caller: Caller, denial: str) -> None:
        conversation = await self.store.get_conversation(message.conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", message.conversation_id)
        if conversation.user_id and conversation.user_id != caller.user_id:
            raise AuthorizationError(denial, details={"message_id": message.id})
