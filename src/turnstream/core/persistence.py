"""
Persistence collaborator for users, conversations, messages and custom personas.

The turn pipeline only depends on the `ConversationStore` and `SessionStore`
protocols. `InMemoryStore` and `InMemorySessionStore` are process-local
implementations used by the bundled server and the test suite.
"""

import asyncio
from typing import Protocol

from ..models.entities import Conversation, CustomPersona, Message, Reaction, User
from ..models.enums import Plan, Role
from ..utils.logging import get_logger


class ConversationStore(Protocol):
    """Storage operations consumed by the orchestrator and message service."""

    async def get_user(self, user_id: str) -> User | None: ...

    async def upsert_user(self, user: User) -> User: ...

    async def plan_of(self, user_id: str) -> Plan: ...

    async def update_user_memory(self, user_id: str, memory: list[str]) -> User: ...

    async def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    async def create_conversation(self, conversation: Conversation) -> Conversation: ...

    async def get_conversations(self, user_id: str) -> list[Conversation]: ...

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool: ...

    async def get_messages(self, conversation_id: str) -> list[Message]: ...

    async def get_message(self, message_id: str) -> Message | None: ...

    async def create_message(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        image_url: str | None = None,
    ) -> Message: ...

    async def update_message_content(self, message_id: str, content: str) -> Message: ...

    async def delete_message(self, message_id: str) -> None: ...

    async def delete_messages_after(self, message_id: str, conversation_id: str) -> int: ...

    async def pin_message(self, message_id: str, is_pinned: bool) -> Message: ...

    async def toggle_reaction(self, message_id: str, emoji: str, user_id: str) -> Message: ...

    async def get_custom_persona(self, persona_id: str, user_id: str) -> CustomPersona | None: ...

    async def create_custom_persona(self, persona: CustomPersona) -> CustomPersona: ...

    async def get_custom_personas(self, user_id: str) -> list[CustomPersona]: ...

    async def update_custom_persona(
        self, persona_id: str, user_id: str, changes: dict
    ) -> CustomPersona | None: ...

    async def delete_custom_persona(self, persona_id: str, user_id: str) -> bool: ...


class SessionStore(Protocol):
    """Per-session state kept by the session layer (anonymous rate counter)."""

    async def get_message_count(self, session_id: str) -> int: ...

    async def set_message_count(self, session_id: str, count: int) -> None: ...


class InMemoryStore:
    """
    Process-local ConversationStore.

    Messages of a conversation are kept in creation order; that order is
    what `delete_messages_after` and history windows rely on.
    """

    def __init__(self):
        self.logger = get_logger(__name__)
        self._users: dict[str, User] = {}
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, Message] = {}
        self._conversation_messages: dict[str, list[str]] = {}
        self._custom_personas: dict[str, CustomPersona] = {}
        self._lock = asyncio.Lock()

    # Users

    async def get_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def upsert_user(self, user: User) -> User:
        self._users[user.id] = user
        return user

    async def plan_of(self, user_id: str) -> Plan:
        user = self._users.get(user_id)
        return user.plan if user else Plan.FREE

    async def update_user_memory(self, user_id: str, memory: list[str]) -> User:
        """Replace the user's memory facts; an unknown user is created on the free plan."""
        user = self._users.get(user_id) or User(id=user_id)
        updated = user.model_copy(update={"memory": list(memory)})
        self._users[user_id] = updated
        self.logger.info("user_memory_updated", user_id=user_id, facts=len(memory))
        return updated

    # Conversations

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        async with self._lock:
            self._conversations[conversation.id] = conversation
            self._conversation_messages.setdefault(conversation.id, [])

        self.logger.info(
            "conversation_created",
            conversation_id=conversation.id,
            persona=conversation.persona,
            owned=conversation.user_id is not None,
        )
        return conversation

    async def get_conversations(self, user_id: str) -> list[Conversation]:
        """Conversations owned by `user_id`, newest first."""
        return [c for c in reversed(self._conversations.values()) if c.user_id == user_id]

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        """Delete an owned conversation and its messages; False when nothing matched."""
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None or conversation.user_id != user_id:
                return False
            del self._conversations[conversation_id]
            for message_id in self._conversation_messages.pop(conversation_id, []):
                self._messages.pop(message_id, None)

        self.logger.info("conversation_deleted", conversation_id=conversation_id)
        return True

    # Messages

    async def get_messages(self, conversation_id: str) -> list[Message]:
        ids = self._conversation_messages.get(conversation_id, [])
        return [self._messages[message_id] for message_id in ids]

    async def get_message(self, message_id: str) -> Message | None:
        return self._messages.get(message_id)

    async def create_message(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        image_url: str | None = None,
    ) -> Message:
        message = Message(
            conversation_id=conversation_id,
            role=role,
            content=content,
            image_url=image_url,
        )
        async with self._lock:
            self._messages[message.id] = message
            self._conversation_messages.setdefault(conversation_id, []).append(message.id)

        self.logger.debug(
            "message_created",
            conversation_id=conversation_id,
            message_id=message.id,
            role=str(role),
        )
        return message

    async def update_message_content(self, message_id: str, content: str) -> Message:
        message = self._require_message(message_id)
        updated = message.model_copy(update={"content": content})
        self._messages[message_id] = updated
        return updated

    async def delete_message(self, message_id: str) -> None:
        async with self._lock:
            message = self._messages.pop(message_id, None)
            if message is not None:
                ids = self._conversation_messages.get(message.conversation_id, [])
                if message_id in ids:
                    ids.remove(message_id)

    async def delete_messages_after(self, message_id: str, conversation_id: str) -> int:
        """
        Delete every message created strictly after `message_id`.

        Returns:
            Number of deleted messages
        """
        async with self._lock:
            ids = self._conversation_messages.get(conversation_id, [])
            if message_id not in ids:
                return 0

            position = ids.index(message_id)
            doomed = ids[position + 1:]
            del ids[position + 1:]
            for doomed_id in doomed:
                self._messages.pop(doomed_id, None)

        self.logger.info(
            "messages_truncated",
            conversation_id=conversation_id,
            after_message_id=message_id,
            deleted=len(doomed),
        )
        return len(doomed)

    async def pin_message(self, message_id: str, is_pinned: bool) -> Message:
        message = self._require_message(message_id)
        updated = message.model_copy(update={"is_pinned": is_pinned})
        self._messages[message_id] = updated
        return updated

    async def toggle_reaction(self, message_id: str, emoji: str, user_id: str) -> Message:
        """Add the reaction, or remove it when the same user already reacted with that emoji."""
        message = self._require_message(message_id)
        reactions = list(message.reactions)

        existing = next(
            (i for i, r in enumerate(reactions) if r.emoji == emoji and r.user_id == user_id),
            None,
        )
        if existing is None:
            reactions.append(Reaction(emoji=emoji, user_id=user_id))
        else:
            reactions.pop(existing)

        updated = message.model_copy(update={"reactions": reactions})
        self._messages[message_id] = updated
        return updated

    # Custom personas

    async def get_custom_persona(self, persona_id: str, user_id: str) -> CustomPersona | None:
        persona = self._custom_personas.get(persona_id)
        if persona is None or persona.user_id != user_id:
            return None
        return persona

    async def create_custom_persona(self, persona: CustomPersona) -> CustomPersona:
        self._custom_personas[persona.id] = persona
        return persona

    async def get_custom_personas(self, user_id: str) -> list[CustomPersona]:
        return [p for p in reversed(self._custom_personas.values()) if p.user_id == user_id]

    async def update_custom_persona(
        self, persona_id: str, user_id: str, changes: dict
    ) -> CustomPersona | None:
        persona = await self.get_custom_persona(persona_id, user_id)
        if persona is None:
            return None
        updated = persona.model_copy(update=changes)
        self._custom_personas[persona_id] = updated
        return updated

    async def delete_custom_persona(self, persona_id: str, user_id: str) -> bool:
        if await self.get_custom_persona(persona_id, user_id) is None:
            return False
        del self._custom_personas[persona_id]
        return True

    def _require_message(self, message_id: str) -> Message:
        message = self._messages.get(message_id)
        if message is None:
            raise KeyError(f"Message '{message_id}' not found")
        return message


class InMemorySessionStore:
    """
    Process-local SessionStore.

    Reads and writes are independent operations; callers doing
    read-then-increment are not serialized against each other.
    """

    def __init__(self):
        self._counts: dict[str, int] = {}

    async def get_message_count(self, session_id: str) -> int:
        return self._counts.get(session_id, 0)

    async def set_message_count(self, session_id: str, count: int) -> None:
        self._counts[session_id] = count
