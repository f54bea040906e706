"""
Context Builder: assembles the instruction sequence for one model call.

Output order is fixed: one system directive, then the most recent stored
messages oldest first, then the new user turn.
"""

import asyncio
from typing import Any

from .. import catalog
from ..models.contracts import ConversationContext
from ..models.entities import Conversation, Message
from ..models.enums import Role
from ..utils.logging import get_logger
from .persistence import ConversationStore

logger = get_logger(__name__)

IMAGE_GUIDANCE = (
    "\n\nIMAGE ANALYSIS INSTRUCTIONS:\n"
    "- Carefully examine all text, equations, diagrams, and mathematical notation in the image\n"
    "- For homework problems: Provide step-by-step solutions with clear explanations\n"
    "- For math: Show all work, explain each step, and box/highlight the final answer\n"
    "- For diagrams/graphs: Describe what you see and explain the concepts\n"
    "- For handwritten work: Read carefully and help correct any errors\n"
    "- Be thorough and educational - help the student understand the concept, "
    "not just get the answer"
)

MEMORY_HEADER = "\n\nIMPORTANT - User Context (remember these facts about the user):\n"


class ContextBuilder:
    """
    Builds model input from the conversation snapshot.

    Example:
        builder = ContextBuilder(store, history_window=20)
        messages = await builder.assemble(conversation, history, new_turn, user_id)
    """

    def __init__(
        self,
        store: ConversationStore,
        history_window: int = 20,
        tool_instructions: str | None = None,
    ):
        self.store = store
        self.history_window = history_window
        self.tool_instructions = tool_instructions

    async def resolve_directive(self, persona_id: str | None, user_id: str | None) -> str:
        """
        System prompt text for a persona id.

        Custom personas are only resolved for their authenticated owner; in
        every other case the default persona is used.
        """
        persona_id = persona_id or catalog.DEFAULT_PERSONA_ID
        if not catalog.is_custom_persona(persona_id):
            return catalog.get_persona_system_prompt(persona_id)

        if user_id is None:
            logger.info("custom_persona_anonymous_fallback", persona=persona_id)
            return catalog.get_persona_system_prompt(catalog.DEFAULT_PERSONA_ID)

        custom = await self.store.get_custom_persona(catalog.custom_persona_key(persona_id), user_id)
        if custom is None:
            logger.info("custom_persona_missing", persona=persona_id)
            return catalog.get_persona_system_prompt(catalog.DEFAULT_PERSONA_ID)
        return custom.system_prompt

    async def snapshot(
        self,
        conversation: Conversation,
        history: list[Message],
        user_id: str | None,
    ) -> ConversationContext:
        """Read-only view of the conversation: window of prior messages and memory facts."""
        memory: list[str] = []
        if user_id is not None:
            user = await self.store.get_user(user_id)
            if user is not None:
                memory = list(user.memory)

        return ConversationContext(
            conversation_id=conversation.id,
            persona=conversation.persona or catalog.DEFAULT_PERSONA_ID,
            owner_id=conversation.user_id,
            history_window=tuple(history[-self.history_window:]),
            memory_facts=tuple(memory),
        )

    def build(
        self,
        context: ConversationContext,
        directive: str,
        new_turn: Message,
    ) -> list[dict[str, Any]]:
        """
        Produce the ordered message list for the upstream call.

        The new turn is always last and is never duplicated from history.
        """
        system_prompt = directive
        if context.memory_facts:
            system_prompt += MEMORY_HEADER + "\n".join(f"- {fact}" for fact in context.memory_facts)
        if new_turn.image_url:
            system_prompt += IMAGE_GUIDANCE
        if self.tool_instructions:
            system_prompt += f"\n\n{self.tool_instructions}"

        messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        messages.extend(
            render_message(message)
            for message in context.history_window
            if message.id != new_turn.id
        )
        messages.append(render_message(new_turn))
        return messages

    async def assemble(
        self,
        conversation: Conversation,
        history: list[Message],
        new_turn: Message,
        user_id: str | None,
    ) -> list[dict[str, Any]]:
        """Resolve the directive and snapshot concurrently, then build."""
        directive, context = await asyncio.gather(
            self.resolve_directive(conversation.persona, user_id),
            self.snapshot(conversation, history, user_id),
        )
        return self.build(context, directive, new_turn)


def render_message(message: Message) -> dict[str, Any]:
    """User messages with an image become multipart; everything else is plain text."""
    if message.role == Role.USER and message.image_url:
        return {
            "role": "user",
            "content": [
                {"type": "text", "text": message.content},
                {"type": "image_url", "image_url": {"url": message.image_url, "detail": "high"}},
            ],
        }
    return {"role": str(message.role), "content": message.content}
