"""
Per-user state read by the Context Builder: memory facts and custom personas.

Every operation requires an authenticated caller. Custom personas are
addressed by conversations as `custom-<id>`; creating one needs a paid plan.
"""

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from ..models.contracts import Caller, PersonaDraft, PersonaUpdate
from ..models.entities import CustomPersona, User
from ..utils.logging import get_logger
from .config import TurnConfig
from .persistence import ConversationStore

logger = get_logger(__name__)

PERSONA_UPGRADE_MESSAGE = "Custom personas are available on Plus and Pro plans only."


def _require_user(caller: Caller) -> str:
    if not caller.is_authenticated:
        raise AuthenticationError()
    return caller.user_id


class ProfileService:
    def __init__(self, config: TurnConfig, store: ConversationStore):
        self.config = config
        self.store = store

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    async def update_memory(self, caller: Caller, memory: Any) -> User:
        """
        Replace the caller's memory facts.

        Items are trimmed and blank items dropped.

        Raises:
            AuthenticationError: Caller is anonymous
            ValidationError: Not a list of strings, too many items or an item too long
        """
        user_id = _require_user(caller)

        if not isinstance(memory, list):
            raise ValidationError("Memory must be an array of strings")
        max_items = self.config.memory_max_items
        if len(memory) > max_items:
            raise ValidationError(f"Memory cannot exceed {max_items} items")

        max_length = self.config.memory_max_item_length
        facts: list[str] = []
        for item in memory:
            if not isinstance(item, str):
                raise ValidationError("All memory items must be strings")
            fact = item.strip()
            if not fact:
                continue
            if len(fact) > max_length:
                raise ValidationError(f"Each memory item must be {max_length} characters or less")
            facts.append(fact)

        return await self.store.update_user_memory(user_id, facts)

    # ------------------------------------------------------------------
    # Custom personas
    # ------------------------------------------------------------------

    async def list_personas(self, caller: Caller) -> list[CustomPersona]:
        return await self.store.get_custom_personas(_require_user(caller))

    async def create_persona(self, caller: Caller, payload: dict[str, Any]) -> CustomPersona:
        """
        Create a custom persona owned by the caller.

        Raises:
            AuthenticationError: Caller is anonymous
            AuthorizationError: Caller is on the free plan
            ValidationError: Missing or oversized fields
        """
        user_id = _require_user(caller)

        plan = await self.store.plan_of(user_id)
        if not plan.is_paid:
            logger.info("custom_persona_denied", plan=str(plan))
            raise AuthorizationError(
                "Upgrade required",
                details={"feature": "custom_personas"},
                user_message=PERSONA_UPGRADE_MESSAGE,
            )

        try:
            draft = PersonaDraft.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic("Invalid persona data", e) from e

        persona = await self.store.create_custom_persona(
            CustomPersona(user_id=user_id, **draft.model_dump())
        )
        logger.info("custom_persona_created", persona_id=persona.id)
        return persona

    async def update_persona(
        self, caller: Caller, persona_id: str, payload: dict[str, Any]
    ) -> CustomPersona:
        """
        Apply a partial update to one of the caller's personas.

        Raises:
            AuthenticationError: Caller is anonymous
            ValidationError: Invalid fields or nothing to update
            NotFoundError: No such persona owned by the caller
        """
        user_id = _require_user(caller)

        try:
            changes = PersonaUpdate.model_validate(payload).changes()
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic("Invalid persona data", e) from e
        if not changes:
            raise ValidationError("No update data provided")

        persona = await self.store.update_custom_persona(persona_id, user_id, changes)
        if persona is None:
            raise NotFoundError("Persona", persona_id)
        return persona

    async def delete_persona(self, caller: Caller, persona_id: str) -> None:
        """Delete one of the caller's personas; deleting a missing one is not an error."""
        user_id = _require_user(caller)
        if await self.store.delete_custom_persona(persona_id, user_id):
            logger.info("custom_persona_deleted", persona_id=persona_id)
