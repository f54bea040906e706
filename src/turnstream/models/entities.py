"""
Persisted entities owned by the storage collaborator.

Field names are snake_case in Python and camelCase on the wire
(`model_dump(by_alias=True)`), matching the client event payloads.
"""

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .enums import Plan, Role


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for models exchanged with clients in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class User(WireModel):
    """An authenticated account as seen by the turn pipeline."""

    id: str
    email: str | None = None
    plan: Plan = Plan.FREE
    memory: list[str] = Field(
        default_factory=list, description="Facts the user asked the assistant to remember"
    )
    created_at: datetime = Field(default_factory=_now)


class Conversation(WireModel):
    """A conversation; `user_id` is None for anonymous conversations."""

    id: str = Field(default_factory=_new_id)
    user_id: str | None = None
    title: str = "New conversation"
    persona: str = "general"
    created_at: datetime = Field(default_factory=_now)


class Reaction(WireModel):
    emoji: str
    user_id: str


class Message(WireModel):
    """A stored user or assistant message."""

    id: str = Field(default_factory=_new_id)
    conversation_id: str
    role: Role
    content: str
    image_url: str | None = None
    is_pinned: bool = False
    reactions: list[Reaction] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)


class CustomPersona(WireModel):
    """A user-authored persona, addressed as `custom-<id>` by conversations."""

    id: str = Field(default_factory=_new_id)
    user_id: str
    name: str
    description: str | None = None
    system_prompt: str
    created_at: datetime = Field(default_factory=_now)
