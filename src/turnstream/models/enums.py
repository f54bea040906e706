"""Enums shared across the turn pipeline.

String-valued so they serialize directly into event frames, stored
records and configuration files.
"""

from enum import Enum


class LogLevel(str, Enum):
    """Standard logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def __str__(self) -> str:
        return self.value


class Role(str, Enum):
    """Author of a stored message."""
    USER = "user"
    ASSISTANT = "assistant"

    def __str__(self) -> str:
        return self.value


class Plan(str, Enum):
    """Subscription plan of an authenticated user.

    Attributes:
        FREE: Default plan, no gated tools
        PLUS: Paid plan, image generation enabled
        PRO: Paid plan, image generation enabled
    """
    FREE = "free"
    PLUS = "plus"
    PRO = "pro"

    @property
    def is_paid(self) -> bool:
        return self is not Plan.FREE

    def __str__(self) -> str:
        return self.value


class EventType(str, Enum):
    """Event types written to the client stream.

    Attributes:
        USER_MESSAGE: The persisted user message, sent before any token
        TOKEN: One text fragment of the assistant reply
        SPEAKER: Debate speaker change, precedes that speaker's tokens
        UPGRADE_REQUIRED: A gated tool was requested by a free-plan caller
        IMAGE: A generated image reference and the prompt used
        SUGGESTIONS: Follow-up questions
        COMPLETE: Terminal success event
        ERROR: Terminal failure event
    """
    USER_MESSAGE = "userMessage"
    TOKEN = "token"
    SPEAKER = "speaker"
    UPGRADE_REQUIRED = "upgrade_required"
    IMAGE = "image"
    SUGGESTIONS = "suggestions"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (EventType.COMPLETE, EventType.ERROR)

    def __str__(self) -> str:
        return self.value


class TurnState(str, Enum):
    """States of one turn orchestration run."""
    VALIDATING = "validating"
    AUTHORIZING = "authorizing"
    PERSIST_USER = "persist_user"
    BUILD_CONTEXT = "build_context"
    STREAM_PRIMARY = "stream_primary"
    EXECUTE_TOOLS = "execute_tools"
    STREAM_SECONDARY = "stream_secondary"
    PERSIST_ASSISTANT = "persist_assistant"
    SUGGESTIONS = "suggestions"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TurnState.COMPLETE, TurnState.ERROR, TurnState.CANCELLED)

    def __str__(self) -> str:
        return self.value


__all__ = [
    "LogLevel",
    "Role",
    "Plan",
    "EventType",
    "TurnState",
]
