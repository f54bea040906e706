"""
Pydantic models and enums for the turn pipeline.
"""

from .contracts import (
    Caller,
    ConversationContext,
    DebateRequest,
    FinalizedToolCall,
    GeneratedImage,
    PersonaDraft,
    PersonaUpdate,
    PollResponse,
    StreamDelta,
    ToolCallFragment,
    ToolDefinition,
    ToolParameter,
    ToolResult,
    TurnRequest,
)
from .entities import Conversation, CustomPersona, Message, Reaction, User
from .enums import EventType, LogLevel, Plan, Role, TurnState

__all__ = [
    "Caller",
    "ConversationContext",
    "DebateRequest",
    "FinalizedToolCall",
    "GeneratedImage",
    "PersonaDraft",
    "PersonaUpdate",
    "PollResponse",
    "StreamDelta",
    "ToolCallFragment",
    "ToolDefinition",
    "ToolParameter",
    "ToolResult",
    "TurnRequest",
    "Conversation",
    "CustomPersona",
    "Message",
    "Reaction",
    "User",
    "EventType",
    "LogLevel",
    "Plan",
    "Role",
    "TurnState",
]
