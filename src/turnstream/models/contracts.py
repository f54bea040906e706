"""
Pydantic models defining the contracts between pipeline components.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .entities import Message, WireModel

# ============================================================================
# Inbound requests
# ============================================================================


class Caller(BaseModel):
    """Identity resolved by the authentication layer for one request."""

    user_id: str | None = Field(None, description="Authenticated user id, None when anonymous")
    session_id: str = Field(..., description="Session key holding the anonymous rate counter")

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


class TurnRequest(WireModel):
    """Input to TurnOrchestrator: one user utterance."""

    conversation_id: str
    content: str
    image_url: str | None = None


class DebateRequest(WireModel):
    """Input to DebateScheduler."""

    conversation_id: str
    topic: str
    persona1: str
    persona2: str


class PersonaDraft(WireModel):
    """Fields a user supplies when creating a custom persona."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    system_prompt: str = Field(..., min_length=1, max_length=4000)


class PersonaUpdate(WireModel):
    """Partial update of a custom persona; omitted fields are left as they are."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    system_prompt: str | None = Field(None, min_length=1, max_length=4000)

    def changes(self) -> dict[str, Any]:
        """Fields the caller set; null only clears the optional description."""
        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None or key == "description"
        }


class PollResponse(WireModel):
    """Poll mode result: the whole turn in one JSON object."""

    user_message: Message
    ai_message: Message
    content: str


# ============================================================================
# Upstream stream contracts
# ============================================================================


class ToolCallFragment(BaseModel):
    """One piece of a streamed function call, addressed by slot index."""

    index: int = Field(..., ge=0)
    id: str | None = None
    name: str | None = None
    arguments: str | None = Field(None, description="Next chunk of the JSON argument text")


class StreamDelta(BaseModel):
    """A normalized chunk from the upstream streaming call."""

    text: str | None = None
    tool_calls: list[ToolCallFragment] = Field(default_factory=list)


class ToolParameter(BaseModel):
    """Schema for a single tool parameter definition."""

    name: str = Field(..., description="Parameter name")
    type: str = Field(..., description="Parameter type (string, number, boolean, object, array)")
    description: str = Field(..., description="Parameter description for the model")
    required: bool = Field(default=True)
    enum: list[str] | None = None


class ToolDefinition(BaseModel):
    """A capability advertised to the model for function calling."""

    name: str = Field(..., description="Unique tool identifier")
    description: str = Field(..., description="When and how the model should use the tool")
    parameters: list[ToolParameter] = Field(default_factory=list)
    requires_paid_plan: bool = Field(
        default=False, description="Only callers on a paid plan may invoke this tool"
    )
    feature: str | None = Field(None, description="Feature name reported when access is denied")
    upgrade_message: str | None = Field(None, description="Shown to the user when access is denied")
    denial_message: str = Field(
        default="This tool is not available on your plan.",
        description="Tool response the model sees when access is denied",
    )
    failure_message: str = Field(
        default="Tool execution failed", description="Tool response the model sees on failure"
    )

    def to_openai(self) -> dict[str, Any]:
        """Function schema advertised to the model."""
        properties = {}
        for param in self.parameters:
            schema: dict[str, Any] = {"type": param.type, "description": param.description}
            if param.enum:
                schema["enum"] = param.enum
            properties[param.name] = schema
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": [p.name for p in self.parameters if p.required],
                },
            },
        }


class GeneratedImage(BaseModel):
    """Result of the image generation tool."""

    url: str
    prompt: str

    def __str__(self) -> str:
        return f"Image generated successfully: {self.url}"


class FinalizedToolCall(BaseModel):
    """A reassembled tool call after the primary stream ended."""

    index: int
    id: str
    name: str
    raw_arguments: str
    arguments: dict[str, Any] | None = None
    parse_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.parse_error is None

    def to_openai(self) -> dict[str, Any]:
        """Invocation record as replayed to the model in the secondary call."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.raw_arguments},
        }


class ToolResult(BaseModel):
    """Outcome of one tool call, fed back to the model."""

    tool_call_id: str
    tool_name: str
    success: bool
    content: str = Field(..., description="Text the model sees as the tool response")
    data: Any = None
    denied: bool = False
    execution_time_ms: float = 0.0
    timestamp: datetime = Field(default_factory=datetime.now)

    def to_message(self) -> dict[str, Any]:
        return {"role": "tool", "tool_call_id": self.tool_call_id, "content": self.content}


# ============================================================================
# Context Builder contracts
# ============================================================================


class ConversationContext(BaseModel):
    """Read-only snapshot used to build the instructions for one turn."""

    model_config = {"frozen": True}

    conversation_id: str
    persona: str
    owner_id: str | None = None
    history_window: tuple[Message, ...] = ()
    memory_facts: tuple[str, ...] = ()
