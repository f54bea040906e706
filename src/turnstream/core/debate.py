"""
Debate Scheduler

Alternates two personas over a fixed number of rounds on one topic. Each
utterance is relayed token by token, saved as its own assistant message
and added to a transcript both speakers see.
"""

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .. import catalog
from ..exceptions import (
    AuthorizationError,
    NotFoundError,
    StreamClosedError,
    TurnstreamError,
    ValidationError,
)
from ..llm.client import LLMClient
from ..models.contracts import Caller, DebateRequest
from ..models.entities import Conversation
from ..models.enums import EventType, Role
from ..utils.logging import bind_turn_context, clear_turn_context, get_logger
from .config import TurnConfig
from .emitter import EventEmitter
from .persistence import ConversationStore
from .streaming import ClientDisconnected, relay_stream

logger = get_logger(__name__)

DEBATE_ERROR_MESSAGE = "Failed to generate debate"

# (opening, middle rounds, closing) guidance per speaker position
FIRST_SPEAKER_GUIDANCE = (
    "Present your opening argument.",
    "Respond to the previous argument and strengthen your position.",
    "Make your final closing statement.",
)
SECOND_SPEAKER_GUIDANCE = (
    "Present your opening argument with a different perspective.",
    "Counter the previous argument and defend your position.",
    "Make your final rebuttal and closing statement.",
)


def round_guidance(guidance: tuple[str, str, str], round_index: int, rounds: int) -> str:
    if round_index == 0:
        return guidance[0]
    if round_index == rounds - 1:
        return guidance[2]
    return guidance[1]


def debate_prompt(name: str, topic: str, guidance: str) -> str:
    return f'You are {name} in a debate. Topic: "{topic}". {guidance} Keep it concise (2-3 paragraphs).'


class DebateScheduler:
    def __init__(self, config: TurnConfig, store: ConversationStore, llm: LLMClient):
        self.config = config
        self.store = store
        self.llm = llm

    async def validate(self, payload: dict[str, Any], caller: Caller) -> tuple[DebateRequest, Conversation]:
        """
        Check a debate request before any model call.

        Raises:
            ValidationError: Missing fields or identical personas
            NotFoundError: Conversation does not exist
            AuthorizationError: Authenticated caller does not own the conversation
        """
        try:
            request = DebateRequest.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError("Missing required fields") from e

        if not all((request.conversation_id, request.topic.strip(), request.persona1, request.persona2)):
            raise ValidationError("Missing required fields")
        if request.persona1 == request.persona2:
            raise ValidationError("Personas must be different")

        conversation = await self.store.get_conversation(request.conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", request.conversation_id)
        if caller.is_authenticated and conversation.user_id and conversation.user_id != caller.user_id:
            raise AuthorizationError(details={"conversation_id": conversation.id})

        return request, conversation

    async def run(self, request: DebateRequest, emitter: EventEmitter) -> int:
        """
        Run every round and emit `complete` with the round count.

        Failures end the stream with one `error` event and are not raised.

        Returns:
            Number of utterances saved
        """
        bind_turn_context(conversation_id=request.conversation_id)
        rounds = self.config.debate_rounds
        speakers = (
            (request.persona1, _display_name(request.persona1, "Persona 1"), FIRST_SPEAKER_GUIDANCE),
            (request.persona2, _display_name(request.persona2, "Persona 2"), SECOND_SPEAKER_GUIDANCE),
        )
        transcript: list[dict[str, Any]] = []
        saved = 0
        logger.info("debate_started", persona1=request.persona1, persona2=request.persona2, rounds=rounds)

        try:
            for round_index in range(rounds):
                for persona_id, name, guidance in speakers:
                    emitter.emit(EventType.SPEAKER, name)
                    parts: list[str] = []
                    messages = [
                        {"role": "system", "content": catalog.get_persona_system_prompt(persona_id)},
                        *transcript,
                        {
                            "role": "user",
                            "content": debate_prompt(
                                name, request.topic, round_guidance(guidance, round_index, rounds)
                            ),
                        },
                    ]
                    await relay_stream(
                        self.llm,
                        messages,
                        emitter,
                        parts,
                        max_tokens=self.config.debate_max_tokens,
                        temperature=self.config.debate_temperature,
                        token_extra={"speaker": persona_id},
                    )

                    text = "".join(parts)
                    await self.store.create_message(
                        request.conversation_id, Role.ASSISTANT, f"**{name}**: {text}"
                    )
                    saved += 1
                    transcript.append({"role": "assistant", "content": text})

            emitter.emit(EventType.COMPLETE, {"success": True, "rounds": rounds})
            logger.info("debate_completed", utterances=saved)
        except (ClientDisconnected, StreamClosedError):
            if emitter.terminal_event is not None:
                raise
            logger.info("debate_cancelled", utterances=saved)
        except Exception as e:
            logger.error(
                "debate_failed",
                utterances=saved,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=not isinstance(e, TurnstreamError),
            )
            if not emitter.closed:
                emitter.emit(EventType.ERROR, {"error": DEBATE_ERROR_MESSAGE})
        finally:
            clear_turn_context()

        return saved


def _display_name(persona_id: str, fallback: str) -> str:
    persona = catalog.find_persona(persona_id)
    return persona.name if persona else fallback
