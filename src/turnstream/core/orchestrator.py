"""
Turn Orchestrator

Converts one user utterance into a streamed assistant reply:

    VALIDATING -> AUTHORIZING -> PERSIST_USER -> BUILD_CONTEXT -> STREAM_PRIMARY
        -> [EXECUTE_TOOLS -> STREAM_SECONDARY] -> PERSIST_ASSISTANT -> SUGGESTIONS -> COMPLETE

Validation and authorization run before any event is emitted and raise.
Everything after that ends in exactly one terminal event, `complete` or
`error`, unless the client went away first.
"""

import asyncio
import time
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import (
    AuthorizationError,
    CapacityError,
    NotFoundError,
    PersistenceError,
    StreamClosedError,
    ToolExecutionError,
    TurnstreamError,
    UpstreamError,
    ValidationError,
)
from ..llm.client import LLMClient
from ..models.contracts import (
    Caller,
    FinalizedToolCall,
    GeneratedImage,
    PollResponse,
    ToolResult,
    TurnRequest,
)
from ..models.entities import Conversation, Message
from ..models.enums import EventType, Plan, Role, TurnState
from ..utils.error_handler import ErrorHandler
from ..utils.logging import bind_turn_context, clear_turn_context, get_logger
from .accumulator import ToolCallAccumulator
from .config import TurnConfig
from .context_builder import ContextBuilder
from .emitter import BufferingEmitter, EventEmitter
from .persistence import ConversationStore, SessionStore
from .streaming import ClientDisconnected, relay_stream
from .suggestions import SuggestionGenerator
from .tools import ToolExecutor

logger = get_logger(__name__)

T = TypeVar("T")

FALLBACK_REPLY = "I'm sorry, I couldn't generate a response."
IMAGE_ERROR_MESSAGE = (
    "The image you provided could not be processed. Please try a different image."
)
GENERIC_ERROR_MESSAGE = "Failed to generate response"

# States in which an assistant reply may be partially accumulated
_REPLY_STATES = frozenset(
    {
        TurnState.STREAM_PRIMARY,
        TurnState.EXECUTE_TOOLS,
        TurnState.STREAM_SECONDARY,
        TurnState.PERSIST_ASSISTANT,
    }
)


@dataclass
class PendingAssistantTurn:
    """The assistant reply being built; owned by one orchestration run."""

    parts: list[str] = field(default_factory=list)
    image_url: str | None = None
    persist_task: asyncio.Task | None = None

    @property
    def text(self) -> str:
        return "".join(self.parts)

    @property
    def is_empty(self) -> bool:
        return not self.parts and self.image_url is None


@dataclass
class TurnOutcome:
    state: TurnState
    user_message: Message | None = None
    ai_message: Message | None = None
    error: Exception | None = None


def is_image_failure(error: Exception) -> bool:
    if isinstance(error, UpstreamError):
        return error.is_image_error
    return any(marker in str(error) for marker in UpstreamError.IMAGE_ERROR_MARKERS)


def user_safe_message(error: Exception) -> str:
    """Text of the terminal `error` event for a failure."""
    if is_image_failure(error):
        return IMAGE_ERROR_MESSAGE
    if isinstance(error, TurnstreamError):
        return error.message
    return str(error) or GENERIC_ERROR_MESSAGE


class TurnOrchestrator:
    """
    Runs the turn state machine against injected collaborators.

    Example:
        orchestrator = TurnOrchestrator(config, store, sessions, llm, tools)
        request, conversation = await orchestrator.prepare(payload, caller)
        await orchestrator.run(request, conversation, caller, emitter)
    """

    def __init__(
        self,
        config: TurnConfig,
        store: ConversationStore,
        sessions: SessionStore,
        llm: LLMClient,
        tools: ToolExecutor,
        context_builder: ContextBuilder | None = None,
        suggestions: SuggestionGenerator | None = None,
    ):
        self.config = config
        self.store = store
        self.sessions = sessions
        self.llm = llm
        self.tools = tools
        self.context_builder = context_builder or ContextBuilder(
            store,
            history_window=config.history_window,
            tool_instructions=config.tool_instructions,
        )
        self.suggestions = suggestions or SuggestionGenerator(llm, config)

    # ------------------------------------------------------------------
    # Pre-stream checks
    # ------------------------------------------------------------------

    def validate(self, payload: dict[str, Any]) -> TurnRequest:
        """
        Parse and check a turn request.

        Raises:
            ValidationError: Missing fields, empty content or a bad image reference
        """
        try:
            request = TurnRequest.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic("Invalid request data", e) from e

        if not request.content.strip():
            raise ValidationError("Message content is required")

        if request.image_url:
            self._validate_image_reference(request.image_url)

        return request

    def _validate_image_reference(self, image_url: str) -> None:
        is_data_uri = image_url.startswith("data:image/")
        is_http_url = image_url.startswith(("http://", "https://"))

        if not is_data_uri and not is_http_url:
            raise ValidationError(
                "Image must be a data URI or valid URL", error="Invalid image format"
            )
        if is_data_uri and len(image_url) < self.config.min_data_uri_length:
            raise ValidationError(
                "Image data appears to be corrupted or too small", error="Invalid image data"
            )

    async def authorize(self, request: TurnRequest, caller: Caller) -> Conversation:
        """
        Apply the anonymous rate limit and the ownership rule.

        The rate counter is read and then written without synchronization;
        two concurrent requests from one session can both be admitted at
        the limit.

        Raises:
            CapacityError: Anonymous session is at or above the limit
            NotFoundError: Conversation does not exist
            AuthorizationError: Authenticated caller does not own the conversation
        """
        if not caller.is_authenticated:
            limit = self.config.anonymous_message_limit
            count = await self.sessions.get_message_count(caller.session_id)
            if count >= limit:
                logger.info("anonymous_limit_reached", count=count, limit=limit)
                raise CapacityError(limit=limit, count=count)
            await self.sessions.set_message_count(caller.session_id, count + 1)

        conversation = await self.store.get_conversation(request.conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", request.conversation_id)

        if caller.is_authenticated and conversation.user_id and conversation.user_id != caller.user_id:
            raise AuthorizationError(details={"conversation_id": conversation.id})

        return conversation

    async def prepare(self, payload: dict[str, Any], caller: Caller) -> tuple[TurnRequest, Conversation]:
        request = self.validate(payload)
        conversation = await self.authorize(request, caller)
        return request, conversation

    # ------------------------------------------------------------------
    # Streaming run
    # ------------------------------------------------------------------

    async def run(
        self,
        request: TurnRequest,
        conversation: Conversation,
        caller: Caller,
        emitter: EventEmitter,
        with_suggestions: bool = True,
    ) -> TurnOutcome:
        """
        Run a prepared turn to its terminal event.

        Failures are reported on the emitter and in the returned outcome,
        never raised. Task cancellation is re-raised after a best-effort
        save of the partial reply.
        """
        bind_turn_context(
            conversation_id=conversation.id,
            session_id=caller.session_id,
            user_id=caller.user_id,
        )
        outcome = TurnOutcome(state=TurnState.PERSIST_USER)
        pending = PendingAssistantTurn()
        started = time.perf_counter()
        logger.info("turn_started", has_image=request.image_url is not None)

        try:
            await self._run_states(request, conversation, caller, emitter, pending, outcome, with_suggestions)
            logger.info(
                "turn_completed",
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
                reply_chars=len(pending.text),
                has_image=pending.image_url is not None,
            )
        except asyncio.CancelledError:
            await self._on_cancel(conversation, pending, outcome)
            raise
        except (ClientDisconnected, StreamClosedError):
            # Closed from the client side; a close after our own terminal event is a bug
            if emitter.terminal_event is not None:
                raise
            await self._on_cancel(conversation, pending, outcome)
        except Exception as e:
            self._on_error(e, emitter, outcome)
        finally:
            clear_turn_context()

        return outcome

    async def _run_states(
        self,
        request: TurnRequest,
        conversation: Conversation,
        caller: Caller,
        emitter: EventEmitter,
        pending: PendingAssistantTurn,
        outcome: TurnOutcome,
        with_suggestions: bool,
    ) -> None:
        # PERSIST_USER: history is fetched concurrently and the new turn filtered out of it
        user_message, history = await asyncio.gather(
            self._persist(
                self.store.create_message(
                    conversation.id, Role.USER, request.content, request.image_url
                ),
                "Failed to save user message",
            ),
            self._persist(self.store.get_messages(conversation.id), "Failed to load history"),
        )
        outcome.user_message = user_message
        history = [m for m in history if m.id != user_message.id]
        emitter.emit(EventType.USER_MESSAGE, user_message)

        outcome.state = TurnState.BUILD_CONTEXT
        messages = await self.context_builder.assemble(
            conversation, history, user_message, caller.user_id
        )

        outcome.state = TurnState.STREAM_PRIMARY
        accumulator = ToolCallAccumulator()
        with ErrorHandler.log_duration("stream_primary"):
            await relay_stream(
                self.llm,
                messages,
                emitter,
                pending.parts,
                tools=self.tools.schemas() or None,
                accumulator=accumulator,
                max_tokens=self.config.primary_max_tokens,
                temperature=self.config.temperature,
            )

        if accumulator.has_calls:
            outcome.state = TurnState.EXECUTE_TOOLS
            primary_text = pending.text
            calls = accumulator.finalize()
            results = await self._execute_tools(calls, caller, pending, emitter)

            if results:
                outcome.state = TurnState.STREAM_SECONDARY
                followup = [
                    *messages,
                    {
                        "role": "assistant",
                        "content": primary_text or None,
                        "tool_calls": [call.to_openai() for call in calls],
                    },
                    *(result.to_message() for result in results),
                ]
                with ErrorHandler.log_duration("stream_secondary"):
                    await relay_stream(
                        self.llm,
                        followup,
                        emitter,
                        pending.parts,
                        max_tokens=self.config.secondary_max_tokens,
                        temperature=self.config.temperature,
                    )

        outcome.state = TurnState.PERSIST_ASSISTANT
        ai_message = await self._persist_assistant(conversation.id, pending)
        outcome.ai_message = ai_message

        if with_suggestions:
            outcome.state = TurnState.SUGGESTIONS
            suggestions = await asyncio.create_task(
                self.suggestions.safe_generate(request.content, ai_message.content)
            )
            if suggestions:
                emitter.emit(EventType.SUGGESTIONS, suggestions)

        outcome.state = TurnState.COMPLETE
        emitter.emit(EventType.COMPLETE, ai_message)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def _execute_tools(
        self,
        calls: list[FinalizedToolCall],
        caller: Caller,
        pending: PendingAssistantTurn,
        emitter: EventEmitter,
    ) -> list[ToolResult]:
        """Execute calls in index order; every call yields exactly one result."""
        results: list[ToolResult] = []
        plan: Plan | None = None

        for call in calls:
            definition = self.tools.get_definition(call.name)
            if definition is None:
                logger.warning("tool_call_unknown", tool_name=call.name)
                results.append(self.tools.failed_result(call, "unknown tool"))
                continue

            if definition.requires_paid_plan:
                if plan is None:
                    plan = await self._plan_of(caller)
                if not plan.is_paid:
                    logger.info("tool_call_denied", tool_name=call.name, plan=str(plan))
                    emitter.emit(
                        EventType.UPGRADE_REQUIRED,
                        {"feature": definition.feature, "message": definition.upgrade_message},
                    )
                    results.append(self.tools.denied_result(call))
                    continue

            try:
                result = await self.tools.execute(call)
            except ToolExecutionError as e:
                logger.warning("tool_call_failed", tool_name=call.name, error=e.message)
                results.append(self.tools.failed_result(call, e.message))
                continue

            if isinstance(result.data, GeneratedImage):
                pending.image_url = result.data.url
                emitter.emit(
                    EventType.IMAGE,
                    {"imageUrl": result.data.url, "prompt": result.data.prompt},
                )
            results.append(result)

        return results

    async def _plan_of(self, caller: Caller) -> Plan:
        if caller.user_id is None:
            return Plan.FREE
        return await self._persist(self.store.plan_of(caller.user_id), "Failed to load plan")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @staticmethod
    async def _persist(operation: Awaitable[T], message: str) -> T:
        try:
            return await operation
        except TurnstreamError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"{message}: {e}", details={"error_type": type(e).__name__}
            ) from e

    async def _persist_assistant(self, conversation_id: str, pending: PendingAssistantTurn) -> Message:
        """
        Save the single assistant message of the turn.

        The write runs as its own task and survives cancellation of the turn;
        repeated calls await the same write.
        """
        if pending.persist_task is None:
            pending.persist_task = asyncio.create_task(
                self._persist(
                    self.store.create_message(
                        conversation_id,
                        Role.ASSISTANT,
                        pending.text or FALLBACK_REPLY,
                        pending.image_url,
                    ),
                    "Failed to save assistant message",
                )
            )
        return await asyncio.shield(pending.persist_task)

    async def _on_cancel(
        self, conversation: Conversation, pending: PendingAssistantTurn, outcome: TurnOutcome
    ) -> None:
        logger.info("turn_cancelled", state=str(outcome.state), reply_chars=len(pending.text))
        cancelled_in = outcome.state
        outcome.state = TurnState.CANCELLED

        if cancelled_in not in _REPLY_STATES:
            return
        if pending.persist_task is None and pending.is_empty:
            return
        try:
            outcome.ai_message = await self._persist_assistant(conversation.id, pending)
        except Exception as e:
            logger.warning("partial_reply_not_saved", error=str(e))

    def _on_error(self, error: Exception, emitter: EventEmitter, outcome: TurnOutcome) -> None:
        logger.error(
            "turn_failed",
            state=str(outcome.state),
            error=str(error),
            error_type=type(error).__name__,
            exc_info=not isinstance(error, TurnstreamError),
        )
        outcome.error = error
        outcome.state = TurnState.ERROR
        if not emitter.closed:
            emitter.emit(EventType.ERROR, {"error": user_safe_message(error)})

    # ------------------------------------------------------------------
    # Poll mode
    # ------------------------------------------------------------------

    async def poll(self, payload: dict[str, Any], caller: Caller) -> PollResponse:
        """
        Run a whole turn and return it as one response.

        Raises:
            TurnstreamError: Any pre-stream rejection or turn failure
        """
        request, conversation = await self.prepare(payload, caller)
        emitter = BufferingEmitter()
        outcome = await self.run(request, conversation, caller, emitter, with_suggestions=False)

        if outcome.error is not None:
            error = outcome.error
            if is_image_failure(error):
                raise ValidationError(IMAGE_ERROR_MESSAGE, error="Invalid image data") from error
            if isinstance(error, TurnstreamError):
                raise error
            raise TurnstreamError(user_safe_message(error)) from error

        return PollResponse(
            user_message=outcome.user_message,
            ai_message=outcome.ai_message,
            content=outcome.ai_message.content,
        )
