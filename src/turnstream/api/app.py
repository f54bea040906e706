"""
HTTP API for the turn orchestrator.

Role:
- Resolve the caller from headers set by the external auth layer
  (`X-User-Id` for authenticated users, `X-Session-Id` for the session key).
- Run validation and authorization before any stream framing, so those
  failures are ordinary JSON error responses.
- Relay orchestrator and debate events as SSE frames (`data: <json>\\n\\n`).

On client disconnect the producing task is cancelled.
"""

import asyncio
from collections.abc import AsyncIterator, Coroutine
from dataclasses import dataclass
from typing import Any

from fastapi import Body, Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from .. import __version__, catalog
from ..core.config import TurnConfig, get_config
from ..core.debate import DebateScheduler
from ..core.emitter import SSEEmitter
from ..core.messages import MessageService
from ..core.orchestrator import TurnOrchestrator
from ..core.persistence import ConversationStore, InMemorySessionStore, InMemoryStore, SessionStore
from ..core.profiles import ProfileService
from ..core.tools import ToolExecutor
from ..exceptions import TurnstreamError
from ..llm.client import LLMClient, get_llm_client
from ..models.contracts import Caller
from ..tools import build_default_tools
from ..utils.logging import get_logger

logger = get_logger(__name__)

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


@dataclass
class Services:
    """Collaborators shared by every request, created once per process."""

    config: TurnConfig
    store: ConversationStore
    sessions: SessionStore
    llm: LLMClient
    tools: ToolExecutor
    orchestrator: TurnOrchestrator
    debates: DebateScheduler
    messages: MessageService
    profiles: ProfileService


def build_services(
    config: TurnConfig | None = None,
    llm: LLMClient | None = None,
    store: ConversationStore | None = None,
    sessions: SessionStore | None = None,
) -> Services:
    config = config or get_config()
    llm = llm or get_llm_client()
    store = store or InMemoryStore()
    sessions = sessions or InMemorySessionStore()
    tools = build_default_tools(llm, config)

    return Services(
        config=config,
        store=store,
        sessions=sessions,
        llm=llm,
        tools=tools,
        orchestrator=TurnOrchestrator(config, store, sessions, llm, tools),
        debates=DebateScheduler(config, store, llm),
        messages=MessageService(store),
        profiles=ProfileService(config, store),
    )


def get_caller(
    request: Request,
    x_user_id: str | None = Header(default=None),
    x_session_id: str | None = Header(default=None),
) -> Caller:
    session_id = x_session_id
    if not session_id:
        host = request.client.host if request.client else "unknown"
        session_id = f"anon:{host}"
    return Caller(user_id=x_user_id or None, session_id=session_id)


def stream_events(emitter: SSEEmitter, producer: Coroutine[Any, Any, Any]) -> StreamingResponse:
    """
    Start `producer` and relay the emitter's frames as the response body.

    The producer runs even if the body is never read; its frames stay
    queued. The emitter is closed when the producer finishes for any reason,
    and the producer is cancelled when the client goes away.
    """
    task = asyncio.create_task(producer)
    task.add_done_callback(lambda finished: _producer_done(finished, emitter))

    async def frames() -> AsyncIterator[str]:
        try:
            async for frame in emitter.frames():
                yield frame
        finally:
            emitter.close()
            if not task.done():
                logger.info("stream_client_disconnected")
                task.cancel()

    return StreamingResponse(frames(), media_type="text/event-stream", headers=SSE_HEADERS)


def _producer_done(task: asyncio.Task, emitter: SSEEmitter) -> None:
    emitter.close()
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(
            "stream_producer_failed",
            error=str(error),
            error_type=type(error).__name__,
            exc_info=error,
        )


def create_app(services: Services | None = None) -> FastAPI:
    """Build the FastAPI app around an explicit service container."""
    services = services or build_services()
    app = FastAPI(title="turnstream", version=__version__)
    app.state.services = services

    @app.exception_handler(TurnstreamError)
    async def handle_turnstream_error(request: Request, exc: TurnstreamError) -> JSONResponse:
        logger.info(
            "request_rejected",
            path=request.url.path,
            status_code=exc.status_code,
            error_type=type(exc).__name__,
            error=exc.message,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": getattr(exc, "error", None) or exc.message,
                "message": exc.user_message,
                "details": exc.details,
            },
        )

    @app.post("/api/messages")
    async def send_message(
        payload: dict[str, Any] = Body(...),
        caller: Caller = Depends(get_caller),
    ) -> StreamingResponse:
        request, conversation = await services.orchestrator.prepare(payload, caller)
        emitter = SSEEmitter()
        return stream_events(
            emitter, services.orchestrator.run(request, conversation, caller, emitter)
        )

    @app.post("/api/messages/poll")
    async def send_message_poll(
        payload: dict[str, Any] = Body(...),
        caller: Caller = Depends(get_caller),
    ) -> dict[str, Any]:
        response = await services.orchestrator.poll(payload, caller)
        return response.to_wire()

    @app.post("/api/debate")
    async def start_debate(
        payload: dict[str, Any] = Body(...),
        caller: Caller = Depends(get_caller),
    ) -> StreamingResponse:
        request, _ = await services.debates.validate(payload, caller)
        emitter = SSEEmitter()
        return stream_events(emitter, services.debates.run(request, emitter))

    @app.get("/api/message-count")
    async def message_count(caller: Caller = Depends(get_caller)) -> dict[str, Any]:
        limit = services.config.anonymous_message_limit
        if caller.is_authenticated:
            return {"count": 0, "limit": limit, "unlimited": True}
        count = await services.sessions.get_message_count(caller.session_id)
        return {"count": count, "limit": limit, "unlimited": False}

    @app.post("/api/conversations")
    async def create_conversation(
        payload: dict[str, Any] | None = Body(default=None),
        caller: Caller = Depends(get_caller),
    ) -> dict[str, Any]:
        payload = payload or {}
        conversation = await services.messages.create_conversation(
            caller, title=payload.get("title"), persona=payload.get("persona")
        )
        return conversation.to_wire()

    @app.get("/api/conversations")
    async def list_conversations(caller: Caller = Depends(get_caller)) -> list[dict[str, Any]]:
        conversations = await services.messages.list_conversations(caller)
        return [conversation.to_wire() for conversation in conversations]

    @app.delete("/api/conversations/{conversation_id}")
    async def delete_conversation(
        conversation_id: str, caller: Caller = Depends(get_caller)
    ) -> dict[str, Any]:
        await services.messages.delete_conversation(conversation_id, caller)
        return {"success": True}

    @app.get("/api/messages/{conversation_id}")
    async def list_messages(
        conversation_id: str, caller: Caller = Depends(get_caller)
    ) -> list[dict[str, Any]]:
        messages = await services.messages.list_messages(conversation_id, caller)
        return [message.to_wire() for message in messages]

    @app.patch("/api/messages/{message_id}")
    async def edit_message(
        message_id: str,
        payload: dict[str, Any] = Body(...),
        caller: Caller = Depends(get_caller),
    ) -> dict[str, Any]:
        await services.messages.edit(message_id, payload.get("content"), caller)
        return {"success": True, "messageId": message_id}

    @app.patch("/api/messages/{message_id}/pin")
    async def pin_message(
        message_id: str,
        payload: dict[str, Any] = Body(...),
        caller: Caller = Depends(get_caller),
    ) -> dict[str, Any]:
        message = await services.messages.pin(message_id, bool(payload.get("isPinned")), caller)
        return message.to_wire()

    @app.post("/api/messages/{message_id}/reaction")
    async def react_to_message(
        message_id: str,
        payload: dict[str, Any] = Body(...),
        caller: Caller = Depends(get_caller),
    ) -> dict[str, Any]:
        message = await services.messages.react(message_id, payload.get("emoji"), caller)
        return message.to_wire()

    @app.delete("/api/messages/{message_id}", status_code=204)
    async def delete_message(message_id: str, caller: Caller = Depends(get_caller)) -> Response:
        await services.messages.delete(message_id, caller)
        return Response(status_code=204)

    @app.put("/api/user/memory")
    async def update_memory(
        payload: dict[str, Any] = Body(...),
        caller: Caller = Depends(get_caller),
    ) -> dict[str, Any]:
        user = await services.profiles.update_memory(caller, payload.get("memory"))
        return user.to_wire()

    @app.get("/api/personas")
    async def list_custom_personas(caller: Caller = Depends(get_caller)) -> list[dict[str, Any]]:
        personas = await services.profiles.list_personas(caller)
        return [persona.to_wire() for persona in personas]

    @app.post("/api/personas", status_code=201)
    async def create_custom_persona(
        payload: dict[str, Any] = Body(...),
        caller: Caller = Depends(get_caller),
    ) -> dict[str, Any]:
        persona = await services.profiles.create_persona(caller, payload)
        return persona.to_wire()

    @app.patch("/api/personas/{persona_id}")
    async def update_custom_persona(
        persona_id: str,
        payload: dict[str, Any] = Body(...),
        caller: Caller = Depends(get_caller),
    ) -> dict[str, Any]:
        persona = await services.profiles.update_persona(caller, persona_id, payload)
        return persona.to_wire()

    @app.delete("/api/personas/{persona_id}", status_code=204)
    async def delete_custom_persona(persona_id: str, caller: Caller = Depends(get_caller)) -> Response:
        await services.profiles.delete_persona(caller, persona_id)
        return Response(status_code=204)

    @app.get("/api/personas/catalog")
    async def persona_catalog() -> list[dict[str, str]]:
        return [
            {
                "id": p.id,
                "name": p.name,
                "icon": p.icon,
                "description": p.description,
            }
            for p in catalog.PERSONAS
        ]

    return app
