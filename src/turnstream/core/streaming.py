"""
Relay of one upstream stream onto an emitter.

Shared by the turn orchestrator and the debate scheduler.
"""

from contextlib import aclosing
from typing import Any

from ..llm.client import LLMClient
from ..models.enums import EventType
from .accumulator import ToolCallAccumulator
from .emitter import EventEmitter


class ClientDisconnected(Exception):
    """The emitter was closed from the client side while a stream was being relayed."""


async def relay_stream(
    llm: LLMClient,
    messages: list[dict[str, Any]],
    emitter: EventEmitter,
    parts: list[str],
    *,
    max_tokens: int,
    temperature: float,
    tools: list[dict[str, Any]] | None = None,
    accumulator: ToolCallAccumulator | None = None,
    token_extra: dict[str, Any] | None = None,
) -> int:
    """
    Stream a completion, emitting each text fragment as a `token` event.

    Text is appended to `parts` in arrival order. Tool-call fragments go to
    `accumulator` and are never emitted. The upstream stream is closed on
    every exit path.

    Returns:
        Number of chunks received

    Raises:
        ClientDisconnected: If the emitter was closed between two chunks
        UpstreamError: If the upstream call fails
    """
    token_extra = token_extra or {}
    chunks = 0

    async with aclosing(
        llm.stream_chat(messages, tools=tools, max_tokens=max_tokens, temperature=temperature)
    ) as stream:
        async for delta in stream:
            if emitter.closed:
                raise ClientDisconnected()
            chunks += 1

            if delta.text:
                parts.append(delta.text)
                emitter.emit(EventType.TOKEN, delta.text, **token_extra)

            if accumulator is not None:
                for fragment in delta.tool_calls:
                    accumulator.ingest(fragment)

    return chunks
