"""
Event emitters: the outbound side of a turn or debate.

Every emitter enforces the same contract: frames go out in emit order, and
after a terminal event (`complete` or `error`) the emitter is closed and
further emits raise StreamClosedError.
"""

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

from pydantic import BaseModel

from ..exceptions import StreamClosedError
from ..models.enums import EventType
from ..utils.logging import get_logger

logger = get_logger(__name__)


def _to_jsonable(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        to_wire = getattr(payload, "to_wire", None)
        return to_wire() if to_wire else payload.model_dump(mode="json")
    if isinstance(payload, list):
        return [_to_jsonable(item) for item in payload]
    return payload


def encode_event(event_type: EventType, payload: Any = None, **extra: Any) -> dict[str, Any]:
    """Build the `{type, data, ...}` event object written to the client."""
    event: dict[str, Any] = {"type": str(event_type)}
    if payload is not None:
        event["data"] = _to_jsonable(payload)
    event.update(extra)
    return event


def format_sse(event: dict[str, Any]) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


class EventEmitter:
    """
    Base emitter with terminal-state bookkeeping.

    Subclasses implement `_write(event)`.
    """

    def __init__(self):
        self._closed = False
        self._terminal: EventType | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def terminal_event(self) -> EventType | None:
        return self._terminal

    def emit(self, event_type: EventType, payload: Any = None, **extra: Any) -> None:
        """
        Write one event.

        Raises:
            StreamClosedError: If the emitter is closed
        """
        if self._closed:
            raise StreamClosedError(f"Cannot emit '{event_type}' on a closed stream")

        self._write(encode_event(event_type, payload, **extra))

        if event_type.is_terminal:
            self._terminal = event_type
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._on_close()

    def _write(self, event: dict[str, Any]) -> None:
        raise NotImplementedError

    def _on_close(self) -> None:
        pass


_CLOSE = object()


class SSEEmitter(EventEmitter):
    """
    Queue-backed emitter drained by the HTTP layer.

    `frames()` yields `data: <json>\\n\\n` strings until the emitter closes.
    Closing from the HTTP side (client disconnect) makes `closed` true so the
    producer stops relaying at its next checkpoint.
    """

    def __init__(self):
        super().__init__()
        self._queue: asyncio.Queue = asyncio.Queue()

    def _write(self, event: dict[str, Any]) -> None:
        self._queue.put_nowait(format_sse(event))

    def _on_close(self) -> None:
        self._queue.put_nowait(_CLOSE)

    async def frames(self) -> AsyncIterator[str]:
        while True:
            frame = await self._queue.get()
            if frame is _CLOSE:
                return
            yield frame


class BufferingEmitter(EventEmitter):
    """Collects events in memory; used by poll mode and tests."""

    def __init__(self):
        super().__init__()
        self.events: list[dict[str, Any]] = []

    def _write(self, event: dict[str, Any]) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event["type"] for event in self.events]

    @property
    def text(self) -> str:
        """Concatenation of all token payloads."""
        return "".join(e["data"] for e in self.events if e["type"] == str(EventType.TOKEN))

    def of_type(self, event_type: EventType) -> list[dict[str, Any]]:
        return [e for e in self.events if e["type"] == str(event_type)]

    @property
    def error(self) -> dict[str, Any] | None:
        errors = self.of_type(EventType.ERROR)
        return errors[-1]["data"] if errors else None
