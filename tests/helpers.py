"""
Scripted upstream client and stream builders shared by the test suite.
"""

import asyncio
import copy

from turnstream.models.contracts import StreamDelta, ToolCallFragment

# Placed in a scripted stream, makes the fake stream block until cancelled
HANG = object()

IMAGE_URL = "https://images.example.com/generated/cat.png"


def text(*chunks: str) -> list[StreamDelta]:
    """Scripted stream made of text deltas."""
    return [StreamDelta(text=chunk) for chunk in chunks]


def fragment(index: int, id: str | None = None, name: str | None = None,
             arguments: str | None = None) -> StreamDelta:
    """One delta carrying a single tool-call fragment."""
    return StreamDelta(
        tool_calls=[ToolCallFragment(index=index, id=id, name=name, arguments=arguments)]
    )


def image_call(prompt: str = "a cat", call_id: str = "call_1") -> list[StreamDelta]:
    """A generate_image call split across three fragments."""
    return [
        fragment(0, id=call_id, name="generate_image"),
        fragment(0, arguments='{"prompt": '),
        fragment(0, arguments=f'"{prompt}"}}'),
    ]


class FakeLLMClient:
    """
    Scripted stand-in for LLMClient.

    Each `stream_chat` call consumes the next script from `streams`: a list
    of StreamDelta (optionally containing an exception to raise or HANG),
    or an exception raised when the stream opens.
    """

    def __init__(self):
        self.streams: list = []
        self.stream_calls: list[dict] = []
        self.completions: list = []
        self.complete_calls: list[dict] = []
        self.image_url = IMAGE_URL
        self.image_error: Exception | None = None
        self.image_calls: list[str] = []
        self.closed_streams = 0

    async def stream_chat(self, messages, tools=None, max_tokens=None, temperature=0.7, model=None):
        self.stream_calls.append(
            {
                "messages": copy.deepcopy(messages),
                "tools": tools,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        script = self.streams.pop(0) if self.streams else []
        if isinstance(script, Exception):
            raise script
        try:
            for item in script:
                await asyncio.sleep(0)
                if item is HANG:
                    await asyncio.Event().wait()
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.closed_streams += 1

    async def complete(self, messages, model=None, max_tokens=None, temperature=0.7):
        self.complete_calls.append({"messages": messages, "model": model, "max_tokens": max_tokens})
        result = self.completions.pop(0) if self.completions else "[]"
        if isinstance(result, Exception):
            raise result
        return result

    async def generate_image(self, prompt: str) -> str:
        self.image_calls.append(prompt)
        if self.image_error is not None:
            raise self.image_error
        return self.image_url
