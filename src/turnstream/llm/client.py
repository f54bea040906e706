"""
LLM Client Wrapper - Async interface to LiteLLM.

Normalizes streamed chunks into StreamDelta values so the orchestrator
never touches provider-specific response objects.
"""

import inspect
import time
from collections.abc import AsyncIterator
from typing import Any

import litellm

from ..core.config import TurnConfig, get_config
from ..exceptions import UpstreamError
from ..models.contracts import StreamDelta, ToolCallFragment
from ..utils.logging import get_logger

logger = get_logger(__name__)


class LLMClient:
    """
    Async LLM client using LiteLLM for multi-provider support.

    Example:
        client = LLMClient(default_model="openai/gpt-4o-mini")

        async for delta in client.stream_chat(messages, tools=schemas, max_tokens=1000):
            if delta.text:
                print(delta.text, end="")
    """

    def __init__(
        self,
        default_model: str = "openai/gpt-4o-mini",
        api_key: str | None = None,
        api_base: str | None = None,
        image_model: str = "dall-e-3",
        image_size: str = "1024x1024",
        image_quality: str = "standard",
        timeout: int = 60,
    ):
        """
        Initialize LLM client.

        Args:
            default_model: Default model to use (LiteLLM format: "provider/model")
            api_key: Optional API key (can also use provider env vars)
            api_base: Optional OpenAI-compatible base URL
            image_model: Model for image generation
            image_size: Generated image size
            image_quality: Generated image quality
            timeout: Request timeout in seconds
        """
        self.default_model = default_model
        self.api_key = api_key
        self.api_base = api_base
        self.image_model = image_model
        self.image_size = image_size
        self.image_quality = image_quality
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: TurnConfig) -> "LLMClient":
        return cls(
            default_model=config.chat_model,
            api_key=config.api_key,
            api_base=config.api_base,
            image_model=config.image_model,
            image_size=config.image_size,
            image_quality=config.image_quality,
        )

    def _connection_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"timeout": self.timeout}
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        return kwargs

    async def stream_chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int | None = None,
        temperature: float = 0.7,
        model: str | None = None,
    ) -> AsyncIterator[StreamDelta]:
        """
        Open a streaming completion and yield normalized deltas.

        The upstream stream is closed on every exit path, including when the
        consumer stops iterating early.

        Raises:
            UpstreamError: If the call cannot be opened or fails mid-stream
        """
        model = model or self.default_model
        completion_kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": True,
            "temperature": temperature,
            **self._connection_kwargs(),
        }
        if max_tokens:
            completion_kwargs["max_tokens"] = max_tokens
        if tools:
            completion_kwargs["tools"] = tools

        try:
            stream = await litellm.acompletion(**completion_kwargs)
        except Exception as e:
            raise self._wrap(e, model, "LLM stream failed to open") from e

        try:
            async for chunk in stream:
                delta = _normalize_chunk(chunk)
                if delta is not None:
                    yield delta
        except UpstreamError:
            raise
        except Exception as e:
            raise self._wrap(e, model, "LLM stream failed") from e
        finally:
            await _close_stream(stream)

    async def complete(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float = 0.7,
    ) -> str:
        """
        Call the model once without streaming.

        Returns:
            The reply text (empty string when the provider returned none)

        Raises:
            UpstreamError: If the call fails
        """
        model = model or self.default_model
        start_time = time.perf_counter()

        completion_kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            **self._connection_kwargs(),
        }
        if max_tokens:
            completion_kwargs["max_tokens"] = max_tokens

        try:
            response = await litellm.acompletion(**completion_kwargs)
        except Exception as e:
            raise self._wrap(e, model, "LLM completion failed") from e

        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.debug("llm_completion_finished", model=model, latency_ms=round(latency_ms, 1))
        return response.choices[0].message.content or ""

    async def generate_image(self, prompt: str) -> str:
        """
        Generate one image.

        Returns:
            URL of the generated image

        Raises:
            UpstreamError: If generation fails or returns no image
        """
        try:
            response = await litellm.aimage_generation(
                model=self.image_model,
                prompt=prompt,
                n=1,
                size=self.image_size,
                quality=self.image_quality,
                **self._connection_kwargs(),
            )
        except Exception as e:
            raise self._wrap(e, self.image_model, "Image generation failed") from e

        data = getattr(response, "data", None) or []
        first = data[0] if data else None
        url = first.get("url") if isinstance(first, dict) else getattr(first, "url", None)
        if not url:
            raise UpstreamError(
                "Image generation returned no image", details={"model": self.image_model}
            )
        return url

    @staticmethod
    def _wrap(error: Exception, model: str, context: str) -> UpstreamError:
        return UpstreamError(
            str(error) or context,
            details={"model": model, "error_type": type(error).__name__, "context": context},
            provider_status=getattr(error, "status_code", None),
        )


def _normalize_chunk(chunk: Any) -> StreamDelta | None:
    choices = getattr(chunk, "choices", None)
    if not choices:
        return None
    delta = getattr(choices[0], "delta", None)
    if delta is None:
        return None

    text = getattr(delta, "content", None) or None
    fragments = []
    for tc in getattr(delta, "tool_calls", None) or []:
        function = getattr(tc, "function", None)
        fragments.append(
            ToolCallFragment(
                index=getattr(tc, "index", None) or 0,
                id=getattr(tc, "id", None),
                name=getattr(function, "name", None) if function else None,
                arguments=getattr(function, "arguments", None) if function else None,
            )
        )

    if text is None and not fragments:
        return None
    return StreamDelta(text=text, tool_calls=fragments)


async def _close_stream(stream: Any) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
        return
    close = getattr(stream, "close", None)
    if close is not None:
        result = close()
        if inspect.isawaitable(result):
            await result


# Global client instance
_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    """Get the process-wide LLM client, creating it from the global config on first use."""
    global _client
    if _client is None:
        _client = LLMClient.from_config(get_config())
    return _client


def reset_llm_client() -> None:
    """Reset the global client (mainly for testing)."""
    global _client
    _client = None
