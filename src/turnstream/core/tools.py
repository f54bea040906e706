"""
Tool Executor

Holds the tool registry advertised to the model and executes finalized
tool calls with a timeout.
"""

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from ..exceptions import ToolExecutionError
from ..models.contracts import FinalizedToolCall, ToolDefinition, ToolResult
from ..utils.logging import get_logger

logger = get_logger(__name__)

AsyncTool = Callable[..., Awaitable[Any]]


class ToolExecutor:
    """
    Registry of async tools keyed by function name.

    Example:
        executor = ToolExecutor(timeout_seconds=60)

        @executor.register_async_tool(ToolDefinition(name="echo", description="Echo text"))
        async def echo(text: str) -> str:
            return text

        result = await executor.execute(call)
    """

    def __init__(self, timeout_seconds: float = 60.0):
        self.timeout_seconds = timeout_seconds
        self._registry: dict[str, AsyncTool] = {}
        self._definitions: dict[str, ToolDefinition] = {}

    def register_async_tool(self, definition: ToolDefinition) -> Callable[[AsyncTool], AsyncTool]:
        """Decorator to register an async tool under `definition.name`."""
        def decorator(func: AsyncTool) -> AsyncTool:
            self._registry[definition.name] = func
            self._definitions[definition.name] = definition
            return func
        return decorator

    def get_definition(self, name: str) -> ToolDefinition | None:
        return self._definitions.get(name)

    def schemas(self) -> list[dict[str, Any]]:
        """OpenAI-format function schemas for every registered tool."""
        return [definition.to_openai() for definition in self._definitions.values()]

    async def execute(self, call: FinalizedToolCall) -> ToolResult:
        """
        Execute a finalized tool call.

        Args:
            call: Tool call with parsed arguments

        Returns:
            Successful ToolResult; `content` is what the model sees

        Raises:
            ToolExecutionError: Unknown tool, bad arguments, timeout or tool failure
        """
        func = self._registry.get(call.name)
        if func is None:
            raise ToolExecutionError(f"Tool '{call.name}' not found in registry", tool_name=call.name)
        if not call.ok:
            raise ToolExecutionError(
                call.parse_error or "Invalid arguments", tool_name=call.name,
                details={"raw_arguments": call.raw_arguments},
            )

        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(func(**(call.arguments or {})), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ToolExecutionError(
                f"Tool execution exceeded {self.timeout_seconds}s timeout",
                tool_name=call.name,
            ) from e
        except TypeError as e:
            # Argument names do not match the tool signature
            raise ToolExecutionError(str(e), tool_name=call.name) from e
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(
                str(e), tool_name=call.name, details={"error_type": type(e).__name__}
            ) from e

        execution_time = (time.perf_counter() - start) * 1000
        logger.info("tool_executed", tool_name=call.name, execution_time_ms=round(execution_time, 1))

        return ToolResult(
            tool_call_id=call.id,
            tool_name=call.name,
            success=True,
            content=_render(result),
            data=result,
            execution_time_ms=execution_time,
            timestamp=datetime.now(),
        )

    def failed_result(self, call: FinalizedToolCall, reason: str | None = None) -> ToolResult:
        """Tool response recorded when a call could not be executed."""
        definition = self._definitions.get(call.name)
        content = definition.failure_message if definition else f"Unknown tool: {call.name}"
        return ToolResult(
            tool_call_id=call.id,
            tool_name=call.name,
            success=False,
            content=content,
            data={"error": reason} if reason else None,
        )

    def denied_result(self, call: FinalizedToolCall) -> ToolResult:
        definition = self._definitions[call.name]
        return ToolResult(
            tool_call_id=call.id,
            tool_name=call.name,
            success=False,
            denied=True,
            content=definition.denial_message,
        )


def _render(result: Any) -> str:
    if isinstance(result, (dict, list)):
        return json.dumps(result, default=str)
    return str(result)
