"""
Tests for ToolExecutor and the image generation tool.

Tests cover:
- Registration and schema export
- Successful execution and result rendering
- Unknown tools, bad arguments, timeouts and tool failures
- Failed and denied results
"""

import asyncio

import pytest

from turnstream.core.tools import ToolExecutor
from turnstream.exceptions import ToolExecutionError, UpstreamError
from turnstream.models.contracts import FinalizedToolCall, GeneratedImage, ToolDefinition, ToolParameter
from turnstream.tools import IMAGE_TOOL_NAME, build_default_tools, create_image_generation_tool

from helpers import IMAGE_URL, FakeLLMClient


def make_call(name, arguments=None, parse_error=None, call_id="call_1"):
    return FinalizedToolCall(
        index=0,
        id=call_id,
        name=name,
        raw_arguments="",
        arguments=arguments if parse_error is None else None,
        parse_error=parse_error,
    )


class TestToolExecutor:
    """Tests for ToolExecutor class."""

    def setup_method(self):
        """Set up test fixtures."""
        self.executor = ToolExecutor(timeout_seconds=1.0)

        @self.executor.register_async_tool(
            ToolDefinition(
                name="lookup",
                description="Look something up",
                parameters=[
                    ToolParameter(name="query", type="string", description="Query"),
                    ToolParameter(name="limit", type="number", description="Max", required=False),
                ],
                failure_message="Lookup failed",
            )
        )
        async def lookup(query: str, limit: int = 3) -> dict:
            if query == "explode":
                raise RuntimeError("backend down")
            if query == "slow":
                await asyncio.sleep(5)
            return {"query": query, "limit": limit}

    def test_registration(self):
        """Test that registered tools are discoverable."""
        assert self.executor.get_definition("lookup").name == "lookup"
        assert self.executor.get_definition("missing") is None

    def test_schema_export(self):
        """Test the function schema advertised to the model."""
        [schema] = self.executor.schemas()

        assert schema["type"] == "function"
        function = schema["function"]
        assert function["name"] == "lookup"
        assert function["parameters"]["type"] == "object"
        assert set(function["parameters"]["properties"]) == {"query", "limit"}
        assert function["parameters"]["required"] == ["query"]

    @pytest.mark.asyncio
    async def test_successful_execution(self):
        """Test that a dict result is rendered as JSON for the model."""
        result = await self.executor.execute(make_call("lookup", {"query": "cats"}))

        assert result.success
        assert result.tool_call_id == "call_1"
        assert result.data == {"query": "cats", "limit": 3}
        assert result.content == '{"query": "cats", "limit": 3}'
        assert result.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        with pytest.raises(ToolExecutionError) as exc_info:
            await self.executor.execute(make_call("missing", {}))
        assert exc_info.value.tool_name == "missing"

    @pytest.mark.asyncio
    async def test_parse_error_not_executed(self):
        with pytest.raises(ToolExecutionError) as exc_info:
            await self.executor.execute(make_call("lookup", parse_error="Invalid JSON arguments: x"))
        assert exc_info.value.message == "Invalid JSON arguments: x"

    @pytest.mark.asyncio
    async def test_unexpected_argument(self):
        with pytest.raises(ToolExecutionError):
            await self.executor.execute(make_call("lookup", {"q": "typo"}))

    @pytest.mark.asyncio
    async def test_tool_exception_wrapped(self):
        with pytest.raises(ToolExecutionError) as exc_info:
            await self.executor.execute(make_call("lookup", {"query": "explode"}))
        assert exc_info.value.details["error_type"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_timeout(self):
        executor = ToolExecutor(timeout_seconds=0.01)
        executor.register_async_tool(self.executor.get_definition("lookup"))(
            self.executor._registry["lookup"]
        )

        with pytest.raises(ToolExecutionError) as exc_info:
            await executor.execute(make_call("lookup", {"query": "slow"}))
        assert "timeout" in exc_info.value.message

    def test_failed_result(self):
        result = self.executor.failed_result(make_call("lookup", {}), "boom")

        assert not result.success
        assert result.content == "Lookup failed"
        assert result.data == {"error": "boom"}
        assert result.to_message() == {"role": "tool", "tool_call_id": "call_1", "content": "Lookup failed"}

    def test_failed_result_for_unknown_tool(self):
        result = self.executor.failed_result(make_call("ghost", {}))
        assert result.content == "Unknown tool: ghost"

    def test_denied_result(self):
        result = self.executor.denied_result(make_call("lookup", {}))

        assert result.denied
        assert not result.success
        assert result.content == "This tool is not available on your plan."


class TestImageGenerationTool:
    """Tests for the generate_image tool."""

    def setup_method(self):
        """Set up test fixtures."""
        self.llm = FakeLLMClient()
        self.executor = build_default_tools(self.llm, _Config())

    def test_definition(self):
        definition = create_image_generation_tool()

        assert definition.name == IMAGE_TOOL_NAME
        assert definition.requires_paid_plan
        assert definition.feature == "image_generation"
        assert definition.failure_message == "Failed to generate image"
        assert definition.to_openai()["function"]["parameters"]["required"] == ["prompt"]

    def test_only_image_tool_registered(self):
        assert [s["function"]["name"] for s in self.executor.schemas()] == ["generate_image"]
        assert self.executor.timeout_seconds == 7.5

    @pytest.mark.asyncio
    async def test_generates_image(self):
        result = await self.executor.execute(make_call(IMAGE_TOOL_NAME, {"prompt": "a fox"}))

        assert isinstance(result.data, GeneratedImage)
        assert result.data.url == IMAGE_URL
        assert result.data.prompt == "a fox"
        assert result.content == f"Image generated successfully: {IMAGE_URL}"
        assert self.llm.image_calls == ["a fox"]

    @pytest.mark.asyncio
    async def test_provider_failure(self):
        self.llm.image_error = UpstreamError("content policy")

        with pytest.raises(ToolExecutionError):
            await self.executor.execute(make_call(IMAGE_TOOL_NAME, {"prompt": "x"}))


class _Config:
    tool_timeout_seconds = 7.5
