"""
Image generation tool, gated to paid plans.
"""

from typing import TYPE_CHECKING

from ..models.contracts import GeneratedImage, ToolDefinition, ToolParameter

if TYPE_CHECKING:
    from ..core.tools import ToolExecutor
    from ..llm.client import LLMClient

IMAGE_TOOL_NAME = "generate_image"


def create_image_generation_tool() -> ToolDefinition:
    return ToolDefinition(
        name=IMAGE_TOOL_NAME,
        description=(
            "Generate an image based on a text description. Use this when the user asks "
            "to create, generate, draw, or make an image."
        ),
        parameters=[
            ToolParameter(
                name="prompt",
                type="string",
                description="Detailed description of the image to generate",
                required=True,
            )
        ],
        requires_paid_plan=True,
        feature="image_generation",
        upgrade_message=(
            "Image generation is available for Plus and Pro subscribers only. "
            "Upgrade to unlock this feature!"
        ),
        denial_message=(
            "Image generation is only available for Plus and Pro subscribers. "
            "Please upgrade to use this feature."
        ),
        failure_message="Failed to generate image",
    )


def register_image_generation(executor: "ToolExecutor", llm: "LLMClient") -> None:
    """Register `generate_image`, backed by the client's image endpoint."""

    @executor.register_async_tool(create_image_generation_tool())
    async def generate_image(prompt: str) -> GeneratedImage:
        url = await llm.generate_image(prompt)
        return GeneratedImage(url=url, prompt=prompt)
