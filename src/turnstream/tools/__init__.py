"""
Tools advertised to the model during a turn.
"""

from typing import TYPE_CHECKING

from ..core.tools import ToolExecutor
from .image_generation import (
    IMAGE_TOOL_NAME,
    create_image_generation_tool,
    register_image_generation,
)

if TYPE_CHECKING:
    from ..core.config import TurnConfig
    from ..llm.client import LLMClient


def build_default_tools(llm: "LLMClient", config: "TurnConfig") -> ToolExecutor:
    """The fixed registry used by turns: image generation only."""
    executor = ToolExecutor(timeout_seconds=config.tool_timeout_seconds)
    register_image_generation(executor, llm)
    return executor


__all__ = [
    "IMAGE_TOOL_NAME",
    "build_default_tools",
    "create_image_generation_tool",
    "register_image_generation",
]
