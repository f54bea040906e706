"""
Core components of the turnstream service.

The orchestrator, debate scheduler and message service live in their own
modules (`core.orchestrator`, `core.debate`, `core.messages`).
"""

from .accumulator import ToolCallAccumulator
from .config import TurnConfig, get_config, reset_config
from .emitter import BufferingEmitter, EventEmitter, SSEEmitter
from .tools import ToolExecutor

__all__ = [
    "ToolCallAccumulator",
    "EventEmitter",
    "SSEEmitter",
    "BufferingEmitter",
    "ToolExecutor",
    "TurnConfig",
    "get_config",
    "reset_config",
]
