"""
turnstream - Streaming Turn Orchestrator
Token streaming, tool-call round trips and persona debates over SSE
"""

__version__ = "0.1.0"

# Setup rich logging and tracebacks globally
from .utils.rich_logging import setup_rich_logging
setup_rich_logging()

from .core.config import TurnConfig
from .core.debate import DebateScheduler
from .core.orchestrator import TurnOrchestrator
from .models.contracts import Caller, DebateRequest, TurnRequest

__all__ = [
    "TurnOrchestrator",
    "DebateScheduler",
    "TurnConfig",
    "Caller",
    "TurnRequest",
    "DebateRequest",
]
