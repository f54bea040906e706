"""
Utility modules for the turnstream service.
"""

from .error_handler import ErrorHandler
from .logging import bind_turn_context, clear_turn_context, get_logger, setup_logging

__all__ = [
    "get_logger",
    "setup_logging",
    "bind_turn_context",
    "clear_turn_context",
    "ErrorHandler",
]
