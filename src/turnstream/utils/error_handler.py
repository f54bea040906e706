"""Centralized error handling utilities for best-effort async steps"""
import asyncio
import time
from collections.abc import Awaitable, Callable
from contextlib import contextmanager
from typing import TypeVar

from ..utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class ErrorHandler:
    """Error handling with logging and fallbacks"""

    @staticmethod
    async def handle_with_fallback(
        operation: Callable[[], Awaitable[T]],
        fallback: T,
        error_msg: str,
        timeout: float | None = None,
        log_level: str = "warning",
    ) -> T:
        """
        Await operation, returning the fallback on any error or timeout.

        Cancellation of the calling task is not swallowed.

        Example:
            suggestions = await ErrorHandler.handle_with_fallback(
                lambda: generator.generate(question, answer),
                fallback=[],
                error_msg="suggestions_failed",
                timeout=10.0,
            )
        """
        try:
            if timeout is None:
                return await operation()
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError:
            getattr(logger, log_level)(error_msg, reason="timeout", timeout=timeout)
            return fallback
        except Exception as e:
            getattr(logger, log_level)(error_msg, error=str(e), error_type=type(e).__name__)
            return fallback

    @staticmethod
    @contextmanager
    def log_duration(operation_name: str, log_level: str = "debug", **context):
        """
        Context manager to log operation duration.

        Example:
            with ErrorHandler.log_duration("stream_primary"):
                await relay(...)
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            getattr(logger, log_level)(
                f"{operation_name}_finished", duration_ms=round(duration_ms, 1), **context
            )
