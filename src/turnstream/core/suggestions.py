"""
Follow-up suggestion generation.

Independent of the turn's outcome: the request is retried on upstream
failure, and `safe_generate` never raises.
"""

import json

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..exceptions import UpstreamError
from ..llm.client import LLMClient
from ..utils.error_handler import ErrorHandler
from ..utils.logging import get_logger
from .config import TurnConfig

logger = get_logger(__name__)

MAX_SUGGESTIONS = 3
REPLY_EXCERPT_CHARS = 300

SUGGESTION_PROMPT = (
    "Based on this conversation, suggest 3 brief follow-up questions the user might ask "
    "next. Return ONLY a JSON array of strings, no other text:\n\n"
    "User: {question}\n"
    "Assistant: {answer}...\n\n"
    'Format: ["question 1", "question 2", "question 3"]'
)


def parse_suggestions(text: str) -> list[str]:
    """
    Parse a model reply into at most three non-blank suggestions.

    Anything that is not a JSON array yields an empty list.
    """
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return []
    if not isinstance(parsed, list):
        return []
    return [s for s in parsed[:MAX_SUGGESTIONS] if isinstance(s, str) and s.strip()]


class SuggestionGenerator:
    def __init__(self, llm: LLMClient, config: TurnConfig):
        self.llm = llm
        self.config = config

    async def _request(self, prompt: str) -> str:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.suggestion_max_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(UpstreamError),
            reraise=True,
        ):
            with attempt:
                return await self.llm.complete(
                    messages=[{"role": "user", "content": prompt}],
                    model=self.config.effective_suggestion_model,
                    max_tokens=self.config.suggestion_max_tokens,
                    temperature=self.config.suggestion_temperature,
                )
        return "[]"

    async def generate(self, question: str, answer: str) -> list[str]:
        """
        Ask for follow-up questions to a finished turn.

        Raises:
            UpstreamError: If every attempt failed
        """
        prompt = SUGGESTION_PROMPT.format(question=question, answer=answer[:REPLY_EXCERPT_CHARS])
        return parse_suggestions(await self._request(prompt))

    async def safe_generate(self, question: str, answer: str) -> list[str]:
        """Like `generate`, bounded by the configured timeout; returns [] on any failure."""
        return await ErrorHandler.handle_with_fallback(
            lambda: self.generate(question, answer),
            fallback=[],
            error_msg="suggestions_failed",
            timeout=self.config.suggestion_timeout_seconds,
        )
