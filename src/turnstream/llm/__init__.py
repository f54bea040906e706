"""
LLM module - Async interface to language models via LiteLLM.
"""

from .client import LLMClient, get_llm_client, reset_llm_client

__all__ = [
    "LLMClient",
    "get_llm_client",
    "reset_llm_client",
]
