"""Services for Veritas."""

from .llm_service import LLMService

__all__ = [
    "LLMService",
]
