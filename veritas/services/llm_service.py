"""LLM service wrapper for OpenAI API."""

import logging
from typing import Optional

from openai import OpenAI

from ..config import settings
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class LLMService:
    """Service wrapper for OpenAI API interactions."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ):
        """Initialize the LLM service.

        Args:
            api_key: OpenAI API key (defaults to settings)
            model: Model name (defaults to settings)
            temperature: Temperature for generation (defaults to settings)
            max_tokens: Completion token limit (defaults to settings)
        """
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.model = model or settings.LLM_MODEL
        self.temperature = temperature if temperature is not None else settings.LLM_TEMPERATURE
        self.max_tokens = max_tokens or settings.LLM_MAX_TOKENS

        if not self.api_key:
            raise ConfigurationError(
                "OpenAI API key is required. Set OPENAI_API_KEY environment variable."
            )

        self.client = OpenAI(api_key=self.api_key)

    def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = False
    ) -> str:
        """Generate a text response from the LLM.

        Args:
            system_prompt: System message for context
            user_prompt: User message/query
            temperature: Override default temperature
            max_tokens: Maximum tokens in response
            json_mode: Ask the API to constrain output to a JSON object

        Returns:
            Generated text response (empty string if the model returned none)
        """
        request = dict(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt}
            ],
            temperature=temperature if temperature is not None else self.temperature,
            max_tokens=max_tokens or self.max_tokens
        )
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        try:
            response = self.client.chat.completions.create(**request)
            return response.choices[0].message.content or ""

        except Exception as e:
            logger.error(f"LLM generation failed: {e}")
            raise
