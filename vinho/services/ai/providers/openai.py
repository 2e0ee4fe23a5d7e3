"""OpenAI AI provider implementation."""

import logging
from typing import Any

from vinho.services.ai.client import AIClient, AIProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
MAX_TOKENS = 1024


class OpenAIClient(AIClient):
    """OpenAI GPT AI client."""

    provider = AIProvider.OPENAI

    def __init__(self, api_key: str, model: str | None = None, temperature: float = 0.2):
        """
        Initialize the OpenAI client.

        Args:
            api_key: OpenAI API key.
            model: Model name (defaults to gpt-4o-mini).
            temperature: Sampling temperature.
        """
        try:
            import openai
        except ImportError:
            raise ImportError(
                "openai package is required. Install with: pip install openai"
            )

        self.client = openai.OpenAI(api_key=api_key)
        self.model = model or DEFAULT_MODEL
        self.temperature = temperature

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        image_url: str | None = None,
        model: str | None = None,
    ) -> str:
        """Run a JSON-mode chat completion, attaching the image if given."""
        content: Any = user_prompt
        if image_url:
            content = [
                {"type": "text", "text": user_prompt},
                {"type": "image_url", "image_url": {"url": image_url}},
            ]

        response = self.client.chat.completions.create(
            model=model or self.model,
            max_tokens=MAX_TOKENS,
            temperature=self.temperature,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": content},
            ],
            response_format={"type": "json_object"},
        )

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
