"""Anthropic (Claude) AI provider implementation."""

import logging
from typing import Any

from vinho.services.ai.client import AIClient, AIProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
MAX_TOKENS = 1024


def _image_source(image_url: str) -> dict[str, Any]:
    """Build an image source block from an http(s) or data: URL."""
    if image_url.startswith("data:"):
        header, _, data = image_url.partition(",")
        media_type = header[len("data:"):].split(";")[0] or "image/jpeg"
        return {"type": "base64", "media_type": media_type, "data": data}
    return {"type": "url", "url": image_url}


class AnthropicClient(AIClient):
    """Anthropic Claude AI client."""

    provider = AIProvider.ANTHROPIC

    def __init__(self, api_key: str, model: str | None = None, temperature: float = 0.2):
        """
        Initialize the Anthropic client.

        Args:
            api_key: Anthropic API key.
            model: Model name (defaults to claude-sonnet-4-20250514).
            temperature: Sampling temperature.
        """
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "anthropic package is required. Install with: pip install anthropic"
            )

        self.client = anthropic.Anthropic(api_key=api_key)
        self.model = model or DEFAULT_MODEL
        self.temperature = temperature

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        image_url: str | None = None,
        model: str | None = None,
    ) -> str:
        """Run a messages call, attaching the image if given."""
        content: list[dict[str, Any]] = []
        if image_url:
            content.append({"type": "image", "source": _image_source(image_url)})
        content.append({"type": "text", "text": user_prompt})

        response = self.client.messages.create(
            model=model or self.model,
            max_tokens=MAX_TOKENS,
            temperature=self.temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": content}],
        )

        text_blocks = [block.text for block in response.content if getattr(block, "type", "") == "text"]
        raw_response = "".join(text_blocks)
        logger.info(f"AI extraction received response ({len(raw_response)} chars)")
        return raw_response
