"""AI provider implementations."""

from vinho.services.ai.providers.anthropic import AnthropicClient
from vinho.services.ai.providers.openai import OpenAIClient

__all__ = ["AnthropicClient", "OpenAIClient"]
