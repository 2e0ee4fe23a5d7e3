"""AI extraction services for Vinho."""

from vinho.services.ai.client import AIClient, AIProvider, ExtractionResult, get_ai_client

__all__ = [
    "AIClient",
    "AIProvider",
    "ExtractionResult",
    "get_ai_client",
]
