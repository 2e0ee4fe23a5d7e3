"""AI client interface and provider abstraction."""

import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from pydantic import BaseModel, ValidationError

from vinho.core.enums import ExtractionFailure
from vinho.core.schema import EnrichedDetails, ExtractedWineData
from vinho.services.ai.prompts import (
    ENRICHMENT_SYSTEM_PROMPT,
    SYSTEM_PROMPT,
    build_enrichment_prompt,
    build_extraction_prompt,
)

logger = logging.getLogger(__name__)


class AIProvider(str, Enum):
    """Supported AI providers."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


class ExtractionResult(BaseModel):
    """Result of a label extraction attempt."""

    success: bool
    model: str
    raw_response: str = ""
    data: ExtractedWineData | None = None
    failure: ExtractionFailure | None = None
    error_message: str | None = None


def strip_code_fences(raw_response: str) -> str:
    """Remove markdown code blocks the model sometimes wraps JSON in."""
    json_str = raw_response.strip()
    if json_str.startswith("```json"):
        json_str = json_str[7:]
    if json_str.startswith("```"):
        json_str = json_str[3:]
    if json_str.endswith("```"):
        json_str = json_str[:-3]
    return json_str.strip()


def parse_extraction(raw_response: str, model: str) -> ExtractionResult:
    """
    Parse and validate a raw extraction response.

    Args:
        raw_response: The model's message content.
        model: Model that produced it.

    Returns:
        ExtractionResult with validated data or a parse_error failure.
    """
    try:
        parsed = json.loads(strip_code_fences(raw_response))
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse error from {model}: {e}")
        return ExtractionResult(
            success=False,
            model=model,
            raw_response=raw_response,
            failure=ExtractionFailure.PARSE_ERROR,
            error_message=f"JSON parse error: {e}",
        )

    if not isinstance(parsed, dict):
        return ExtractionResult(
            success=False,
            model=model,
            raw_response=raw_response,
            failure=ExtractionFailure.PARSE_ERROR,
            error_message=f"Expected a JSON object, got {type(parsed).__name__}",
        )

    try:
        data = ExtractedWineData.model_validate(parsed)
    except ValidationError as e:
        logger.warning(f"Validation error from {model}: {e.error_count()} error(s)")
        return ExtractionResult(
            success=False,
            model=model,
            raw_response=raw_response,
            failure=ExtractionFailure.PARSE_ERROR,
            error_message=f"Validation error: {e}",
        )

    return ExtractionResult(success=True, model=model, raw_response=raw_response, data=data)


class AIClient(ABC):
    """
    Abstract base class for AI providers.

    Providers implement a single JSON completion call; prompt building,
    failure classification and validation are shared.
    """

    provider: AIProvider
    model: str

    @abstractmethod
    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        image_url: str | None = None,
        model: str | None = None,
    ) -> str:
        """
        Run one completion that is expected to return a JSON object.

        Args:
            system_prompt: Instructions for the model.
            user_prompt: The request text.
            image_url: Optional image to attach to the request.
            model: Optional model override for this call.

        Returns:
            The raw message content ("" if the model returned nothing).

        Raises:
            Exception: Whatever the provider SDK raises on API failure.
        """
        pass

    def extract_label(
        self,
        image_url: str,
        ocr_text: str | None = None,
        model: str | None = None,
    ) -> ExtractionResult:
        """
        Extract structured wine data from a label image.

        Args:
            image_url: URL of the label image.
            ocr_text: Optional text recognized on the device.
            model: Optional model override (used for escalation).

        Returns:
            ExtractionResult; failures carry api_error, no_response or parse_error.
        """
        model = model or self.model
        prompt = build_extraction_prompt(ocr_text)

        try:
            raw_response = self.complete_json(SYSTEM_PROMPT, prompt, image_url=image_url, model=model)
            logger.debug(f"Raw AI response: {raw_response[:500]}...")
        except Exception as e:
            logger.error(f"{self.provider.value} API error: {e}")
            return ExtractionResult(
                success=False,
                model=model,
                failure=ExtractionFailure.API_ERROR,
                error_message=f"API error: {e}",
            )

        if not raw_response or not raw_response.strip():
            return ExtractionResult(
                success=False,
                model=model,
                failure=ExtractionFailure.NO_RESPONSE,
                error_message="No response from model",
            )

        return parse_extraction(raw_response, model)

    def enrich_details(
        self,
        data: ExtractedWineData,
        model: str | None = None,
    ) -> EnrichedDetails | None:
        """
        Ask the model for details the label did not show.

        Failures are logged and reported as None; enrichment is optional.

        Args:
            data: Extraction result with missing details.
            model: Optional model override.

        Returns:
            EnrichedDetails, or None if the call or parsing failed.
        """
        model = model or self.model
        try:
            raw_response = self.complete_json(
                ENRICHMENT_SYSTEM_PROMPT, build_enrichment_prompt(data), model=model
            )
            parsed: Any = json.loads(strip_code_fences(raw_response or "{}"))
            return EnrichedDetails.model_validate(parsed)
        except Exception as e:
            logger.warning(f"Enrichment failed for '{data.producer} / {data.wine_name}': {e}")
            return None


def get_ai_client(
    provider: AIProvider | str,
    api_key: str,
    model: str | None = None,
    temperature: float = 0.2,
) -> AIClient:
    """
    Factory function to get an AI client for the specified provider.

    Args:
        provider: The AI provider to use.
        api_key: The API key for the provider.
        model: Optional model name override.
        temperature: Sampling temperature for every call.

    Returns:
        An AIClient instance for the specified provider.

    Raises:
        ValueError: If the provider is not supported.
    """
    if isinstance(provider, str):
        provider = AIProvider(provider.lower())

    if provider == AIProvider.ANTHROPIC:
        from vinho.services.ai.providers.anthropic import AnthropicClient

        return AnthropicClient(api_key=api_key, model=model, temperature=temperature)
    elif provider == AIProvider.OPENAI:
        from vinho.services.ai.providers.openai import OpenAIClient

        return OpenAIClient(api_key=api_key, model=model, temperature=temperature)
    else:
        raise ValueError(f"Unsupported AI provider: {provider}")
