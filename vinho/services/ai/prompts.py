"""Prompt templates for label extraction and detail enrichment."""

import json

from vinho.core.schema import ExtractedWineData

PROMPT_VERSION = "2.0"

# JSON Schema for the extraction output (simplified for AI)
LABEL_JSON_SCHEMA = {
    "type": "object",
    "required": ["producer", "wine_name", "confidence"],
    "properties": {
        "producer": {"type": "string", "description": "Winery/producer name exactly as on the label"},
        "wine_name": {"type": "string", "description": "Wine/cuvée name; use the grape or appellation if there is no fanciful name"},
        "year": {"type": ["integer", "null"], "description": "Vintage year, null for non-vintage or unreadable"},
        "country": {"type": ["string", "null"]},
        "region": {"type": ["string", "null"], "description": "Region or appellation"},
        "varietals": {"type": "array", "items": {"type": "string"}, "description": "Grape varieties"},
        "abv_percent": {"type": ["number", "null"], "description": "Alcohol by volume, e.g. 13.5"},
        "producer_website": {"type": ["string", "null"]},
        "producer_address": {"type": ["string", "null"]},
        "producer_city": {"type": ["string", "null"]},
        "producer_postal_code": {"type": ["string", "null"]},
        "latitude": {"type": ["number", "null"]},
        "longitude": {"type": ["number", "null"]},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1, "description": "How sure you are of producer and wine name"},
    },
}

SYSTEM_PROMPT = """You are a wine label reader. You receive a photo of a wine bottle label and, when available, text already recognized from it.

RULES:
1. Read only what is on the label; do not guess a vintage that is not printed
2. Prefer the OCR text for spelling, and the image for layout and context
3. Use null for any field you cannot determine
4. Set confidence between 0 and 1 for the producer and wine name together

Output ONLY a JSON object matching this schema. No additional text or explanation.

SCHEMA:
""" + json.dumps(LABEL_JSON_SCHEMA, indent=2)

EXTRACTION_PROMPT_TEMPLATE = """Extract the wine details from this label.

{ocr_section}
Return the JSON object now."""

ENRICHMENT_SYSTEM_PROMPT = """You are a wine reference assistant. Given a producer and wine, supply commonly known details about it.

RULES:
1. Only answer with details you are confident are correct for this specific wine
2. Use null (or an empty list) for anything you are unsure of
3. The producer address and coordinates must be those of the winery where this wine is made, in its region, not a sales office
4. If only the town is known, give the town and its approximate coordinates
5. Output ONLY a JSON object with keys: year, varietals, region, country, abv_percent,
   producer_website, producer_address, producer_city, producer_postal_code, latitude, longitude"""

ENRICHMENT_PROMPT_TEMPLATE = """Producer: {producer}
Wine: {wine_name}
Known vintage: {year}
Known region: {region}
Known country: {country}
Known website: {website}
Known address: {address}

Fill in the missing details: {missing}."""


def build_extraction_prompt(ocr_text: str | None = None) -> str:
    """
    Build the label extraction prompt.

    Args:
        ocr_text: Text recognized on the device, included verbatim if present.

    Returns:
        The formatted prompt string.
    """
    ocr_section = ""
    if ocr_text and ocr_text.strip():
        ocr_section = f"TEXT RECOGNIZED ON THE LABEL:\n{ocr_text.strip()}\n"

    return EXTRACTION_PROMPT_TEMPLATE.format(ocr_section=ocr_section)


def build_enrichment_prompt(data: ExtractedWineData) -> str:
    """
    Build the enrichment prompt for an incomplete extraction.

    Args:
        data: Extraction result with at least one detail missing.

    Returns:
        The formatted prompt string.
    """
    return ENRICHMENT_PROMPT_TEMPLATE.format(
        producer=data.producer,
        wine_name=data.wine_name,
        year=data.year or "unknown",
        region=data.region or "unknown",
        country=data.country or "unknown",
        website=data.producer_website or "unknown",
        address=data.producer_address or "unknown",
        missing=", ".join(data.missing_details),
    )
