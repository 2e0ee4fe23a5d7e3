"""Pydantic v2 models for Vinho queue jobs, scans, tastings and recommendations."""

import re
from datetime import UTC, date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from vinho.core.enums import JobStatus, RecommendationType


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


MIN_VINTAGE_YEAR = 1900
_YEAR_PATTERN = re.compile(r"\b(19\d{2}|20[0-2]\d)\b")


def parse_vintage_year(value: Any) -> int | None:
    """
    Coerce a model-supplied year into a plausible vintage.

    Strings are searched for a four digit year; anything outside
    1900..current year becomes None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        match = _YEAR_PATTERN.search(value)
        if not match:
            return None
        value = match.group(1)
    try:
        year = int(value)
    except (TypeError, ValueError):
        return None
    if year < MIN_VINTAGE_YEAR or year > datetime.now(UTC).year:
        return None
    return year


def _clean_optional_str(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _split_varietals(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if isinstance(value, list):
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]
    return value


# ============================================================================
# Queue and scan records
# ============================================================================


class QueueJob(BaseModel):
    """A durable unit of label-extraction work."""

    id: str
    user_id: str
    scan_id: str | None = None
    image_url: str
    ocr_text: str | None = None
    idempotency_key: str | None = None
    content_key: str | None = None
    status: JobStatus = JobStatus.PENDING
    retry_count: int = Field(default=0, ge=0)
    error_message: str | None = None
    processed_data: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    processed_at: datetime | None = None


class Scan(BaseModel):
    """A user's label photo and its eventual catalog match."""

    id: str
    user_id: str
    image_path: str
    image_url: str
    ocr_text: str | None = None
    matched_vintage_id: str | None = None
    confidence: float | None = None
    created_at: datetime = Field(default_factory=_utc_now)


class Tasting(BaseModel):
    """A user's record of drinking a specific vintage."""

    id: str
    user_id: str
    vintage_id: str
    rating: int | None = Field(default=None, ge=1, le=5)
    notes: str = ""
    tasted_at: date
    image_url: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)


# ============================================================================
# AI extraction payloads
# ============================================================================


class ExtractedWineData(BaseModel):
    """
    Structured wine attributes read off a label by the AI model.

    Model output is untrusted: unknown keys are dropped, required names
    must be non-empty and numeric fields are range checked.
    """

    model_config = ConfigDict(extra="ignore")

    producer: str = Field(min_length=1)
    wine_name: str = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    year: int | None = None
    country: str | None = None
    region: str | None = None
    varietals: list[str] = Field(default_factory=list)
    abv_percent: float | None = Field(default=None, ge=0.0, le=100.0)
    producer_website: str | None = None
    producer_address: str | None = None
    producer_city: str | None = None
    producer_postal_code: str | None = None
    latitude: float | None = Field(default=None, ge=-90.0, le=90.0)
    longitude: float | None = Field(default=None, ge=-180.0, le=180.0)

    @field_validator("producer", "wine_name", mode="before")
    @classmethod
    def strip_names(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("year", mode="before")
    @classmethod
    def coerce_year(cls, v: Any) -> int | None:
        return parse_vintage_year(v)

    @field_validator(
        "country",
        "region",
        "producer_website",
        "producer_address",
        "producer_city",
        "producer_postal_code",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        return _clean_optional_str(v)

    @field_validator("producer_postal_code", mode="before")
    @classmethod
    def postal_code_as_text(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("varietals", mode="before")
    @classmethod
    def normalize_varietals(cls, v: Any) -> Any:
        return _split_varietals(v)

    @property
    def missing_details(self) -> list[str]:
        """Detail fields that enrichment could fill in."""
        missing = []
        if self.year is None:
            missing.append("year")
        if not self.varietals:
            missing.append("varietals")
        if not self.region:
            missing.append("region")
        if not self.country:
            missing.append("country")
        if not self.producer_website:
            missing.append("producer_website")
        if self.latitude is None and not self.producer_address:
            missing.append("producer_location")
        return missing


class EnrichedDetails(BaseModel):
    """
    Supplementary details returned by the enrichment prompt.

    Out-of-range numbers are dropped rather than rejecting the whole
    answer; the caller only uses fields the label left empty.
    """

    model_config = ConfigDict(extra="ignore")

    year: int | None = None
    varietals: list[str] = Field(default_factory=list)
    region: str | None = None
    country: str | None = None
    abv_percent: float | None = None
    producer_website: str | None = None
    producer_address: str | None = None
    producer_city: str | None = None
    producer_postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    @field_validator("year", mode="before")
    @classmethod
    def coerce_year(cls, v: Any) -> int | None:
        return parse_vintage_year(v)

    @field_validator("varietals", mode="before")
    @classmethod
    def normalize_varietals(cls, v: Any) -> Any:
        return _split_varietals(v)

    @field_validator(
        "region",
        "country",
        "producer_website",
        "producer_address",
        "producer_city",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        return _clean_optional_str(v)

    @field_validator("producer_postal_code", mode="before")
    @classmethod
    def postal_code_as_text(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return _clean_optional_str(v)

    @field_validator("abv_percent", mode="after")
    @classmethod
    def plausible_abv(cls, v: float | None) -> float | None:
        return v if v is not None and 0.0 < v <= 100.0 else None

    @field_validator("latitude", mode="after")
    @classmethod
    def plausible_latitude(cls, v: float | None) -> float | None:
        return v if v is not None and -90.0 <= v <= 90.0 else None

    @field_validator("longitude", mode="after")
    @classmethod
    def plausible_longitude(cls, v: float | None) -> float | None:
        return v if v is not None and -180.0 <= v <= 180.0 else None


# ============================================================================
# Similarity results
# ============================================================================


class SimilarWine(BaseModel):
    """A catalog wine visually similar to something the user has tasted."""

    wine_id: str
    wine_name: str
    producer_name: str
    similarity: float
    image_url: str | None = None
    region: str | None = None
    country: str | None = None
    source_wine_id: str | None = None


class SimilarWinesResponse(BaseModel):
    """Response payload for a user similarity query."""

    similar_wines: list[SimilarWine] = Field(default_factory=list)
    count: int = 0
    based_on_count: int = 0
    recommendation_type: RecommendationType = RecommendationType.NONE
    message: str | None = None
