"""Enums for queue jobs, extraction outcomes and recommendations."""

from enum import Enum


class JobStatus(str, Enum):
    """Lifecycle state of a label-scan queue job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ExtractionFailure(str, Enum):
    """Why an AI extraction attempt produced no usable data."""

    API_ERROR = "api_error"
    NO_RESPONSE = "no_response"
    PARSE_ERROR = "parse_error"


class RecommendationType(str, Enum):
    """Which tasting history a similarity result was derived from."""

    PERSONALIZED = "personalized"
    YOUR_FAVORITES = "your_favorites"
    NONE = "none"
