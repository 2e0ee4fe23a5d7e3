"""Exceptions raised by the ingestion pipeline and similarity engine."""

from vinho.core.enums import ExtractionFailure


class VinhoError(Exception):
    """Base class for all Vinho errors."""


class DuplicateSubmissionError(VinhoError):
    """Raised when a job is submitted with an idempotency key already in use."""

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"A job with idempotency key '{idempotency_key}' already exists")


class InvalidImageError(VinhoError):
    """Raised when an uploaded label image is missing or cannot be decoded."""


class ExtractionError(VinhoError):
    """Raised when the AI model call does not yield valid wine data."""

    def __init__(self, failure: ExtractionFailure, message: str):
        self.failure = failure
        self.message = message
        super().__init__(f"{failure.value}: {message}")


class SimilarityServiceError(VinhoError):
    """Raised when the vector index or its backing store is unavailable."""


class AuthenticationError(VinhoError):
    """Raised when a request carries no valid user identity."""

    def __init__(self, reason: str = "Not authenticated"):
        self.reason = reason
        super().__init__(reason)
