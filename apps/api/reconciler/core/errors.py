"""Error taxonomy for the inbound reconciliation pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for pipeline errors that map to an HTTP status."""

    status_code: int = 500

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AuthenticationError(PipelineError):
    """Missing or invalid webhook signature. Raised before any side effect."""

    status_code = 401


class PayloadValidationError(PipelineError):
    """Malformed payload or missing identifying fields."""

    status_code = 400


class TransientExternalError(PipelineError):
    """Timeout, rate limit or 5xx from an outbound service. Safe to retry."""

    status_code = 503


class ExtractionFailure(PipelineError):
    """Structured extraction could not produce a valid result."""

    status_code = 502


class SchemaViolation(ExtractionFailure):
    """Extraction response did not match the schema, even after the fallback parse."""


class PersistenceError(PipelineError):
    """A critical database write failed."""

    status_code = 500
