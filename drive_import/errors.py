"""Error hierarchy for drive_import."""
from __future__ import annotations

from typing import Any, Optional


class ImporterError(RuntimeError):
    """Base class for all drive_import errors."""


class ValidationError(ImporterError):
    """Malformed source reference or missing required configuration."""


class StorageError(ImporterError):
    """Record store unavailable or corrupt."""


class SourceListingError(ImporterError):
    """A source listing attempt failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteServiceError(ImporterError):
    """
    Uniform error raised by the remote importer.

    ``status_code`` is None for transport failures (connection refused,
    timeouts) where no HTTP response was received.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"({self.status_code}) {self.message}"


class TransientError(RemoteServiceError):
    """Retryable failure: network error, rate limit or 5xx."""


class PermanentError(RemoteServiceError):
    """Non-retryable failure: any 4xx other than a rate limit."""
