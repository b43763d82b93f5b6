"""Error classification and retry decisions for remote calls."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

import asyncio
import logging

import httpx

from drive_import.errors import PermanentError, RemoteServiceError, TransientError
from drive_import.models import UploadOptions

logger = logging.getLogger(__name__)


RetryAction = Literal["retry", "fail"]

RATE_LIMITED = 429


def classify_error(exc: BaseException) -> RemoteServiceError:
    """
    Normalize any collaborator failure into TransientError or PermanentError.

    Transient: no HTTP status (network failure, timeout), 429, or 5xx.
    Permanent: every other status code.
    """
    if isinstance(exc, (TransientError, PermanentError)):
        return exc
    if isinstance(exc, RemoteServiceError):
        code = exc.status_code
        if code is None or code == RATE_LIMITED or code >= 500:
            return TransientError(exc.message, status_code=code, payload=exc.payload)
        return PermanentError(exc.message, status_code=code, payload=exc.payload)
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, ConnectionError)):
        return TransientError(f"{type(exc).__name__}: {exc}")
    return PermanentError(f"{type(exc).__name__}: {exc}")


@dataclass(frozen=True)
class RetryDecision:
    """What to do with a record after a failed attempt."""

    action: RetryAction
    attempt: int
    delay: float
    error: RemoteServiceError

    @property
    def should_retry(self) -> bool:
        return self.action == "retry"


class ResolveRetryUseCase:
    """Decide between another attempt (with linear backoff) and a terminal failure."""

    def __init__(self, options: UploadOptions):
        self._options = options

    def execute(self, exc: BaseException, attempt: int) -> RetryDecision:
        error = classify_error(exc)
        if isinstance(error, TransientError) and attempt < self._options.max_retries:
            return RetryDecision(
                action="retry",
                attempt=attempt,
                delay=self._options.backoff(attempt),
                error=error,
            )
        return RetryDecision(action="fail", attempt=attempt, delay=0.0, error=error)


def describe_error(error: Optional[BaseException]) -> str:
    if error is None:
        return ""
    message = str(error).strip()
    if message:
        return message
    return f"{type(error).__name__}: {repr(error)}"
