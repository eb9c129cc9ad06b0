"""
Retry decisions: which failures are worth retrying and how long to wait.

Both functions are pure so schedules can be asserted exactly in tests.
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

import httpx

from formjobs.config.settings import Settings
from formjobs.v1.infra.jobs.errors import (
    ExecutionError,
    PermanentExecutionError,
    TransientExecutionError,
)


class ErrorClass(str, Enum):
    PERMANENT = "permanent"
    TRANSIENT = "transient"


# HTTP statuses worth retrying below the 5xx range
RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429})

# Checked in order; the first matching base class wins
_ERROR_TABLE: tuple[tuple[type[BaseException], ErrorClass], ...] = (
    (PermanentExecutionError, ErrorClass.PERMANENT),
    (TransientExecutionError, ErrorClass.TRANSIENT),
    (httpx.TimeoutException, ErrorClass.TRANSIENT),
    (httpx.TransportError, ErrorClass.TRANSIENT),
    (httpx.InvalidURL, ErrorClass.PERMANENT),
    (TimeoutError, ErrorClass.TRANSIENT),
    (ConnectionError, ErrorClass.TRANSIENT),
    (PermissionError, ErrorClass.PERMANENT),
    (OSError, ErrorClass.TRANSIENT),
    (ValueError, ErrorClass.PERMANENT),
    (TypeError, ErrorClass.PERMANENT),
    (LookupError, ErrorClass.PERMANENT),
)


def classify_status(status_code: int) -> ErrorClass:
    """Classify an HTTP status returned by a downstream collaborator."""
    if status_code >= 500 or status_code in RETRYABLE_STATUS_CODES:
        return ErrorClass.TRANSIENT
    return ErrorClass.PERMANENT


def classify_error(error: BaseException) -> ErrorClass:
    """
    Classify an execution failure.

    Authentication and validation failures are permanent; network, timeout,
    rate-limit and 5xx failures are transient. Unrecognised errors are treated
    as transient since max_attempts bounds them anyway.
    """
    if isinstance(error, httpx.HTTPStatusError):
        return classify_status(error.response.status_code)

    if (
        isinstance(error, ExecutionError)
        and not isinstance(error, (PermanentExecutionError, TransientExecutionError))
        and error.status_code is not None
    ):
        return classify_status(error.status_code)

    for error_type, error_class in _ERROR_TABLE:
        if isinstance(error, error_type):
            return error_class

    return ErrorClass.TRANSIENT


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff: base * multiplier^(attempt - 1), capped."""

    base_delay_s: float = 120.0
    multiplier: float = 2.0
    max_delay_s: float = 3600.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            base_delay_s=settings.job_backoff_base_s,
            multiplier=settings.job_backoff_multiplier,
            max_delay_s=settings.job_backoff_max_s,
        )

    def classify(self, error: BaseException) -> ErrorClass:
        return classify_error(error)

    def backoff(self, attempt_count: int) -> timedelta:
        """Delay before the next attempt, given the attempts consumed so far."""
        exponent = max(0, attempt_count - 1)
        delay = min(self.max_delay_s, self.base_delay_s * (self.multiplier**exponent))
        return timedelta(seconds=delay)
