"""
Errors raised while executing a job.

Handlers and execution clients raise these so the retry policy can tell a
failure worth retrying from one that is not. Anything else a handler raises is
classified by the table in retry_policy.
"""


class ExecutionError(Exception):
    """Base class for job execution failures."""

    error_code = "EXECUTION_ERROR"

    def __init__(self, message: str, *, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class TransientExecutionError(ExecutionError):
    """Network, timeout, rate-limit or server-side failure; retried."""

    error_code = "TRANSIENT_ERROR"


class RateLimitedError(TransientExecutionError):
    error_code = "RATE_LIMITED"


class ExecutionTimeoutError(TransientExecutionError):
    error_code = "EXECUTION_TIMEOUT"


class StuckJobTimeout(TransientExecutionError):
    """A processing job exceeded the stuck-job timeout without finishing."""

    error_code = "WORKER_TIMEOUT"


class PermanentExecutionError(ExecutionError):
    """Failure that retrying cannot fix; the job fails immediately."""

    error_code = "PERMANENT_ERROR"


class AuthenticationFailedError(PermanentExecutionError):
    error_code = "AUTHENTICATION_FAILED"


class InvalidPayloadError(PermanentExecutionError):
    error_code = "INVALID_PAYLOAD"


class UnknownJobTypeError(PermanentExecutionError):
    error_code = "UNKNOWN_JOB_TYPE"


def error_from_status(status_code: int, message: str) -> ExecutionError:
    """Map an HTTP status from a downstream collaborator to an execution error."""
    if status_code in (401, 403):
        return AuthenticationFailedError(message, status_code=status_code)
    if status_code == 429:
        return RateLimitedError(message, status_code=status_code)
    if status_code == 408:
        return ExecutionTimeoutError(message, status_code=status_code)
    if status_code >= 500 or status_code in (409, 425):
        return TransientExecutionError(message, status_code=status_code)
    return PermanentExecutionError(message, status_code=status_code)
