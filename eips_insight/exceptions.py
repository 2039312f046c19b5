"""
Custom exceptions for the lifecycle engine.

Provides a hierarchy of exceptions with HTTP-like error codes so the event
store, the service facade and the API layer share one error vocabulary.
The pure classifier and merger never raise these; they saturate to safe
defaults instead.
"""
from typing import Optional


class LifecycleError(Exception):
    """Base exception for all lifecycle engine errors."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        retryable: bool = True,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        result = {
            "error_code": self.code,
            "error_message": self.message,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        return result


# ============================================
# 4xx Client Errors
# ============================================

class ValidationError(LifecycleError):
    """400 Bad Request - Invalid input data."""

    def __init__(self, message: str = "Invalid request data"):
        super().__init__(message, code=400, retryable=False)


class AuthenticationError(LifecycleError):
    """401 Unauthorized - Missing or incorrect API token."""

    def __init__(self, message: str = "You didn't provide a valid API token."):
        super().__init__(message, code=401, retryable=False)


class NotFoundError(LifecycleError):
    """404 Not Found - Unknown proposal or pull request."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, code=404, retryable=False)


class ProposalNotFoundError(NotFoundError):
    """Proposal number unknown in the given repository."""

    def __init__(self, proposal_number: int = 0, repo: str = ""):
        self.proposal_number = proposal_number
        self.repo = repo
        prefix = repo.upper() if repo else "EIP"
        super().__init__(f"{prefix}-{proposal_number} not found")


class PullRequestNotFoundError(NotFoundError):
    """Pull request number unknown in the given repository."""

    def __init__(self, pr_number: int = 0, repo: str = ""):
        self.pr_number = pr_number
        self.repo = repo
        where = f" in {repo}" if repo else ""
        super().__init__(f"Pull request #{pr_number} not found{where}")


class IncompleteDataError(LifecycleError):
    """422 - Role or event metadata missing; callers degrade instead of failing."""

    def __init__(self, message: str = "Event metadata is incomplete"):
        super().__init__(message, code=422, retryable=False)


# ============================================
# 5xx Server Errors
# ============================================

class InternalError(LifecycleError):
    """500 Internal Server Error - Unexpected error."""

    def __init__(self, message: str = "An unexpected error occurred."):
        super().__init__(message, code=500, retryable=True)


class UpstreamUnavailableError(LifecycleError):
    """503 Service Unavailable - The event-log database cannot be reached."""

    def __init__(
        self,
        message: str = "Event store unavailable. Please try again.",
        retry_after: float = 5.0,
    ):
        super().__init__(message, code=503, retryable=True, retry_after=retry_after)


# ============================================
# Exception Classification Helpers
# ============================================

def is_retryable_exception(error: Exception) -> bool:
    """Check if an exception should trigger a retry by the caller."""
    if isinstance(error, LifecycleError):
        return error.retryable

    # Common retryable exception types
    retryable_names = {
        'ConnectionError',
        'TimeoutError',
        'ConnectionResetError',
        'ConnectionRefusedError',
        'BrokenPipeError',
        'OperationalError',  # psycopg2
        'InterfaceError',    # psycopg2
    }

    return type(error).__name__ in retryable_names


def classify_exception(error: Exception) -> LifecycleError:
    """
    Convert a generic exception to a LifecycleError.

    This normalizes errors raised by psycopg2 and the standard library into
    the engine's taxonomy.
    """
    if isinstance(error, LifecycleError):
        return error

    error_type = type(error).__name__
    error_msg = str(error)

    # Connection and timeout errors mean the event log is unreachable
    if error_type in ('OperationalError', 'InterfaceError'):
        return UpstreamUnavailableError(f"Database error: {error_msg}")
    if 'timeout' in error_type.lower() or 'timed out' in error_msg.lower():
        return UpstreamUnavailableError(f"Operation timed out: {error_msg}")
    if 'connection' in error_type.lower() or 'connection' in error_msg.lower():
        return UpstreamUnavailableError(f"Connection error: {error_msg}")

    if isinstance(error, (ValueError, TypeError)):
        return ValidationError(error_msg)

    # Default to internal error
    return InternalError(f"Unexpected error: {error_msg}")
