"""Exceptions with error classification for the news ingestion engine.

The hierarchy mirrors how far an error is allowed to travel:

- candidate-level errors (``FetchError``, ``ExtractionError``, ``RobotsDisallowedError``)
  never leave the crawl worker,
- ``SourceFatalError`` subclasses abort a single source and stop at the
  orchestrator's fan-in,
- ``JobExecutionError`` wraps anything unexpected that aborts a whole job.
"""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Error codes for classification and handling."""
    # Business logic errors
    SOURCE_NOT_FOUND = "SOURCE_NOT_FOUND"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    INVALID_JOB_STATE = "INVALID_JOB_STATE"

    # External service errors
    FETCH_FAILED = "FETCH_FAILED"
    FETCH_TIMEOUT = "FETCH_TIMEOUT"
    FEED_UNAVAILABLE = "FEED_UNAVAILABLE"
    ROBOTS_DISALLOWED = "ROBOTS_DISALLOWED"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    EXTRACTION_PARSING_FAILED = "EXTRACTION_PARSING_FAILED"
    CONTENT_TOO_SHORT = "CONTENT_TOO_SHORT"

    # Infrastructure errors
    DATABASE_CONNECTION_ERROR = "DATABASE_CONNECTION_ERROR"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    REQUEST_QUEUE_ERROR = "REQUEST_QUEUE_ERROR"
    CELERY_TASK_FAILED = "CELERY_TASK_FAILED"

    # Generic errors
    JOB_EXECUTION_FAILED = "JOB_EXECUTION_FAILED"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class BaseAppException(Exception):
    """Base exception with error classification and retry information."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
        retry_after: Optional[int] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and serialization."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
            "retry_after": self.retry_after,
            "type": self.__class__.__name__
        }


class SourceFatalError(BaseAppException):
    """Marker base for errors that abort one source's crawl but not the job."""
    pass


# Business Logic Errors
class BusinessLogicError(BaseAppException):
    """Base class for business logic errors."""
    pass


class ValidationError(BusinessLogicError):
    """Raised for invalid job requests and other input errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            details=details,
            retryable=False
        )


class SourceNotFoundError(BusinessLogicError, SourceFatalError):
    """Raised when a requested source is not in the source registry."""

    def __init__(self, source_name: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.SOURCE_NOT_FOUND,
            message=f"Source not found: {source_name}",
            details=details or {"source_name": source_name},
            retryable=False
        )


class JobNotFoundError(BusinessLogicError):
    """Raised when a job is not found."""

    def __init__(self, job_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.JOB_NOT_FOUND,
            message=f"Job not found: {job_id}",
            details=details or {"job_id": job_id},
            retryable=False
        )


class InvalidJobStateError(BusinessLogicError):
    """Raised when a job transition is not allowed from its current status."""

    def __init__(self, job_id: str, current_status: str, requested: str):
        super().__init__(
            code=ErrorCode.INVALID_JOB_STATE,
            message=f"Job {job_id} cannot move from {current_status} to {requested}",
            details={"job_id": job_id, "current_status": current_status, "requested_status": requested},
            retryable=False
        )


def is_transient_status(status_code: Optional[int]) -> bool:
    """True for a network failure (no status), a 5xx or a 429 response."""
    return status_code is None or status_code >= 500 or status_code == 429


# External Service Errors
class ExternalServiceError(BaseAppException):
    """Base class for external service errors."""
    pass


class FetchError(ExternalServiceError):
    """Raised when an HTTP fetch fails or returns a non-2xx status.

    Network failures, 5xx and 429 responses are retryable. Other statuses are
    final: asking again for a missing page gets the same answer.
    """

    def __init__(self, url: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        message = f"Failed to fetch {url}"
        if status_code:
            message += f" (status: {status_code})"
        super().__init__(
            code=ErrorCode.FETCH_FAILED,
            message=message,
            details=details or {"url": url, "status_code": status_code},
            retryable=is_transient_status(status_code)
        )
        self.url = url
        self.status_code = status_code


class FetchTimeoutError(FetchError):
    """Raised when an HTTP fetch times out."""

    def __init__(self, url: str, timeout: float, details: Optional[Dict[str, Any]] = None):
        super().__init__(url=url, details=details or {"url": url, "timeout": timeout})
        self.message = f"Fetch timeout for {url} after {timeout}s"
        self.args = (self.message,)
        self.code = ErrorCode.FETCH_TIMEOUT


class FeedUnavailableError(ExternalServiceError, SourceFatalError):
    """Raised when a source's feed cannot be fetched or parsed."""

    def __init__(self, source_name: str, feed_url: str, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.FEED_UNAVAILABLE,
            message=f"Feed unavailable for {source_name}: {reason}",
            details=details or {"source_name": source_name, "feed_url": feed_url, "reason": reason},
            retryable=False
        )


class RobotsDisallowedError(ExternalServiceError):
    """Raised when robots.txt forbids fetching a candidate URL."""

    def __init__(self, url: str):
        super().__init__(
            code=ErrorCode.ROBOTS_DISALLOWED,
            message=f"robots.txt disallows {url}",
            details={"url": url},
            retryable=False
        )


class ExtractionError(ExternalServiceError):
    """Base exception for article extraction failures."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.EXTRACTION_FAILED,
            message=message,
            details=details,
            retryable=False
        )


class ExtractionParsingError(ExtractionError):
    """Raised when a document cannot be parsed at all."""

    def __init__(self, url: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Failed to parse article content from {url}",
            details=details or {"url": url}
        )
        self.code = ErrorCode.EXTRACTION_PARSING_FAILED


class ContentTooShortError(ExtractionError):
    """Raised when the extracted title or body is below the acceptance thresholds."""

    def __init__(self, url: str, title_length: int, content_length: int):
        super().__init__(
            message=f"Insufficient content extracted from {url}",
            details={"url": url, "title_length": title_length, "content_length": content_length}
        )
        self.code = ErrorCode.CONTENT_TOO_SHORT


# Infrastructure Errors
class InfrastructureError(BaseAppException):
    """Base class for infrastructure errors."""
    pass


class DatabaseConnectionError(InfrastructureError):
    """Raised when database connection fails."""

    def __init__(self, message: str = "Database connection failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.DATABASE_CONNECTION_ERROR,
            message=message,
            details=details,
            retryable=True,
            retry_after=30
        )


class PersistenceError(InfrastructureError):
    """Raised when a source's persistence transaction cannot be committed."""

    def __init__(self, source_name: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.PERSISTENCE_FAILED,
            message=f"Persistence failed for {source_name}: {message}",
            details=details or {"source_name": source_name},
            retryable=False
        )


class RequestQueueError(InfrastructureError, SourceFatalError):
    """Raised when a per-source request queue cannot be used."""

    def __init__(self, queue_name: str, message: str):
        super().__init__(
            code=ErrorCode.REQUEST_QUEUE_ERROR,
            message=f"Request queue {queue_name}: {message}",
            details={"queue_name": queue_name},
            retryable=False
        )


class CeleryTaskFailedError(InfrastructureError):
    """Raised when Celery task fails unexpectedly."""

    def __init__(self, task_name: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.CELERY_TASK_FAILED,
            message=f"Task {task_name} failed: {message}",
            details=details or {"task_name": task_name},
            retryable=False
        )


# Generic Errors
class JobExecutionError(BaseAppException):
    """Raised when an unexpected error aborts a whole job."""

    def __init__(self, job_id: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.JOB_EXECUTION_FAILED,
            message=f"Job {job_id} failed: {message}",
            details=details or {"job_id": job_id},
            retryable=False
        )
