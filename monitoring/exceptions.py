"""Exception handling for Almanac CalDAV Server."""

import logging
import traceback
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(Enum):
    """Standard error codes for the application."""

    # Configuration errors
    CONFIG_INVALID = "CONFIG_INVALID"

    # Local request errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_CALENDAR_DATA = "INVALID_CALENDAR_DATA"
    NOT_FOUND = "NOT_FOUND"
    READ_ONLY = "READ_ONLY"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    CONFLICT = "CONFLICT"

    # Remote CalDAV errors
    REMOTE_HTTP_ERROR = "REMOTE_HTTP_ERROR"
    REMOTE_TIMEOUT = "REMOTE_TIMEOUT"
    REMOTE_CONNECTION_ERROR = "REMOTE_CONNECTION_ERROR"

    # Sync errors
    SYNC_IN_PROGRESS = "SYNC_IN_PROGRESS"

    # Internal errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AlmanacError(Exception):
    """Base exception for Almanac CalDAV Server."""

    http_status = 500

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/monitoring."""
        return {
            'error_code': self.error_code.value,
            'message': self.message,
            'details': self.details,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'traceback': traceback.format_exc() if self.cause else None
        }


class ConfigurationError(AlmanacError):
    """Configuration related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.CONFIG_INVALID, details)


class ValidationError(AlmanacError):
    """Invalid input supplied by a local caller."""

    http_status = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details)


class InvalidCalendarDataError(AlmanacError):
    """iCalendar text that cannot be parsed."""

    http_status = 400

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message, ErrorCode.INVALID_CALENDAR_DATA, cause=cause)


class NotFoundError(AlmanacError):
    """Requested resource does not exist."""

    http_status = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.NOT_FOUND, details)


class AccountNotFoundError(NotFoundError):
    """Sync requested for an unknown account."""

    def __init__(self, account_id: str):
        super().__init__('Account not found', {'account_id': account_id})


class ReadOnlyCalendarError(AlmanacError):
    """Write attempted on a calendar owned by a remote account."""

    http_status = 403

    def __init__(self, calendar_id: str):
        super().__init__(
            'Calendar is synchronized from a remote account and is read-only here',
            ErrorCode.READ_ONLY,
            {'calendar_id': calendar_id}
        )


class PreconditionFailedError(AlmanacError):
    """If-Match / If-None-Match precondition did not hold."""

    http_status = 412

    def __init__(self, message: str = 'Precondition Failed', details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.PRECONDITION_FAILED, details)


class ConflictError(AlmanacError):
    """Remote copy changed since it was last synced."""

    http_status = 412

    def __init__(
        self,
        message: str = 'Conflict: event was modified on the server. Please sync and try again.',
        cause: Optional[Exception] = None
    ):
        super().__init__(message, ErrorCode.CONFLICT, cause=cause)


class SyncInProgressError(AlmanacError):
    """A sync of the same account is already running."""

    http_status = 409

    def __init__(self, account_id: str):
        super().__init__(
            f'Sync already in progress for account {account_id}',
            ErrorCode.SYNC_IN_PROGRESS,
            {'account_id': account_id}
        )


class RemoteCalDAVError(AlmanacError):
    """Remote CalDAV server errors; carries the remote HTTP status when there is one."""

    http_status = 502

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: ErrorCode = ErrorCode.REMOTE_HTTP_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        details = dict(details or {})
        details['status_code'] = status_code
        super().__init__(message, error_code, details, cause)
        self.status_code = status_code


class RemoteTimeoutError(RemoteCalDAVError):
    """Remote server did not answer within the configured timeout."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message, None, ErrorCode.REMOTE_TIMEOUT, cause=cause)


class RemoteConnectionError(RemoteCalDAVError):
    """Remote server could not be reached."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message, None, ErrorCode.REMOTE_CONNECTION_ERROR, cause=cause)


class ErrorHandler:
    """Centralized error handling and logging."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._error_counts = {}
        self._last_errors = {}

    def handle_error(
        self,
        error: Exception,
        context: str = "unknown",
        extra_details: Optional[Dict[str, Any]] = None
    ) -> AlmanacError:
        """Handle and log an error, converting to AlmanacError if needed."""

        # Convert to our custom exception type if needed
        if isinstance(error, AlmanacError):
            almanac_error = error
        else:
            almanac_error = AlmanacError(
                message=str(error),
                error_code=ErrorCode.INTERNAL_ERROR,
                details=extra_details or {},
                cause=error
            )

        # Add context to details
        almanac_error.details['context'] = context
        if extra_details:
            almanac_error.details.update(extra_details)

        # Track error statistics
        error_key = f"{context}:{almanac_error.error_code.value}"
        self._error_counts[error_key] = self._error_counts.get(error_key, 0) + 1
        self._last_errors[error_key] = almanac_error.to_dict()

        # Log the error
        if almanac_error.error_code == ErrorCode.INTERNAL_ERROR:
            self.logger.error(
                f"[{context}] {almanac_error.message}",
                extra={
                    'error_code': almanac_error.error_code.value,
                    'details': almanac_error.details,
                    'error_count': self._error_counts[error_key]
                },
                exc_info=almanac_error.cause
            )
        else:
            self.logger.warning(
                f"[{context}] {almanac_error.message}",
                extra={
                    'error_code': almanac_error.error_code.value,
                    'details': almanac_error.details,
                    'error_count': self._error_counts[error_key]
                }
            )

        return almanac_error

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error statistics for monitoring."""
        return {
            'error_counts': self._error_counts.copy(),
            'last_errors': self._last_errors.copy(),
            'total_errors': sum(self._error_counts.values())
        }

    def reset_stats(self):
        """Reset error statistics."""
        self._error_counts.clear()
        self._last_errors.clear()


# Global error handler instance
error_handler = ErrorHandler()
