"""Monitoring and error handling for Almanac CalDAV Server."""

from .exceptions import (
    ErrorCode, AlmanacError, ConfigurationError,
    ValidationError, InvalidCalendarDataError, NotFoundError, AccountNotFoundError,
    ReadOnlyCalendarError, PreconditionFailedError, ConflictError, SyncInProgressError,
    RemoteCalDAVError, RemoteTimeoutError, RemoteConnectionError,
    ErrorHandler, error_handler
)
from .health import HealthStatus, HealthChecker

__all__ = [
    'ErrorCode', 'AlmanacError', 'ConfigurationError',
    'ValidationError', 'InvalidCalendarDataError', 'NotFoundError', 'AccountNotFoundError',
    'ReadOnlyCalendarError', 'PreconditionFailedError', 'ConflictError', 'SyncInProgressError',
    'RemoteCalDAVError', 'RemoteTimeoutError', 'RemoteConnectionError',
    'ErrorHandler', 'error_handler',
    'HealthStatus', 'HealthChecker'
]
