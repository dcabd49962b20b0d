"""
Exception hierarchy for the LearnMap client.

This module defines structured exceptions with error codes, context information,
and recovery suggestions for consistent error handling across the client.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the LearnMap client."""

    # Authentication Errors (1000-1099)
    AUTH_NOT_AUTHENTICATED = "AUTH_1001"
    AUTH_REFRESH_FAILED = "AUTH_1002"
    AUTH_SESSION_TERMINATED = "AUTH_1003"

    # Network and Communication Errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"

    # HTTP Status Errors (3000-3099)
    HTTP_CLIENT_ERROR = "HTTP_3001"
    HTTP_UNAUTHORIZED = "HTTP_3002"
    HTTP_SERVER_ERROR = "HTTP_3003"

    # Credential Storage Errors (4000-4099)
    STORAGE_WRITE_FAILED = "STORAGE_4001"
    STORAGE_DELETE_FAILED = "STORAGE_4002"
    STORAGE_UNAVAILABLE = "STORAGE_4003"

    # Validation Errors (5000-5099)
    VALIDATION_INVALID_INPUT = "VALIDATION_5001"
    VALIDATION_MISSING_REQUIRED_FIELD = "VALIDATION_5002"

    # Configuration Errors (6000-6099)
    CONFIG_INVALID_FORMAT = "CONFIG_6001"
    CONFIG_INVALID_VALUE = "CONFIG_6002"

    # Internal Errors (9000-9099)
    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    RECONNECT = "reconnect"
    LOGIN_AGAIN = "login_again"
    USER_INTERVENTION = "user_intervention"
    CONTACT_ADMIN = "contact_admin"
    IGNORE = "ignore"


class LearnMapError(Exception):
    """
    Base exception class for all LearnMap client errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


class AuthenticationError(LearnMapError):
    """Authentication related errors."""

    def __init__(self, message: str, error_code: ErrorCode, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('recovery_actions', [RecoveryAction.LOGIN_AGAIN])
        super().__init__(message=message, error_code=error_code, **kwargs)


class NotAuthenticatedError(AuthenticationError):
    """No access credential was available when a request was dispatched."""

    def __init__(self, message: str = "No access credential available", **kwargs):
        super().__init__(
            message,
            ErrorCode.AUTH_NOT_AUTHENTICATED,
            user_message="Please log in to continue.",
            **kwargs
        )


class RefreshFailedError(AuthenticationError):
    """The refresh exchange could not produce a new credential pair."""

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        context = kwargs.pop('context', {})
        if status is not None:
            context['status'] = status
        super().__init__(message, ErrorCode.AUTH_REFRESH_FAILED, context=context, **kwargs)
        self.status = status


class AuthenticationFailedError(AuthenticationError):
    """Surfaced to a caller whose request could not be re-authorized."""

    def __init__(self, message: str = "Authentication failed, session terminated", **kwargs):
        super().__init__(
            message,
            ErrorCode.AUTH_SESSION_TERMINATED,
            user_message="Your session has expired. Please log in again.",
            **kwargs
        )


class NetworkError(LearnMapError):
    """Transport-level failure: no response was received."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED,
        **kwargs
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF, RecoveryAction.RECONNECT],
            **kwargs
        )


class HttpError(LearnMapError):
    """A response was received with a non-2xx status."""

    def __init__(self, status: int, message: Optional[str] = None, detail: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        context['status'] = status
        if detail:
            context['detail'] = detail

        if status == 401:
            error_code = ErrorCode.HTTP_UNAUTHORIZED
            recovery_actions = [RecoveryAction.LOGIN_AGAIN]
        elif status >= 500:
            error_code = ErrorCode.HTTP_SERVER_ERROR
            recovery_actions = [RecoveryAction.RETRY_WITH_BACKOFF]
        else:
            error_code = ErrorCode.HTTP_CLIENT_ERROR
            recovery_actions = [RecoveryAction.USER_INTERVENTION]

        super().__init__(
            message=message or f"Request failed with status {status}",
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            context=context,
            recovery_actions=recovery_actions,
            **kwargs
        )
        self.status = status
        self.detail = detail


class CredentialStorageError(LearnMapError):
    """Durable credential storage could not be written or cleared."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            **kwargs
        )


class ValidationError(LearnMapError):
    """Input validation related errors."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if field_name:
            context['field_name'] = field_name

        error_code = kwargs.pop('error_code', ErrorCode.VALIDATION_INVALID_INPUT)
        severity = kwargs.pop('severity', ErrorSeverity.LOW)
        recovery_actions = kwargs.pop('recovery_actions', [RecoveryAction.USER_INTERVENTION])

        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            recovery_actions=recovery_actions,
            context=context,
            **kwargs
        )


class ConfigurationError(LearnMapError):
    """Configuration related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if config_key:
            context['config_key'] = config_key

        error_code = kwargs.pop('error_code', ErrorCode.CONFIG_INVALID_VALUE)

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION, RecoveryAction.CONTACT_ADMIN],
            context=context,
            **kwargs
        )


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> LearnMapError:
    """
    Convert a generic exception to a structured LearnMapError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Default error code if specific mapping not found

    Returns:
        Structured LearnMapError
    """
    if isinstance(exception, LearnMapError):
        return exception

    if isinstance(exception, TimeoutError):
        return NetworkError(str(exception) or "Request timed out",
                            error_code=ErrorCode.NETWORK_TIMEOUT,
                            context=context, cause=exception)
    if isinstance(exception, (ConnectionError, OSError)):
        return NetworkError(str(exception), context=context, cause=exception)
    if isinstance(exception, ValueError):
        return ValidationError(str(exception), context=context, cause=exception)

    return LearnMapError(
        message=str(exception),
        error_code=default_error_code,
        context=context,
        cause=exception
    )
