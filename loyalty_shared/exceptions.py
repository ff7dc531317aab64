"""
Exception hierarchy for the Loyalty Dashboard client.

This module defines structured exceptions with error codes, context information,
and recovery suggestions so that the dispatcher, the session stores and the
CLI report failures the same way.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the Loyalty Dashboard client."""

    # Authentication and session errors (1000-1099)
    AUTH_INVALID_TOKEN = "AUTH_1001"
    AUTH_SESSION_EXPIRED = "AUTH_1002"
    AUTH_REFRESH_FAILED = "AUTH_1003"
    AUTH_REFRESH_TIMEOUT = "AUTH_1004"
    AUTH_NO_REFRESH_TOKEN = "AUTH_1005"
    AUTH_RETRY_REJECTED = "AUTH_1006"
    AUTH_LOGIN_FAILED = "AUTH_1007"

    # Network and communication errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"
    NETWORK_SSL_ERROR = "NETWORK_2003"

    # API response errors (3000-3099)
    API_BAD_REQUEST = "API_3001"
    API_UNAUTHORIZED = "API_3002"
    API_FORBIDDEN = "API_3003"
    API_NOT_FOUND = "API_3004"
    API_CONFLICT = "API_3005"
    API_VALIDATION_FAILED = "API_3006"
    API_SERVER_ERROR = "API_3007"
    API_UNEXPECTED_STATUS = "API_3008"
    API_INVALID_RESPONSE = "API_3009"

    # Session storage errors (4000-4099)
    STORAGE_WRITE_FAILED = "STORAGE_4002"

    # Configuration errors (8000-8099)
    CONFIG_FILE_NOT_FOUND = "CONFIG_8001"
    CONFIG_INVALID_FORMAT = "CONFIG_8002"
    CONFIG_MISSING_REQUIRED_SETTING = "CONFIG_8003"
    CONFIG_INVALID_VALUE = "CONFIG_8004"

    # Internal errors (9000-9099)
    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"
    INTERNAL_OPERATION_TIMEOUT = "INTERNAL_9002"


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
    REFRESH_TOKEN = "refresh_token"
    LOGIN_AGAIN = "login_again"
    USER_INTERVENTION = "user_intervention"
    CONTACT_ADMIN = "contact_admin"
    IGNORE = "ignore"


class DashboardError(Exception):
    """
    Base exception class for all Loyalty Dashboard client errors.

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

    def get_http_status_code(self) -> int:
        """Get the HTTP status code this error corresponds to."""
        code_mapping = {
            ErrorCode.AUTH_INVALID_TOKEN: 401,
            ErrorCode.AUTH_SESSION_EXPIRED: 401,
            ErrorCode.AUTH_REFRESH_FAILED: 401,
            ErrorCode.AUTH_REFRESH_TIMEOUT: 401,
            ErrorCode.AUTH_NO_REFRESH_TOKEN: 401,
            ErrorCode.AUTH_RETRY_REJECTED: 401,
            ErrorCode.AUTH_LOGIN_FAILED: 401,
            ErrorCode.API_UNAUTHORIZED: 401,

            ErrorCode.API_BAD_REQUEST: 400,
            ErrorCode.API_FORBIDDEN: 403,
            ErrorCode.API_NOT_FOUND: 404,
            ErrorCode.API_CONFLICT: 409,
            ErrorCode.API_VALIDATION_FAILED: 422,

            ErrorCode.NETWORK_TIMEOUT: 408,
            ErrorCode.INTERNAL_OPERATION_TIMEOUT: 408,

            ErrorCode.NETWORK_CONNECTION_FAILED: 503,
        }

        return code_mapping.get(self.error_code, 500)


class AuthenticationError(DashboardError):
    """Authentication related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.AUTH_INVALID_TOKEN, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('recovery_actions', [RecoveryAction.REFRESH_TOKEN, RecoveryAction.LOGIN_AGAIN])
        super().__init__(message=message, error_code=error_code, **kwargs)


class SessionExpiredError(AuthenticationError):
    """
    Terminal authentication failure.

    The stored session has been destroyed and the user has to log in again.
    ``redirect_to`` names the login entry point the presentation layer should
    navigate to; the client itself never navigates.
    """

    def __init__(
        self,
        message: str = "Session expired",
        error_code: ErrorCode = ErrorCode.AUTH_SESSION_EXPIRED,
        redirect_to: str = "/login",
        **kwargs
    ):
        kwargs.setdefault('recovery_actions', [RecoveryAction.LOGIN_AGAIN])
        kwargs.setdefault('user_message', "Your session has expired. Please log in again.")
        super().__init__(message=message, error_code=error_code, **kwargs)
        self.redirect_to = redirect_to
        self.context.setdefault('redirect_to', redirect_to)


class UnauthenticatedError(SessionExpiredError):
    """Authorization failed and there was no refresh token to recover with."""

    def __init__(self, message: str = "No refresh token available", **kwargs):
        kwargs.setdefault('error_code', ErrorCode.AUTH_NO_REFRESH_TOKEN)
        super().__init__(message=message, **kwargs)


class NetworkError(DashboardError):
    """Network and communication related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF, RecoveryAction.RECONNECT],
            **kwargs
        )


class SessionStorageError(DashboardError):
    """Session store read/write failures."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.RETRY, RecoveryAction.USER_INTERVENTION],
            **kwargs
        )


class ConfigurationError(DashboardError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if config_key:
            context['config_key'] = config_key

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
) -> DashboardError:
    """
    Convert a generic exception to a structured DashboardError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Default error code if specific mapping not found

    Returns:
        Structured DashboardError
    """
    if isinstance(exception, DashboardError):
        return exception

    exception_mapping = {
        ConnectionError: (ErrorCode.NETWORK_CONNECTION_FAILED, NetworkError),
        TimeoutError: (ErrorCode.NETWORK_TIMEOUT, NetworkError),
        PermissionError: (ErrorCode.STORAGE_WRITE_FAILED, SessionStorageError),
    }

    error_code, error_class = exception_mapping.get(
        type(exception),
        (default_error_code, DashboardError)
    )

    return error_class(
        message=str(exception) or type(exception).__name__,
        error_code=error_code,
        context=context,
        cause=exception
    )
