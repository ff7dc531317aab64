"""
User-facing error reporting for the Loyalty Dashboard client.

Turns dispatcher exceptions into short messages a caller can display. Nothing
here performs I/O; the CLI and any UI decide how to show the result.
"""

import logging
from typing import Any, Dict

from loyalty_shared.exceptions import (
    DashboardError, ErrorCode, ErrorSeverity, RecoveryAction,
    NetworkError, SessionExpiredError
)
from loyalty_shared.logging_config import log_structured_error
from loyalty_client.api_client import APIClientError

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Request timeout. Please try again."
NETWORK_MESSAGE = "Network error. Please check your connection."
SESSION_EXPIRED_MESSAGE = "Your session has expired. Please log in again."

STATUS_PREFIXES = {
    422: "Validation Error: ",
    404: "Not Found: ",
    403: "Access Denied: ",
    409: "Conflict: ",
    500: "Server Error: ",
}


def describe_api_error(error: Exception, default_message: str = "An error occurred") -> Dict[str, Any]:
    """
    Describe a failed dashboard call.

    Args:
        error: Exception raised by the API client
        default_message: Message used when the response carries none

    Returns:
        Dictionary with at least ``message`` and ``success`` keys
    """
    if isinstance(error, SessionExpiredError):
        return {
            'message': SESSION_EXPIRED_MESSAGE,
            'status_code': error.error_code.value,
            'redirect_to': error.redirect_to,
            'success': False,
        }

    if isinstance(error, APIClientError):
        body = error.response_data if isinstance(error.response_data, dict) else {}
        message = body.get('message') or default_message
        prefix = STATUS_PREFIXES.get(error.status_code, "")
        return {
            'message': f"{prefix}{message}",
            'http_status_code': error.status_code,
            'data': body.get('data'),
            'success': bool(body.get('success', False)),
        }

    if isinstance(error, NetworkError):
        if error.error_code == ErrorCode.NETWORK_TIMEOUT:
            message = TIMEOUT_MESSAGE
        else:
            message = NETWORK_MESSAGE
        return {'message': message, 'status_code': "NETWORK_ERROR", 'success': False}

    if isinstance(error, DashboardError):
        log_structured_error(logger, error)
        return {'message': error.user_message or default_message, 'status_code': error.error_code.value, 'success': False}

    logger.error(f"Unexpected error: {error}")
    return {'message': default_message, 'success': False}


def get_error_title(error: DashboardError) -> str:
    """Get user-friendly error title."""
    title_map = {
        ErrorSeverity.LOW: "Information",
        ErrorSeverity.MEDIUM: "Warning",
        ErrorSeverity.HIGH: "Error",
        ErrorSeverity.CRITICAL: "Critical Error"
    }
    return title_map.get(error.severity, "Error")


def get_recovery_action_text(action: RecoveryAction) -> str:
    """Get user-friendly text for recovery actions."""
    text_map = {
        RecoveryAction.RETRY: "Retry",
        RecoveryAction.RETRY_WITH_BACKOFF: "Retry Later",
        RecoveryAction.RECONNECT: "Reconnect",
        RecoveryAction.REFRESH_TOKEN: "Refresh Authentication",
        RecoveryAction.LOGIN_AGAIN: "Log In Again",
        RecoveryAction.USER_INTERVENTION: "Manual Fix Required",
        RecoveryAction.CONTACT_ADMIN: "Contact Administrator",
        RecoveryAction.IGNORE: "Ignore"
    }
    return text_map.get(action, action.value.replace('_', ' ').title())


def format_error_for_display(error: Exception, default_message: str = "An error occurred") -> str:
    """One or two lines suitable for a terminal."""
    description = describe_api_error(error, default_message)
    lines = [description['message']]
    if isinstance(error, DashboardError) and error.recovery_actions:
        actions = ", ".join(get_recovery_action_text(action) for action in error.recovery_actions)
        lines.append(f"{get_error_title(error)}. Suggested: {actions}")
    return "\n".join(lines)
