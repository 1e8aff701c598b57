"""
Exception hierarchy for the GPT Toolkit desktop client.

This module defines structured exceptions with error codes, context information,
and recovery suggestions. Every failure of the HTTP layer is reduced to one of
four normalized kinds: transport, invalid response, server rejection, decoding.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the GPT Toolkit client."""

    # Authentication errors (1000-1099)
    AUTH_TOKEN_EXPIRED = "AUTH_1001"

    # Transport errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"
    NETWORK_DNS_RESOLUTION_FAILED = "NETWORK_2003"
    NETWORK_SSL_ERROR = "NETWORK_2004"

    # Response errors (3000-3099)
    RESPONSE_INVALID = "RESPONSE_3001"
    RESPONSE_SERVER_REJECTED = "RESPONSE_3002"
    RESPONSE_DECODING_FAILED = "RESPONSE_3003"

    # Credential storage errors (4000-4099)
    STORAGE_SAVE_FAILED = "STORAGE_4001"
    STORAGE_DELETE_FAILED = "STORAGE_4002"
    STORAGE_ENCODING_FAILED = "STORAGE_4003"

    # Configuration errors (8000-8099)
    CONFIG_INVALID_VALUE = "CONFIG_8002"


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


class ToolkitError(Exception):
    """
    Base exception class for all GPT Toolkit client errors.

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


# Normalized HTTP errors

class APIError(ToolkitError):
    """Base class for the normalized errors produced by the HTTP client."""
    pass


class TransportError(APIError):
    """Connection refused, DNS failure, timeout or dropped connection."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED, **kwargs):
        kwargs.setdefault('user_message', "Unable to reach the server.")
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF, RecoveryAction.RECONNECT],
            **kwargs
        )


class InvalidResponseError(APIError):
    """The transport returned something that is not an HTTP response."""

    def __init__(self, message: str = "Invalid server response", **kwargs):
        kwargs.setdefault('user_message', "Invalid server response.")
        super().__init__(
            message=message,
            error_code=ErrorCode.RESPONSE_INVALID,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY],
            **kwargs
        )


class ServerError(APIError):
    """Structured rejection from the backend (any non-2xx status)."""

    def __init__(self, status_code: int, message: str, **kwargs):
        context = kwargs.pop('context', {})
        context['status_code'] = status_code

        if status_code == 401:
            error_code = ErrorCode.AUTH_TOKEN_EXPIRED
            recovery_actions = [RecoveryAction.REFRESH_TOKEN, RecoveryAction.LOGIN_AGAIN]
            severity = ErrorSeverity.HIGH
        else:
            error_code = ErrorCode.RESPONSE_SERVER_REJECTED
            recovery_actions = [RecoveryAction.USER_INTERVENTION]
            severity = ErrorSeverity.HIGH if status_code >= 500 else ErrorSeverity.MEDIUM

        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            context=context,
            recovery_actions=recovery_actions,
            user_message=message,
            **kwargs
        )
        self.status_code = status_code

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401


class DecodingError(APIError):
    """Body present but not parseable as the expected type, or absent when required."""

    def __init__(self, message: str = "Unable to decode server response", **kwargs):
        kwargs.setdefault('user_message', "Unable to read server response.")
        super().__init__(
            message=message,
            error_code=ErrorCode.RESPONSE_DECODING_FAILED,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.CONTACT_ADMIN],
            **kwargs
        )


# Local errors

class CredentialStoreError(ToolkitError):
    """Saving or deleting a stored credential failed."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_SAVE_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            **kwargs
        )


class ConfigurationError(ToolkitError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.CONFIG_INVALID_VALUE,
                 config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."


def error_message_for(exception: BaseException) -> str:
    """
    Get the user-visible message for an exception.

    Structured errors carry their own user message (the server's message for
    ServerError); anything else gets generic text.
    """
    if isinstance(exception, ToolkitError):
        return exception.user_message
    return GENERIC_ERROR_MESSAGE
