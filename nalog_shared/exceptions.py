"""
Exception hierarchy for the self-employed tax service client.

This module defines structured exceptions with error codes, context information,
and recovery suggestions for consistent error handling across the client.
"""

import asyncio
from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the tax service client."""

    # Authentication Errors (1000-1099)
    AUTH_LOGIN_FAILED = "AUTH_1001"
    AUTH_RENEWAL_FAILED = "AUTH_1002"
    AUTH_NOT_AUTHENTICATED = "AUTH_1003"
    AUTH_INCOMPLETE_CREDENTIAL = "AUTH_1004"
    AUTH_CHALLENGE_FAILED = "AUTH_1005"

    # Transport Errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"
    NETWORK_HTTP_STATUS = "NETWORK_2003"
    NETWORK_INVALID_JSON = "NETWORK_2004"

    # Validation Errors (4000-4099)
    VALIDATION_INVALID_INPUT = "VALIDATION_4001"
    VALIDATION_MISSING_REQUIRED_FIELD = "VALIDATION_4002"
    VALIDATION_VALUE_OUT_OF_RANGE = "VALIDATION_4003"

    # Submission Errors (5000-5099)
    SUBMISSION_NO_RECEIPT = "SUBMISSION_5001"

    # Session Storage Errors (7000-7099)
    STORAGE_WRITE_FAILED = "STORAGE_7001"
    STORAGE_READ_FAILED = "STORAGE_7002"

    # Configuration Errors (8000-8099)
    CONFIG_INVALID_VALUE = "CONFIG_8001"

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
    REAUTHENTICATE = "reauthenticate"
    RETRY_LATER = "retry_later"
    CHECK_INPUT = "check_input"
    INSPECT_RESPONSE = "inspect_response"
    FIX_CONFIGURATION = "fix_configuration"
    CONTACT_SUPPORT = "contact_support"


class NalogClientError(Exception):
    """
    Base exception class for all tax service client errors.

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


class AuthenticationFailure(NalogClientError):
    """Login, SMS verification or token renewal was rejected by the service."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.AUTH_LOGIN_FAILED,
        response: Any = None,
        **kwargs
    ):
        self.response = response
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.REAUTHENTICATE],
            **kwargs
        )


class NotAuthenticatedError(NalogClientError):
    """An authenticated call was attempted without any usable credential."""

    def __init__(self, message: str = "Authentication required before calling the API", **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.AUTH_NOT_AUTHENTICATED,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.REAUTHENTICATE],
            **kwargs
        )


class IncompleteCredentialError(NalogClientError):
    """Session export requested before a complete credential is available."""

    def __init__(self, message: str = "Missing auth information", missing_fields: Optional[List[str]] = None, **kwargs):
        context = kwargs.pop('context', None) or {}
        if missing_fields:
            context['missing_fields'] = missing_fields

        super().__init__(
            message=message,
            error_code=ErrorCode.AUTH_INCOMPLETE_CREDENTIAL,
            severity=ErrorSeverity.LOW,
            recovery_actions=[RecoveryAction.REAUTHENTICATE],
            context=context,
            **kwargs
        )


class SubmissionFailure(NalogClientError):
    """Income registration returned no receipt identifier."""

    def __init__(self, message: str, response: Any = None, **kwargs):
        self.response = response
        context = kwargs.pop('context', None) or {}
        context['response'] = response

        super().__init__(
            message=message,
            error_code=ErrorCode.SUBMISSION_NO_RECEIPT,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.INSPECT_RESPONSE],
            context=context,
            **kwargs
        )


class TransportFailure(NalogClientError):
    """Network-level failure, unexpected HTTP status or unparseable body."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED,
        status_code: Optional[int] = None,
        payload: Any = None,
        **kwargs
    ):
        self.status_code = status_code
        self.payload = payload
        context = kwargs.pop('context', None) or {}
        if status_code is not None:
            context['status_code'] = status_code

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_LATER],
            context=context,
            **kwargs
        )


class ValidationError(NalogClientError):
    """Input validation related errors."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', None) or {}
        if field_name:
            context['field_name'] = field_name

        error_code = kwargs.pop('error_code', ErrorCode.VALIDATION_INVALID_INPUT)
        severity = kwargs.pop('severity', ErrorSeverity.LOW)
        recovery_actions = kwargs.pop('recovery_actions', [RecoveryAction.CHECK_INPUT])

        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            recovery_actions=recovery_actions,
            context=context,
            **kwargs
        )


class ConfigurationError(NalogClientError):
    """Configuration related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', None) or {}
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=ErrorCode.CONFIG_INVALID_VALUE,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.FIX_CONFIGURATION],
            context=context,
            **kwargs
        )


class SessionStorageError(NalogClientError):
    """Persisting or loading a saved session failed."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.REAUTHENTICATE],
            **kwargs
        )


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> NalogClientError:
    """
    Convert a generic exception to a structured NalogClientError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Default error code if specific mapping not found

    Returns:
        Structured NalogClientError
    """
    if isinstance(exception, NalogClientError):
        return exception

    if isinstance(exception, (TimeoutError, asyncio.TimeoutError)):
        return TransportFailure(
            str(exception) or "Request timed out",
            error_code=ErrorCode.NETWORK_TIMEOUT,
            context=context,
            cause=exception
        )
    if isinstance(exception, (ConnectionError, OSError)):
        return TransportFailure(str(exception), context=context, cause=exception)
    if isinstance(exception, ValueError):
        return ValidationError(str(exception), context=context, cause=exception)

    return NalogClientError(
        message=str(exception),
        error_code=default_error_code,
        context=context,
        cause=exception
    )
