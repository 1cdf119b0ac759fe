"""
Custom Exceptions for the Fee Settlement Engine

This module defines custom exception classes used throughout the application
for consistent error handling and API error rendering.
"""

from typing import Any, Dict, List, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for the application"""
    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"

    # Database errors
    DATABASE_ERROR = "DATABASE_ERROR"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"

    # Gateway errors
    SIGNING_ERROR = "SIGNING_ERROR"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    GATEWAY_REJECTED = "GATEWAY_REJECTED"

    # Settlement errors
    NOTIFICATION_UNRESOLVED = "NOTIFICATION_UNRESOLVED"
    RECONCILIATION_FAILED = "RECONCILIATION_FAILED"

    # Configuration errors
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class BaseAppException(Exception):
    """
    Base exception class for all application exceptions.

    Provides consistent error handling across the application with
    structured error information.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format"""
        return {
            "error": {
                "message": self.message,
                "code": self.error_code.value,
                "details": self.details,
                "type": self.__class__.__name__
            }
        }

    def __str__(self) -> str:
        return f"{self.error_code.value}: {self.message}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message='{self.message}', error_code='{self.error_code.value}')"


# ========================================
# General Application Exceptions
# ========================================

class ValidationError(BaseAppException):
    """Exception raised when data validation fails (bad amount, phone, etc.)"""

    def __init__(
        self,
        message: str = "Validation failed",
        field_errors: Optional[Dict[str, List[str]]] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        status_code: int = 422
    ):
        details = {"field_errors": field_errors} if field_errors else {}
        super().__init__(message, error_code, details, status_code)


class ResourceNotFoundError(BaseAppException):
    """Exception raised when a requested resource is not found"""

    def __init__(
        self,
        resource_type: str = "Resource",
        resource_id: Optional[str] = None,
        message: Optional[str] = None
    ):
        if not message:
            message = f"{resource_type} not found"
            if resource_id:
                message += f" (ID: {resource_id})"

        details = {
            "resource_type": resource_type,
            "resource_id": resource_id
        }
        super().__init__(message, ErrorCode.RESOURCE_NOT_FOUND, details, 404)


class InvalidStateTransition(BaseAppException):
    """Exception raised when an operation is not allowed in the current state"""

    def __init__(self, message: str, current_state: Optional[str] = None):
        super().__init__(
            message,
            ErrorCode.INVALID_STATE_TRANSITION,
            {"current_state": current_state},
            409,
        )


class InvalidPayloadError(BaseAppException):
    """Exception raised when an inbound gateway payload is structurally invalid"""

    def __init__(self, message: str = "Notification payload is malformed", gateway: Optional[str] = None):
        super().__init__(message, ErrorCode.INVALID_PAYLOAD, {"gateway": gateway}, 400)


class ConfigurationError(BaseAppException):
    """Exception raised for configuration errors"""

    def __init__(self, message: str = "Configuration error", config_key: Optional[str] = None):
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, {"config_key": config_key}, 500)


# ========================================
# Repository Exceptions
# ========================================

class RepositoryError(BaseAppException):
    """Exception raised when a persistence operation fails"""

    def __init__(self, message: str = "Database error", table: Optional[str] = None):
        super().__init__(message, ErrorCode.DATABASE_ERROR, {"table": table} if table else {}, 500)


class EntityAlreadyExistsError(RepositoryError):
    """Exception raised on unique constraint violations"""

    def __init__(self, message: str = "Entity already exists", table: Optional[str] = None):
        super().__init__(message, table=table)
        self.error_code = ErrorCode.DUPLICATE_ENTRY
        self.status_code = 409


# ========================================
# Gateway Exceptions
# ========================================

class SigningError(BaseAppException):
    """Exception raised when a request signature cannot be produced"""

    def __init__(self, message: str = "Unable to sign gateway request", gateway_name: Optional[str] = None):
        super().__init__(message, ErrorCode.SIGNING_ERROR, {"gateway_name": gateway_name}, 500)


class AuthenticationError(BaseAppException):
    """Exception raised when a gateway token exchange fails"""

    retryable = True

    def __init__(
        self,
        message: str = "Gateway authentication failed",
        gateway_name: Optional[str] = None,
        status_code: int = 503
    ):
        super().__init__(message, ErrorCode.AUTHENTICATION_FAILED, {"gateway_name": gateway_name}, status_code)


class PaymentGatewayError(BaseAppException):
    """Base exception for payment gateway call failures"""

    def __init__(
        self,
        message: str = "Payment gateway error",
        gateway_name: Optional[str] = None,
        gateway_error_code: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.GATEWAY_UNAVAILABLE,
        status_code: int = 502
    ):
        details = {
            "gateway_name": gateway_name,
            "gateway_error_code": gateway_error_code
        }
        super().__init__(message, error_code, details, status_code)


class GatewayUnavailable(PaymentGatewayError):
    """Network failure or 5xx from the gateway; the caller may retry"""

    retryable = True

    def __init__(self, message: str = "Payment gateway unavailable", **kwargs):
        super().__init__(message, error_code=ErrorCode.GATEWAY_UNAVAILABLE, status_code=503, **kwargs)


class GatewayRejected(PaymentGatewayError):
    """The gateway explicitly refused the request; terminal"""

    def __init__(self, message: str = "Payment rejected by gateway", **kwargs):
        super().__init__(message, error_code=ErrorCode.GATEWAY_REJECTED, status_code=402, **kwargs)


# ========================================
# Settlement Exceptions
# ========================================

class NotificationUnresolved(BaseAppException):
    """A notification matched no payment intent; queued for an operator"""

    def __init__(
        self,
        message: str = "Notification did not match any payment",
        gateway_name: Optional[str] = None,
        correlation_keys: Optional[Dict[str, str]] = None,
        alert_id: Optional[str] = None
    ):
        details = {
            "gateway_name": gateway_name,
            "correlation_keys": correlation_keys or {},
            "alert_id": alert_id,
        }
        super().__init__(message, ErrorCode.NOTIFICATION_UNRESOLVED, details, 202)


class ReconciliationFailure(BaseAppException):
    """Fee allocation could not commit; the payment is paid but unreconciled"""

    def __init__(self, message: str = "Fee reconciliation failed", payment_id: Optional[str] = None):
        super().__init__(message, ErrorCode.RECONCILIATION_FAILED, {"payment_id": payment_id}, 500)


__all__ = [
    'ErrorCode',
    'BaseAppException',
    'ValidationError',
    'ResourceNotFoundError',
    'InvalidStateTransition',
    'InvalidPayloadError',
    'ConfigurationError',
    'RepositoryError',
    'EntityAlreadyExistsError',
    'SigningError',
    'AuthenticationError',
    'PaymentGatewayError',
    'GatewayUnavailable',
    'GatewayRejected',
    'NotificationUnresolved',
    'ReconciliationFailure',
]
