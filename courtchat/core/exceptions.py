"""
Custom exception classes for the Courtchat messaging core.
Provides structured error handling with machine-readable error codes,
shared by the REST API, the realtime gateway and the client library.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes shared with clients for consistency"""

    # Authentication errors (401)
    AUTH_TOKEN_EXPIRED = "AUTH_TOKEN_EXPIRED"
    AUTH_TOKEN_INVALID = "AUTH_TOKEN_INVALID"
    AUTH_NOT_AUTHENTICATED = "AUTH_NOT_AUTHENTICATED"

    # Authorization errors (403)
    AUTHZ_FORBIDDEN = "AUTHZ_FORBIDDEN"

    # Resource errors (404, 409)
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"

    # Validation errors (400, 422)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    VALIDATION_REQUIRED_FIELD = "VALIDATION_REQUIRED_FIELD"
    VALIDATION_TOO_LONG = "VALIDATION_TOO_LONG"

    # Transport errors (client side, 503)
    TRANSPORT_DISCONNECTED = "TRANSPORT_DISCONNECTED"
    TRANSPORT_TIMEOUT = "TRANSPORT_TIMEOUT"
    TRANSPORT_FAILED = "TRANSPORT_FAILED"

    # Rate limiting (429)
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Server errors (500+)
    SERVER_ERROR = "SERVER_ERROR"
    SERVER_UNAVAILABLE = "SERVER_UNAVAILABLE"


class AppException(Exception):
    """
    Base exception class for application errors.
    All custom exceptions should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SERVER_ERROR,
        status_code: int = 500,
        field: str | None = None,
        metadata: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.field = field
        self.metadata = metadata or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to response dictionary"""
        response = {
            "detail": self.message,
            "code": self.code.value,
        }
        if self.field:
            response["field"] = self.field
        if self.metadata:
            response["metadata"] = self.metadata
        return response


# Authentication Errors (401)


class AuthenticationError(AppException):
    """Base authentication error"""

    def __init__(
        self,
        message: str = "Authentication required",
        code: ErrorCode = ErrorCode.AUTH_NOT_AUTHENTICATED,
        field: str | None = None,
        metadata: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=401,
            field=field,
            metadata=metadata,
        )


class TokenExpiredError(AuthenticationError):
    """JWT token has expired"""

    def __init__(self, message: str = "Session expired"):
        super().__init__(
            message=message,
            code=ErrorCode.AUTH_TOKEN_EXPIRED,
        )


class TokenInvalidError(AuthenticationError):
    """JWT token is invalid or its subject is unknown"""

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(
            message=message,
            code=ErrorCode.AUTH_TOKEN_INVALID,
        )


# Resource Errors (404, 409)


class NotFoundError(AppException):
    """
    Resource not found.
    Also raised when the caller is not a participant of a conversation,
    so that existence is not leaked to outsiders.
    """

    def __init__(
        self,
        message: str = "Requested resource was not found",
        resource: str | None = None,
    ):
        metadata = {"resource": resource} if resource else None
        super().__init__(
            message=message,
            code=ErrorCode.RESOURCE_NOT_FOUND,
            status_code=404,
            metadata=metadata,
        )


class ConflictError(AppException):
    """Resource conflict, e.g. a concurrent insert of the same participant pair"""

    def __init__(
        self,
        message: str = "Resource was modified concurrently",
        field: str | None = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.RESOURCE_CONFLICT,
            status_code=409,
            field=field,
        )


# Validation Errors (400, 422)


class ValidationError(AppException):
    """Validation error"""

    def __init__(
        self,
        message: str = "Please check the submitted data",
        field: str | None = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=422,
            field=field,
        )


class RequiredFieldError(ValidationError):
    """Required field missing or blank"""

    def __init__(
        self,
        message: str = "This field is required",
        field: str | None = None,
    ):
        super().__init__(
            message=message,
            field=field,
            code=ErrorCode.VALIDATION_REQUIRED_FIELD,
        )


class ContentTooLongError(ValidationError):
    """Text exceeds the configured maximum length"""

    def __init__(
        self,
        max_length: int,
        field: str | None = "content",
    ):
        super().__init__(
            message=f"Must be at most {max_length} characters",
            field=field,
            code=ErrorCode.VALIDATION_TOO_LONG,
        )
        self.metadata = {"max_length": max_length}


# Transport Errors (503)


class TransportError(AppException):
    """Realtime or REST transport failure seen by a client"""

    def __init__(
        self,
        message: str = "Network request failed",
        code: ErrorCode = ErrorCode.TRANSPORT_FAILED,
        metadata: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=503,
            metadata=metadata,
        )


class AckError(TransportError):
    """The server acknowledged a realtime event with an error"""

    def __init__(
        self,
        message: str = "Server rejected the event",
        remote_code: str | None = None,
    ):
        metadata = {"remote_code": remote_code} if remote_code else None
        super().__init__(message=message, metadata=metadata)
        self.remote_code = remote_code
