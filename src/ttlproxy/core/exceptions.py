"""
Custom exceptions for the ttlproxy service.

Every HTTP-facing error carries its status code and is rendered by the
application as a ``{"status": ..., "message": ...}`` envelope.
"""

from typing import Optional


class ProxyServiceException(Exception):
    """Base exception for ttlproxy service."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class BadRequestError(ProxyServiceException):
    """Raised for malformed input, invalid TTL, unknown ids and upstream failures."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message=f"bad request: {message}",
            status_code=400,
            error_code="bad_request",
        )
        self.reason = message


class UnauthorizedError(ProxyServiceException):
    """Raised when bearer authorization fails."""

    def __init__(self, message: str = "unauthorized") -> None:
        super().__init__(
            message=message,
            status_code=401,
            error_code="unauthorized",
        )


class NotFoundError(ProxyServiceException):
    """Raised for unmatched routes."""

    def __init__(self, message: str = "not found") -> None:
        super().__init__(
            message=message,
            status_code=404,
            error_code="not_found",
        )


class InternalServerError(ProxyServiceException):
    """Raised on unrecoverable internal faults such as a stuck store lock."""

    def __init__(self, message: str = "internal error", cause: Optional[str] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="internal_error",
        )
        self.cause = cause


class ConfigurationError(Exception):
    """Raised at startup when required configuration is missing or invalid."""
