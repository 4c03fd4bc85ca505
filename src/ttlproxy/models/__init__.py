"""
Pydantic data models package.

Contains request, response and error models for the HTTP API.
"""

from .proxy import ErrorResponse, ProxyRegistrationRequest, ProxyRegistrationResponse

__all__ = [
    "ProxyRegistrationRequest",
    "ProxyRegistrationResponse",
    "ErrorResponse",
]
