"""
Proxy API data models.
"""

from uuid import UUID

from pydantic import BaseModel, Field


class ProxyRegistrationRequest(BaseModel):
    """Request body for POST /proxy."""

    url: str = Field(..., min_length=1, description="Absolute URL to forward to")
    ttl: int = Field(..., ge=0, description="Registration lifetime in seconds")


class ProxyRegistrationResponse(BaseModel):
    """Identifier of a newly registered proxy."""

    id: UUID = Field(..., description="Opaque identifier to use with GET /proxy/{id}")


class ErrorResponse(BaseModel):
    """
    Standard error response model.
    """

    status: int = Field(description="HTTP status code")
    message: str = Field(description="Human-readable error message")
