"""
Proxy API endpoints.

- POST /proxy: register a target URL (bearer token required)
- GET /proxy/{id}: forward to the registered target (open)
"""

from typing import Callable, Coroutine
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Request, Response
from fastapi.routing import APIRoute
from starlette.responses import StreamingResponse

from ..core.auth import get_authorization_header
from ..core.exceptions import BadRequestError
from ..core.forwarder import ProxyForwarder
from ..core.registration import ProxyRegistrar
from ..models import ErrorResponse, ProxyRegistrationRequest, ProxyRegistrationResponse

logger = structlog.get_logger(__name__)


async def get_registrar(request: Request) -> ProxyRegistrar:
    """Dependency to get the registrar from app state."""
    return request.app.state.registrar


async def get_forwarder(request: Request) -> ProxyForwarder:
    """Dependency to get the forwarder from app state."""
    return request.app.state.forwarder


async def read_body_with_limit(request: Request, limit: int) -> bytes:
    """
    Read the request body, giving up as soon as it exceeds limit bytes.

    A declared Content-Length above the limit is rejected before reading.
    The body is cached on the request so later body() calls reuse it.
    """
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise BadRequestError(f"payload exceeds {limit} bytes")

    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise BadRequestError(f"payload exceeds {limit} bytes")
        chunks.append(chunk)

    body = b"".join(chunks)
    request._body = body
    return body


class BodyLimitRoute(APIRoute):
    """Route that enforces the registration body limit before parsing."""

    def get_route_handler(self) -> Callable[[Request], Coroutine[None, None, Response]]:
        original_route_handler = super().get_route_handler()

        async def limited_route_handler(request: Request) -> Response:
            await read_body_with_limit(request, request.app.state.settings.proxy.max_body_bytes)
            return await original_route_handler(request)

        return limited_route_handler


router = APIRouter(route_class=BodyLimitRoute)


@router.post(
    "",
    response_model=ProxyRegistrationResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid TTL or malformed body"},
        401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
    summary="Register a proxy target",
    description="""
    Register a URL for a limited time and receive an opaque id.

    **Request Requirements:**
    - `Authorization: Bearer <token>` header
    - `ttl` within the configured bounds (default 60-3600 seconds)
    - Body no larger than the configured limit (default 4096 bytes)
    """,
)
async def register_proxy(
    payload: ProxyRegistrationRequest,
    request: Request,
    registrar: ProxyRegistrar = Depends(get_registrar),
) -> ProxyRegistrationResponse:
    """Register payload.url for payload.ttl seconds."""
    entry_id = await registrar.register(
        target=payload.url,
        ttl=payload.ttl,
        authorization=get_authorization_header(request),
    )
    return ProxyRegistrationResponse(id=entry_id)


@router.get(
    "/{entry_id}",
    response_class=StreamingResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Unknown or expired id, or upstream failure"},
    },
    summary="Forward to a registered target",
    description="""
    Issue a GET to the registered target and stream the response back.

    Status code and headers are passed through, except Content-Length and
    Content-Encoding. Compressed bodies are relayed as-is.
    """,
)
async def forward_proxy(
    entry_id: UUID,
    forwarder: ProxyForwarder = Depends(get_forwarder),
) -> StreamingResponse:
    """Stream the response of the target registered under entry_id."""
    return await forwarder.forward(entry_id)
