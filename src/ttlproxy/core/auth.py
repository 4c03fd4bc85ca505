"""
Bearer token authorization for the registration endpoint.
"""

import hmac
from typing import Optional, Union

import structlog
from fastapi import Request

from .exceptions import ConfigurationError, UnauthorizedError

logger = structlog.get_logger(__name__)

BEARER_PREFIX = "Bearer "


class Authorizer:
    """
    Validates ``Authorization: Bearer <token>`` against a single shared secret.

    The secret is captured once at construction. Token comparison goes through
    ``hmac.compare_digest`` so its duration does not depend on the position of
    the first mismatching byte.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ConfigurationError("access token is not configured")
        self._secret = secret.encode("utf-8")

    def authorize(self, header_value: Optional[Union[str, bytes]]) -> None:
        """
        Check a raw Authorization header value.

        Raises UnauthorizedError on a missing header, an undecodable header,
        a missing ``Bearer`` scheme or a token mismatch.
        """
        if header_value is None:
            logger.debug("Authorization failed", reason="missing_header")
            raise UnauthorizedError("missing Authorization header")

        header = _decode_header(header_value)
        if header is None:
            logger.debug("Authorization failed", reason="undecodable_header")
            raise UnauthorizedError("bad Authorization header")

        if not header.startswith(BEARER_PREFIX):
            logger.debug("Authorization failed", reason="bad_scheme")
            raise UnauthorizedError("bad Bearer token format")

        token = header[len(BEARER_PREFIX):].encode("ascii")
        if not hmac.compare_digest(token, self._secret):
            logger.warning("Authorization failed", reason="token_mismatch")
            raise UnauthorizedError("bad token")


def _decode_header(value: Union[str, bytes]) -> Optional[str]:
    """Return the header as text if it only holds visible ASCII (and tabs)."""
    if isinstance(value, bytes):
        try:
            value = value.decode("ascii")
        except UnicodeDecodeError:
            return None
    if not all(c == "\t" or 32 <= ord(c) < 127 for c in value):
        return None
    return value


def get_authorization_header(request: Request) -> Optional[bytes]:
    """Raw Authorization header bytes, or None when absent."""
    for name, value in request.headers.raw:
        if name.lower() == b"authorization":
            return value
    return None
