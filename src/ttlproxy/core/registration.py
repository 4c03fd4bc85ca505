"""
Registration of new proxy entries.

Orchestrates the write path:
1. TTL bounds check
2. Bearer authorization
3. Identifier generation
4. Store insert
"""

import uuid
from typing import Optional, Union
from uuid import UUID

import structlog

from ..config import ProxySettings
from .auth import Authorizer
from .exceptions import BadRequestError, UnauthorizedError
from .metrics import MetricsCollector
from .store import ProxyStore

logger = structlog.get_logger(__name__)


class ProxyRegistrar:
    """Validates, authorizes and stores proxy registrations."""

    def __init__(
        self,
        store: ProxyStore,
        authorizer: Authorizer,
        settings: ProxySettings,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.store = store
        self.authorizer = authorizer
        self.min_ttl = settings.min_ttl
        self.max_ttl = settings.max_ttl
        self.metrics = metrics

    def validate_ttl(self, ttl: int) -> None:
        if not self.min_ttl <= ttl <= self.max_ttl:
            raise BadRequestError(f"ttl should be between {self.min_ttl} and {self.max_ttl}")

    async def register(
        self,
        target: str,
        ttl: int,
        authorization: Optional[Union[str, bytes]],
    ) -> UUID:
        """
        Register target for ttl seconds and return its new identifier.

        Raises BadRequestError for an out-of-range TTL and UnauthorizedError
        for a missing or wrong bearer token.
        """
        try:
            self.validate_ttl(ttl)
        except BadRequestError:
            logger.info("Registration rejected", reason="ttl_out_of_range", ttl=ttl)
            self._record("bad_ttl")
            raise

        try:
            self.authorizer.authorize(authorization)
        except UnauthorizedError:
            self._record("unauthorized")
            raise

        entry_id = uuid.uuid4()
        entry = await self.store.insert(entry_id, target, ttl)

        logger.info("Proxy registered", entry_id=str(entry_id), ttl_seconds=ttl)
        self._record("created")
        if self.metrics:
            self.metrics.update_store_size(len(self.store))

        return entry.id

    def _record(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_registration(outcome)
