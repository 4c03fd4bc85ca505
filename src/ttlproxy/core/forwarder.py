"""
Async forwarder that resolves proxy ids and streams upstream responses back.

Features:
- Shared aiohttp session, no automatic decompression
- Bounded redirect following
- Header deny-list
- Chunked body passthrough without full buffering
- Timeouts per connect, header wait and body read, no total deadline
"""

import asyncio
import time
from typing import AsyncIterator, Iterable, List, Optional, Tuple
from uuid import UUID

import aiohttp
import structlog
from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse

from ..config import ProxySettings
from .exceptions import BadRequestError
from .metrics import MetricsCollector
from .store import ProxyStore

logger = structlog.get_logger(__name__)

USER_AGENT = "ttlproxy/0.1"


def filter_response_headers(
    headers: Iterable[Tuple[bytes, bytes]],
    ignored: Iterable[str],
) -> List[Tuple[bytes, bytes]]:
    """
    Copy upstream headers except the ignored ones.

    Repeated headers such as Set-Cookie are kept as separate pairs.
    """
    ignored_lower = {name.lower() for name in ignored}
    raw_headers = []
    for name, value in headers:
        if name.decode("latin-1").lower() in ignored_lower:
            continue
        raw_headers.append((name.lower(), value))
    return raw_headers


class ProxyForwarder:
    """
    Forwards GET requests for registered ids to their targets.

    Handles:
    - Id resolution through the store
    - Outbound request and error translation
    - Response header filtering
    - Streaming passthrough and upstream connection release
    """

    def __init__(
        self,
        store: ProxyStore,
        settings: ProxySettings,
        metrics: Optional[MetricsCollector] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.metrics = metrics
        self.session = session
        self._owns_session = session is None

        logger.info(
            "Proxy Forwarder initialized",
            max_redirects=settings.max_redirects,
            ignored_headers=settings.ignored_headers,
        )

    async def start(self) -> None:
        """Open the outbound session."""
        if self.session is not None:
            return

        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(
                total=None,
                sock_connect=self.settings.upstream_timeout_seconds,
                sock_read=self.settings.upstream_timeout_seconds,
            ),
            auto_decompress=False,
            headers={"User-Agent": USER_AGENT},
        )
        self._owns_session = True

        logger.info("Proxy Forwarder started")

    async def stop(self) -> None:
        """Close the outbound session if this forwarder opened it."""
        if self.session is not None and self._owns_session:
            await self.session.close()
        self.session = None

        logger.info("Proxy Forwarder stopped")

    def is_healthy(self) -> bool:
        return self.session is not None and not self.session.closed

    async def forward(self, entry_id: UUID) -> StreamingResponse:
        """
        Resolve entry_id and stream the target's response.

        Raises BadRequestError("bad id") for unknown or expired ids and
        BadRequestError("request failed") when the upstream request fails.
        """
        target = await self.store.lookup(entry_id)
        if target is None:
            logger.info("Proxy lookup failed", entry_id=str(entry_id))
            self._record_lookup("miss")
            raise BadRequestError("bad id")
        self._record_lookup("hit")

        upstream = await self._send(entry_id, target)

        response = StreamingResponse(
            self._iter_body(upstream),
            status_code=upstream.status,
            background=BackgroundTask(self._release, upstream),
        )
        response.raw_headers = filter_response_headers(
            upstream.raw_headers,
            self.settings.ignored_headers,
        )
        return response

    async def _send(self, entry_id: UUID, target: str) -> aiohttp.ClientResponse:
        if self.session is None:
            logger.error("Outbound session not started", entry_id=str(entry_id))
            raise BadRequestError("request failed")

        max_redirects = self.settings.max_redirects
        start = time.perf_counter()
        try:
            # aiohttp fails once the hop count reaches max_redirects, so allow one more
            upstream = await asyncio.wait_for(
                self.session.get(
                    target,
                    allow_redirects=max_redirects > 0,
                    max_redirects=max_redirects + 1,
                ),
                timeout=self.settings.upstream_timeout_seconds,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            duration = time.perf_counter() - start
            logger.error(
                "Remote request failed",
                entry_id=str(entry_id),
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round(duration * 1000, 2),
            )
            if self.metrics:
                self.metrics.record_upstream_request(None, duration)
            raise BadRequestError("request failed") from e

        duration = time.perf_counter() - start
        logger.info(
            "Remote request completed",
            entry_id=str(entry_id),
            status=upstream.status,
            redirects=len(upstream.history),
            duration_ms=round(duration * 1000, 2),
        )
        if self.metrics:
            self.metrics.record_upstream_request(upstream.status, duration)
        return upstream

    async def _iter_body(self, upstream: aiohttp.ClientResponse) -> AsyncIterator[bytes]:
        # TODO: stop streaming once a configurable response size cap is reached
        try:
            async for chunk in upstream.content.iter_chunked(self.settings.stream_chunk_bytes):
                yield chunk
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            # Headers are already sent; the caller sees a truncated body
            logger.warning("Upstream body stream aborted", url=str(upstream.url), error=str(e))
        finally:
            upstream.release()

    @staticmethod
    async def _release(upstream: aiohttp.ClientResponse) -> None:
        upstream.release()

    def _record_lookup(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_lookup(outcome)
