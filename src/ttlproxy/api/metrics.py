"""
Prometheus metrics endpoint.

Exposes metrics in Prometheus text format for scraping.
"""

import structlog
from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="""
    Prometheus metrics endpoint in standard text format.

    **Key Metrics:**
    - proxy_registrations_total{outcome} - Registration attempts
    - proxy_lookups_total{outcome} - Forwarding lookups (hit/miss)
    - proxy_upstream_requests_total{status_code} - Outbound requests
    - proxy_store_entries - Entries held by the store
    - proxy_sweeps_total / proxy_sweep_errors_total - Sweeper activity
    - http_request_duration_seconds - Request latency histogram
    """,
)
async def get_metrics(request: Request) -> Response:
    """
    Prometheus metrics endpoint.
    """
    metrics_collector = getattr(request.app.state, "metrics", None)

    if not metrics_collector:
        logger.warning("Metrics collector not initialized")
        return Response(
            content="# Metrics collector not initialized\n",
            media_type=CONTENT_TYPE_LATEST,
        )

    metrics_collector.update_system_metrics()
    metrics_data = generate_latest(metrics_collector.registry)

    logger.debug("Metrics scraped successfully", size_bytes=len(metrics_data))

    return Response(
        content=metrics_data,
        media_type=CONTENT_TYPE_LATEST,
    )
