"""
API endpoints package.

Contains FastAPI routers for all service endpoints:
- /proxy, /proxy/{id} - Registration and forwarding
- /metrics - Prometheus metrics
- /healthz, /readyz - Health checks
"""
from .healthz import router as healthz_router
from .metrics import router as metrics_router
from .proxy import router as proxy_router

__all__ = ["healthz_router", "metrics_router", "proxy_router"]
