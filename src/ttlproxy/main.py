"""
Main FastAPI application entry point.

This module sets up the FastAPI app with middleware, routes, error handlers
and the lifespan that owns the store, the forwarder and the expiry sweeper.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .api import healthz_router, metrics_router, proxy_router
from .config import Settings, get_settings
from .core.auth import Authorizer
from .core.exceptions import ConfigurationError, NotFoundError, ProxyServiceException
from .core.forwarder import ProxyForwarder
from .core.health import HealthChecker
from .core.metrics import MetricsCollector
from .core.registration import ProxyRegistrar
from .core.store import Clock, ProxyStore
from .core.sweeper import ExpirySweeper


def configure_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structured logging for the application."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    renderer: Any = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_lifespan_handler(settings: Settings, clock: Optional[Clock] = None) -> Any:
    """Create a lifespan handler with access to settings."""
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        FastAPI lifespan context manager.

        Builds the core components, starts the outbound session and the
        expiry sweeper, and tears both down on shutdown.
        """
        logger = structlog.get_logger(__name__)
        logger.info("Starting ttlproxy service", version=app.version)

        try:
            authorizer = Authorizer(settings.security.access_token)
        except ConfigurationError as e:
            logger.critical("Startup aborted", error=str(e))
            raise

        metrics_collector = MetricsCollector()
        app.state.metrics = metrics_collector

        store = ProxyStore(clock=clock, lock_timeout_seconds=settings.proxy.lock_timeout_seconds)
        app.state.store = store

        app.state.registrar = ProxyRegistrar(store, authorizer, settings.proxy, metrics_collector)

        forwarder = ProxyForwarder(store, settings.proxy, metrics_collector)
        app.state.forwarder = forwarder
        await forwarder.start()

        sweeper = ExpirySweeper(store, settings.proxy.sweep_interval, metrics_collector)
        app.state.sweeper = sweeper
        await sweeper.start()

        app.state.health_checker = HealthChecker(store, sweeper, forwarder)

        try:
            logger.info(
                "ttlproxy service started successfully",
                min_ttl=settings.proxy.min_ttl,
                max_ttl=settings.proxy.max_ttl,
                sweep_interval_seconds=settings.proxy.sweep_interval,
            )
            yield
        finally:
            logger.info("Shutting down ttlproxy service")

            await sweeper.stop()
            await forwarder.stop()

            logger.info("ttlproxy service shutdown complete")

    return lifespan


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": status_code, "message": message},
    )


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as a {status, message} envelope."""

    @app.exception_handler(ProxyServiceException)
    async def proxy_exception_handler(request: Request, exc: ProxyServiceException) -> JSONResponse:
        """Handle custom service exceptions."""
        logger = structlog.get_logger(__name__)
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "Request failed",
            error=str(exc),
            error_code=exc.error_code,
            status_code=exc.status_code,
            path=request.url.path,
            method=request.method,
        )
        return _error_response(exc.status_code, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Malformed bodies and path parameters are bad requests."""
        message = _validation_message(exc)
        structlog.get_logger(__name__).debug(
            "Request validation failed",
            error=message,
            path=request.url.path,
        )
        return _error_response(400, f"bad request: {message}")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Framework HTTP errors (unmatched routes, wrong methods)."""
        if exc.status_code == 404:
            not_found = NotFoundError()
            return _error_response(not_found.status_code, str(not_found))
        return _error_response(exc.status_code, str(exc.detail).lower())

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        structlog.get_logger(__name__).error(
            "Unexpected exception occurred",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
            exc_info=exc,
        )
        return _error_response(500, "internal error")


def create_app(settings: Optional[Settings] = None, clock: Optional[Clock] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory function ensures all configuration is applied
    whether running via uvicorn or direct execution.
    """
    if settings is None:
        settings = get_settings()

    configure_logging(settings.log_level, settings.log_json)

    app = FastAPI(
        title="ttlproxy",
        description="Ephemeral URL forwarding proxy",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=create_lifespan_handler(settings, clock),
    )
    app.state.settings = settings

    @app.middleware("http")
    async def access_log(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        route = request.scope.get("route")
        endpoint = getattr(route, "path", "unmatched")

        structlog.get_logger("ttlproxy.access").info(
            "Request handled",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )
        metrics = getattr(request.app.state, "metrics", None)
        if metrics is not None:
            metrics.record_request(request.method, endpoint, response.status_code, duration)
        return response

    register_exception_handlers(app)

    app.include_router(proxy_router, prefix="/proxy", tags=["proxy"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(healthz_router, tags=["health"])

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, str]:
        """Root endpoint with service information."""
        return {
            "service": "ttlproxy",
            "version": app.version,
            "description": "Ephemeral URL forwarding proxy",
            "docs": "/docs",
        }

    return app


# Create the app instance
app = create_app()


def run() -> None:
    """Console entry point."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "ttlproxy.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
