"""
Main FastAPI application entry point.

This module sets up the FastAPI app with all middleware, routes, and lifecycle events.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Iterable, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api import create_relay_router, healthz_router, metrics_router
from .config import Settings, get_settings
from .core.exceptions import RelayException
from .core.health import HealthChecker
from .core.metrics import MetricsCollector
from .core.relay_service import build_relay_service
from .core.transport import HttpTransport
from .sinks.base import TelemetrySink


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    # aiohttp access/client chatter
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_lifespan_handler(
    settings: Settings,
    transport: Optional[HttpTransport] = None,
    sinks: Optional[Iterable[TelemetrySink]] = None,
) -> Any:
    """Create a lifespan handler with access to settings."""
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        FastAPI lifespan context manager.

        Builds the relay once from settings and owns its connection pools.
        """
        logger = structlog.get_logger(__name__)
        logger.info("Starting TeleRelay service", version=app.version)

        metrics_collector = MetricsCollector()
        app.state.metrics = metrics_collector

        # configuration errors are fatal here
        relay_service = build_relay_service(
            settings,
            metrics=metrics_collector,
            transport=transport,
            sinks=sinks,
        )
        app.state.relay_service = relay_service
        await relay_service.start()

        app.state.health_checker = HealthChecker(relay_service)

        try:
            logger.info(
                "TeleRelay service started successfully",
                path=settings.relay.path,
                destination_uri=settings.relay.destination_uri,
            )
            yield
        finally:
            logger.info("Shutting down TeleRelay service")
            await relay_service.stop()
            logger.info("TeleRelay service shutdown complete")

    return lifespan


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[HttpTransport] = None,
    sinks: Optional[Iterable[TelemetrySink]] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    ``transport`` and ``sinks`` replace the ones built from settings.
    """
    if settings is None:
        settings = get_settings()

    configure_logging(settings.log_level)

    app = FastAPI(
        title="TeleRelay",
        description="Telemetry replication relay",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=create_lifespan_handler(settings, transport=transport, sinks=sinks),
    )

    # browser SDKs post telemetry cross-origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["POST"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RelayException, relay_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(create_relay_router(settings.relay.path), tags=["relay"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(healthz_router, tags=["health"])

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, str]:
        """Root endpoint with service information."""
        return {
            "service": "TeleRelay",
            "version": app.version,
            "description": "Telemetry replication relay",
            "relay_path": settings.relay.path,
            "docs": "/docs",
        }

    return app


async def relay_exception_handler(request: Request, exc: RelayException) -> JSONResponse:
    """Handle custom TeleRelay exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "TeleRelay exception occurred",
        error=str(exc),
        error_code=exc.error_code,
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": str(exc),
            "details": exc.details,
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "Unexpected exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "telerelay.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )
