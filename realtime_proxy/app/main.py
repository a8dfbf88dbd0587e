"""
FastAPI Realtime Proxy Application Factory
==========================================

This is the main entry point for the proxy that sits between browser clients
and the OpenAI Realtime API. Browsers cannot send an Authorization header on
a WebSocket upgrade; the proxy attaches it on their behalf.

Architecture:
    Browser → Realtime Proxy (this service) → OpenAI Realtime API

Routes:
    - /, /health    : Health check endpoint
    - any path (ws) : WebSocket relay to the upstream realtime API

Environment Variables:
    - OPENAI_API_KEY: Upstream API key (required; the process exits without it)
    - PORT / PROXY_PORT: Listening port (default: 8080)
    - LOG_LEVEL: Logging level (default: INFO)
    - See realtime_proxy/app/config.py for the rest

Running the Service:
    realtime-proxy

    Or through uvicorn:
        uvicorn realtime_proxy.app.main:create_app --factory --host 0.0.0.0 --port 8080
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
import uvicorn

from realtime_proxy.app.config import Settings, describe_settings_error, load_settings
from realtime_proxy.app.models import ErrorResponse, HealthResponse
from realtime_proxy.app.realtime import realtime_router


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Logs the upstream endpoint on startup (never the credential) and the
    shutdown. Sessions hold no shared resources, so there is nothing else
    to set up or release.
    """
    settings: Settings = app.state.settings
    logger = logging.getLogger("realtime_proxy.main")

    logger.info(
        "Realtime proxy started",
        extra={
            "upstream_url": settings.upstream_url,
            "host": settings.PROXY_HOST,
            "port": settings.PROXY_PORT,
            "log_level": settings.LOG_LEVEL
        }
    )

    yield

    logger.info("Realtime proxy shutdown complete")


# Create FastAPI application
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - Health check routes
        - WebSocket relay route
        - Exception handlers

    Args:
        settings: Immutable settings; loaded from the environment when omitted

    Returns:
        FastAPI: Configured application instance
    """
    if settings is None:
        settings = load_settings()

    app = FastAPI(
        title="Realtime Proxy",
        description="WebSocket proxy attaching credentials for the OpenAI Realtime API",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None
    )
    app.state.settings = settings

    # Health check endpoint
    @app.get("/health", tags=["System"])
    @app.get("/", tags=["System"])
    async def health_check() -> Dict[str, str]:
        """
        Health check endpoint.

        Returns:
            dict: Fixed service status payload
        """
        return HealthResponse().model_dump()

    # Realtime router: relays client WebSockets on any path
    app.include_router(realtime_router)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger = logging.getLogger("realtime_proxy.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="internal_server_error",
                message="An unexpected error occurred",
                detail=str(exc) if settings.LOG_LEVEL == "DEBUG" else None
            ).model_dump()
        )

    return app


def main() -> None:
    """
    Process entry point.

    Loads settings once; a missing OPENAI_API_KEY (or any invalid value) is
    fatal and the process exits with status 1 before listening.
    """
    try:
        settings = load_settings()
    except ValidationError as exc:
        setup_logging("INFO")
        logger = logging.getLogger("realtime_proxy.main")
        for line in describe_settings_error(exc):
            logger.critical(f"Error: {line}")
        logger.critical("Please create a .env file with: OPENAI_API_KEY=your-key-here")
        sys.exit(1)

    setup_logging(settings.LOG_LEVEL)

    uvicorn.run(
        create_app(settings),
        host=settings.PROXY_HOST,
        port=settings.PROXY_PORT,
        log_level=settings.LOG_LEVEL.lower(),
        ws_max_size=settings.MAX_MESSAGE_BYTES
    )


if __name__ == "__main__":
    main()
