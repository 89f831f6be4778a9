"""
FastAPI Host Adapter
====================

Plays the host's role for the Fleet relay: builds the relay instance from
environment settings, dispatches resource calls to it, exposes its health
check and disposes it on shutdown.

Architecture:
    Caller → Host adapter (this service) → FleetRelayApp → Fleet Management API

Routes:
    - /health                 : Instance health check (static, never calls Fleet)
    - {RESOURCE_PREFIX}/*     : Resource calls (ping, echo, Fleet proxy routes)
    - /                       : Service information

Environment Variables:
    - FLEET_RELAY_JSON_DATA: Instance JSON, e.g. '{"fleetBaseURL": "https://..."}'
    - FLEET_AUTH_TOKEN: Pre-encoded Basic credential for the Fleet API
    - DEFAULT_FLEET_AUTH_TOKEN: Credential for the 'default' endpoint profile
    - RESOURCE_PREFIX: Mount point of resource routes (default: /resources)
    - UPSTREAM_TIMEOUT_SECONDS / UPSTREAM_CONNECT_TIMEOUT_SECONDS
    - ALLOWED_ORIGINS: Comma-separated CORS origins
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn fleet_relay.app.main:app --reload --host 0.0.0.0 --port 8080

    Production:
        uvicorn fleet_relay.app.main:app --host 0.0.0.0 --port 8080 --workers 4
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Dict, Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import ClientDisconnect

from fleet_relay import __version__
from fleet_relay.app.config import Settings, get_settings
from fleet_relay.app.errors import ConfigParseError, InboundBodyReadError
from fleet_relay.app.instances import InstanceManager
from fleet_relay.app.models import (
    HealthResult,
    HealthStatus,
    InstanceSettings,
    ProxiedResponse,
    ResourceRequest,
)
from fleet_relay.app.plugin import FleetRelayApp, error_response

logger = logging.getLogger("fleet_relay.main")

RESOURCE_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]

# Non-standard status recorded when the caller went away mid-dispatch
CLIENT_CLOSED_REQUEST = 499


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


class AppState:
    """
    Per-application state container.

    Holds the shared HTTP client and the instance manager. Lives on
    ``app.state.app_state`` so two apps in one process never share it.
    """
    def __init__(self, settings: Settings):
        self.settings = settings
        self.instance_settings: InstanceSettings = settings.instance_settings()
        self.http_client: Optional[httpx.AsyncClient] = None
        self.owns_http_client = False
        self.instance_manager: Optional[InstanceManager] = None


async def run_until_disconnected(
    request: Request,
    work: Awaitable[ProxiedResponse],
    poll_seconds: float,
) -> Optional[ProxiedResponse]:
    """
    Run a dispatch, cancelling it if the caller disconnects first.

    Returns:
        The dispatch result, or None if the caller went away
    """
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_seconds)
            if done:
                return task.result()

            if await request.is_disconnected():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                logger.info(
                    "Caller disconnected, cancelled resource call",
                    extra={"path": request.url.path, "method": request.method},
                )
                return None
    except asyncio.CancelledError:
        task.cancel()
        raise


def get_app_state(request: Request) -> AppState:
    return request.app.state.app_state


def get_instance(request: Request) -> FleetRelayApp:
    """
    Dependency returning the current relay instance.

    Raises:
        HTTPException: 503 if the host is not started or the instance
            settings could not be parsed
    """
    state = get_app_state(request)
    if state.instance_manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relay host not initialized"
        )

    try:
        return state.instance_manager.get(
            state.settings.FLEET_RELAY_INSTANCE_KEY,
            state.instance_settings,
        )
    except ConfigParseError as e:
        logger.error(f"Relay instance could not be created: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relay instance could not be created"
        )


def to_response(result: ProxiedResponse) -> Response:
    return Response(
        content=result.body,
        status_code=result.status_code,
        headers=result.headers,
    )


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Application factory function.

    Args:
        settings: Settings to use instead of the environment
        http_client: Shared client to adopt instead of creating one; an
            adopted client is not closed on shutdown

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: logging, shared HTTP client, eager instance creation.
        Shutdown: dispose instances, close an owned HTTP client.
        """
        setup_logging(settings.LOG_LEVEL)
        state: AppState = app.state.app_state

        if http_client is None:
            state.http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    settings.UPSTREAM_TIMEOUT_SECONDS,
                    connect=settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS,
                )
            )
            state.owns_http_client = True
        else:
            state.http_client = http_client

        state.instance_manager = InstanceManager(state.http_client)

        logger.info(
            "Starting fleet relay",
            extra={
                "resource_prefix": settings.RESOURCE_PREFIX,
                "instance_key": settings.FLEET_RELAY_INSTANCE_KEY,
                "log_level": settings.LOG_LEVEL,
            }
        )

        # Fail fast in the logs; requests keep answering 503 until fixed
        try:
            state.instance_manager.get(settings.FLEET_RELAY_INSTANCE_KEY, state.instance_settings)
        except ConfigParseError as e:
            logger.error(f"Relay instance could not be created: {e}")

        yield

        logger.info("Shutting down fleet relay")
        state.instance_manager.dispose_all()
        state.instance_manager = None

        if state.owns_http_client:
            await state.http_client.aclose()
            logger.info("Closed upstream HTTP client")
        state.http_client = None

    app = FastAPI(
        title="Fleet Relay",
        description="Credential-injecting relay for the Fleet Management API",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.app_state = AppState(settings)

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=RESOURCE_METHODS,
            allow_headers=["*"],
        )

    @app.get("/health", tags=["System"])
    async def health_check(request: Request) -> JSONResponse:
        """
        Health check endpoint.

        Reports the relay's own liveness; the Fleet API is not contacted.
        Answers 503 with status "error" while no instance can be created.
        """
        try:
            instance = get_instance(request)
        except HTTPException as e:
            result = HealthResult(status=HealthStatus.ERROR, message=e.detail)
            return JSONResponse(status_code=e.status_code, content=result.model_dump(mode="json"))

        result = await instance.check_health()
        return JSONResponse(status_code=status.HTTP_200_OK, content=result.model_dump(mode="json"))

    @app.get("/", tags=["System"])
    async def root() -> Dict[str, Any]:
        return {
            "service": "fleet-relay",
            "version": __version__,
            "endpoints": {
                "health": "/health",
                "docs": "/docs",
                "resources": settings.RESOURCE_PREFIX,
            }
        }

    @app.api_route(
        settings.RESOURCE_PREFIX + "/{path:path}",
        methods=RESOURCE_METHODS,
        tags=["Resources"],
    )
    async def call_resource(
        request: Request,
        path: str,
        instance: FleetRelayApp = Depends(get_instance),
    ) -> Response:
        """
        Dispatch a resource call to the relay instance.

        The dispatch is cancelled if the caller disconnects while it runs.
        """
        try:
            body = await request.body()
        except ClientDisconnect:
            logger.warning("Caller disconnected while sending the request body")
            return to_response(error_response(InboundBodyReadError()))

        resource_request = ResourceRequest(
            path="/" + path,
            method=request.method,
            body=body,
        )

        result = await run_until_disconnected(
            request,
            instance.call_resource(resource_request),
            settings.DISCONNECT_POLL_SECONDS,
        )
        if result is None:
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        return to_response(result)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
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
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "detail": str(exc) if settings.LOG_LEVEL == "DEBUG" else None
            }
        )

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    """
    Direct execution entry point.

    This allows running the service directly with: python -m fleet_relay.app.main
    However, using uvicorn command is recommended for production.
    """
    settings = get_settings()

    uvicorn.run(
        "fleet_relay.app.main:app",
        host=settings.RELAY_HOST,
        port=settings.RELAY_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
