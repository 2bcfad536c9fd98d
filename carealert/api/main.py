"""CareAlert FastAPI application entry point.

Configures the FastAPI app with:
- CORS, request-id, security-header and rate-limit middleware
- Lifespan management of the database engine, the realtime broadcast
  registry and the notification workers
- Alert, WebSocket and health routes
- Error handlers mapping the engine's error taxonomy onto HTTP
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from carealert.alerting.broadcast import ConnectionRegistry
from carealert.alerting.channels import build_senders
from carealert.alerting.dispatcher import NotificationDispatcher, NotificationQueue
from carealert.alerting.recipients import SettingsRecipientResolver
from carealert.api.middleware.security import (
    RateLimitMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
)
from carealert.api.routes import alerts, health, websocket
from carealert.api.version import API_VERSION
from carealert.core.config import Settings, configure_logging, get_settings
from carealert.core.database import create_engine, init_models
from carealert.core.errors import AlertEngineError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown.

    On startup: create the database engine (and tables on SQLite), the
    broadcast registry and the notification workers.
    On shutdown: drain and stop the workers, then dispose the engine.
    """
    settings: Settings = app.state.settings

    engine, session_factory = create_engine(settings)
    app.state.db_engine = engine
    app.state.db_session_factory = session_factory
    if (settings.database_url or "").startswith("sqlite"):
        await init_models(engine)
        logger.info("SQLite schema initialized")
    logger.info("Database connection pool initialized")

    app.state.broadcast_registry = ConnectionRegistry(
        send_timeout=settings.broadcast_send_timeout,
        tenant_scoped=settings.broadcast_tenant_scoped,
    )

    dispatcher = NotificationDispatcher(
        session_factory,
        SettingsRecipientResolver(settings.notification_recipients),
        build_senders(settings),
        send_timeout=settings.notification_send_timeout_seconds,
    )
    queue = NotificationQueue(
        dispatcher,
        maxsize=settings.notification_queue_size,
        worker_count=settings.notification_worker_count,
    )
    app.state.notification_queue = queue
    if settings.notification_worker_count > 0:
        queue.start()
        logger.info(
            "Started %d notification workers (simulate=%s)",
            settings.notification_worker_count,
            settings.simulate_notifications,
        )
    else:
        app.state.notification_queue = None

    yield

    if app.state.notification_queue is not None:
        await queue.stop()
        logger.info("Notification workers stopped")
    await engine.dispose()
    logger.info("All connections closed")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Alert processing engine for monitored homes",
        version=API_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Middleware is applied in reverse order (last added = first executed).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID", "Accept"],
    )
    app.add_middleware(SecurityHeadersMiddleware, hsts=settings.app_env == "production")
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )

    app.include_router(health.router)
    app.include_router(alerts.router)
    app.include_router(websocket.router)

    # -- Error Handlers ---
    @app.exception_handler(AlertEngineError)
    async def alert_engine_error_handler(request: Request, exc: AlertEngineError) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        if exc.status_code >= 500:
            logger.error("Engine error [%s]: %s", request_id, exc.message)
        else:
            logger.info("%s [%s]: %s", exc.code, request_id, exc.message)
        content = {"error": exc.code, "detail": exc.message, "request_id": request_id}
        current_state = getattr(exc, "current_state", None)
        if current_state is not None:
            content["current_state"] = current_state
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        detail = f"{field}: {first.get('msg', 'invalid')}" if field else first.get("msg", "invalid request")
        logger.info("VALIDATION_ERROR [%s]: %s", request_id, detail)
        return JSONResponse(
            status_code=400,
            content={"error": "VALIDATION_ERROR", "detail": detail, "request_id": request_id},
        )

    @app.exception_handler(Exception)  # Intentionally broad: top-level global error handler
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception("Unhandled error [%s]: %s", request_id, exc)
        return JSONResponse(
            status_code=500,
            content={"error": "INTERNAL_ERROR", "detail": "Internal server error", "request_id": request_id},
        )

    return app


def run() -> None:
    """Serve the application with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "carealert.api.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        log_level=settings.log_level.lower(),
    )


# Application instance used by uvicorn
app = create_app()
