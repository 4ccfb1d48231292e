"""
Module: stock_api.app
Responsibility: FastAPI application factory.  Wires settings, the database
    engine, request-context middleware, the central error handlers and every
    router.
Architecture position: Outer layer entry point.  The only place that turns
    ``stock_config.Settings`` into kernel initialization calls.

Invariants enforced:
    - Every response carries ``X-Correlation-Id`` (echoed, or generated).
    - LogContext is bound for the duration of each request, so kernel log
      lines and audit events carry the request's correlation id.
    - Exactly one ``request_completed`` log line per handled request.
"""

import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request

from stock_api.deps import TENANT_HEADER, USER_HEADER
from stock_api.errors import CORRELATION_HEADER, install_error_handlers
from stock_api.routers import ALL_ROUTERS
from stock_config import Settings, get_settings
from stock_kernel.db.engine import create_tables, init_engine_from_url, reset_engine
from stock_kernel.db.immutability import register_immutability_listeners
from stock_kernel.domain.clock import Clock
from stock_kernel.logging_config import LogContext, configure_logging, get_logger

logger = get_logger("api.app")


def create_app(settings: Settings | None = None, clock: Clock | None = None) -> FastAPI:
    """
    Build the HTTP application.

    Args:
        settings: Runtime settings; ``get_settings()`` when None.
        clock: Clock handed to services; the system clock when None.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(level=settings.log_level)
        init_engine_from_url(settings.database_url, echo=settings.echo_sql)
        create_tables()
        register_immutability_listeners()
        logger.info("app_started", extra={"environment": settings.environment})
        yield
        reset_engine()
        logger.info("app_stopped")

    app = FastAPI(title="Stock Kernel API", lifespan=lifespan)
    app.state.settings = settings
    app.state.clock = clock

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid4())
        request.state.correlation_id = correlation_id
        started = time.perf_counter()
        with LogContext.bind(
            correlation_id=correlation_id,
            tenant_id=request.headers.get(TENANT_HEADER),
            actor_id=request.headers.get(USER_HEADER),
            request_path=request.url.path,
        ):
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id
            logger.info(
                "request_completed",
                extra={
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
        return response

    install_error_handlers(app)
    for router in ALL_ROUTERS:
        app.include_router(router)
    return app
