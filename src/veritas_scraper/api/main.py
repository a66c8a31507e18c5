"""FastAPI application factory and entry point.

Creates the application instance, registers middleware and mounts the
scraping-job and source routers.

Usage::

    # Development server (from project root)
    uvicorn veritas_scraper.api.main:app --reload

    # Production (Gunicorn + Uvicorn workers)
    gunicorn veritas_scraper.api.main:app -k uvicorn.workers.UvicornWorker
"""

from __future__ import annotations

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from veritas_scraper.api import metrics
from veritas_scraper.config.settings import get_settings
from veritas_scraper.core.logging_config import configure_logging, request_id_var

logger = structlog.get_logger(__name__)


def _route_path(request: Request) -> str:
    """Return the matched route template, keeping metric label cardinality low."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application.

    Separated from the module-level ``app`` singleton so that tests can
    call ``create_app()`` with a patched settings environment.

    Returns:
        A fully configured ``FastAPI`` instance.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    application = FastAPI(
        title=settings.app_name,
        description=(
            "News scraping service: feed ingestion, article extraction and "
            "scraping job orchestration."
        ),
        version="0.1.0",
        debug=settings.debug,
    )

    # ---- Middleware --------------------------------------------------------

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.middleware("http")
    async def request_logging_middleware(
        request: Request, call_next: Callable
    ) -> Response:
        """Log every request with a unique ``request_id`` and record HTTP metrics."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("unhandled_exception", exc_info=exc)
            raise
        finally:
            elapsed = time.perf_counter() - start
            status_code = getattr(response, "status_code", 500)
            path = _route_path(request)
            metrics.http_requests_total.labels(
                method=request.method, path=path, status=str(status_code)
            ).inc()
            metrics.http_request_duration_seconds.labels(
                method=request.method, path=path
            ).observe(elapsed)
            log_fn = logger.warning if status_code >= 400 else logger.info
            log_fn(
                "request_complete",
                status_code=status_code,
                elapsed_ms=round(elapsed * 1000, 2),
            )

        response.headers["X-Request-ID"] = request_id
        return response

    # ---- Routers -----------------------------------------------------------

    from veritas_scraper.scraper.router import router as scraping_router  # noqa: PLC0415
    from veritas_scraper.scraper.router import sources_router  # noqa: PLC0415

    application.include_router(
        scraping_router, prefix="/scraping-jobs", tags=["scraping-jobs"]
    )
    application.include_router(sources_router, prefix="/sources", tags=["sources"])

    # ---- Lifecycle events -------------------------------------------------

    @application.on_event("startup")
    async def on_startup() -> None:
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            debug=settings.debug,
            log_level=settings.log_level,
        )

    @application.on_event("shutdown")
    async def on_shutdown() -> None:
        """Dispose the application engine on clean shutdown."""
        from veritas_scraper.core import database  # noqa: PLC0415

        if database._engine is not None:
            await database._engine.dispose()
        logger.info("application_shutdown")

    # ---- System endpoints -------------------------------------------------

    @application.get("/health", tags=["system"])
    async def health() -> JSONResponse:
        """Return a minimal process-level liveness status.

        Used by container health checks; performs no I/O.
        """
        return JSONResponse({"status": "ok"})

    if settings.metrics_enabled:

        @application.get("/metrics", tags=["system"], include_in_schema=False)
        async def prometheus_metrics() -> Response:
            """Expose Prometheus metrics in the text exposition format."""
            body, content_type = metrics.get_metrics_response()
            return Response(content=body, media_type=content_type)

    return application


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

app = create_app()
"""The FastAPI application instance.

This is the ASGI callable passed to Uvicorn / Gunicorn.
"""
