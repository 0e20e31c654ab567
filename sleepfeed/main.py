"""
sleepfeed - Main FastAPI Application

Social sleep tracking: users clock in and out of sleep sessions, follow
each other, and read a feed of the completed sessions of the people they
follow. All endpoints share the error envelope
{"error", "error_code", "details"}.
"""

import os
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from sleepfeed import __version__
from sleepfeed import admin_api, feed_api, follows_api, sleep_records_api, users_api
from sleepfeed.cache import CacheClient
from sleepfeed.config import Settings, get_settings
from sleepfeed.database import init_db
from sleepfeed.dependencies import endpoint_name
from sleepfeed.errors import SleepFeedError
from sleepfeed.logger import configure_logging, get_logger, log_request
from sleepfeed.metrics import MetricsCollector

logger = get_logger("main")

HTTP_ERROR_CODES = {404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup. In production, use migrations instead."""
    bind = app.state.session_factory.kw.get("bind")
    try:
        init_db(bind)
    except Exception as e:
        logger.warning("Could not run create_all: %s. Tables should already exist.", e)
    yield


# ---------------------------------------------------------------------------
# Request logging middleware
# One JSON line per request with method, path, caller, status and
# duration_ms. Latency and errors also go to the metrics collector.
# ---------------------------------------------------------------------------

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "OPTIONS":
            return await call_next(request)

        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        t0 = time.perf_counter()
        entry = {
            "type": "api_request",
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "user_id": request.headers.get("X-USER-ID"),
        }
        metrics: MetricsCollector = request.app.state.metrics

        try:
            response = await call_next(request)
        except Exception as e:
            entry.update(
                status=500,
                duration_ms=round((time.perf_counter() - t0) * 1000, 1),
                error={"class": type(e).__name__, "message": str(e)},
            )
            endpoint = endpoint_name(request)
            metrics.record_latency(endpoint, entry["duration_ms"])
            metrics.record_error(endpoint)
            log_request(entry)
            raise

        entry["status"] = response.status_code
        entry["duration_ms"] = round((time.perf_counter() - t0) * 1000, 1)
        endpoint = endpoint_name(request)
        metrics.record_latency(endpoint, entry["duration_ms"])
        if response.status_code >= 500:
            metrics.record_error(endpoint)

        log_request(entry)
        response.headers["X-Request-ID"] = request_id
        return response


#
# Exception handlers
#

async def sleepfeed_error_handler(request: Request, exc: SleepFeedError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Render FastAPI's validation errors as {field: [messages]}."""
    details = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "header")]
        details.setdefault(".".join(loc) or "request", []).append(err.get("msg", "is invalid"))
    return JSONResponse(
        status_code=422,
        content={"error": "Validation failed", "error_code": "VALIDATION_ERROR", "details": details},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail), "error_code": HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")},
        headers=getattr(exc, "headers", None),
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled exceptions and return 500 with the stable envelope."""
    logger.error("Unhandled exception: %s\n%s", exc, traceback.format_exc())
    body = {"error": "Internal server error", "error_code": "INTERNAL_ERROR"}
    # Outside production, include error detail in response to help debug
    if not request.app.state.settings.is_production:
        body["details"] = {"type": type(exc).__name__, "message": str(exc)}
    return JSONResponse(status_code=500, content=body)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    cache: Optional[CacheClient] = None,
    metrics: Optional[MetricsCollector] = None,
) -> FastAPI:
    """
    Build the application with its collaborators on app.state.

    Anything not passed in is created from settings (tests pass their own
    session factory and a cache around a mock Redis client).
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.enable_request_logging)

    if session_factory is None:
        from sleepfeed.database import SessionLocal
        session_factory = SessionLocal
    metrics = metrics or MetricsCollector()
    cache = cache or CacheClient.from_settings(settings, metrics=metrics)

    app = FastAPI(
        title="sleepfeed",
        description="Social sleep tracking API with a Redis-cached follow graph and social feed",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.cache = cache
    app.state.metrics = metrics

    # In production, configure this more strictly
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(SleepFeedError, sleepfeed_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(users_api.router)
    app.include_router(sleep_records_api.router)
    app.include_router(follows_api.router)
    app.include_router(feed_api.router)
    app.include_router(admin_api.router)

    #
    # Health Check Endpoints
    #

    @app.get("/")
    def root():
        return {"service": "sleepfeed", "version": __version__, "status": "operational"}

    @app.get("/health")
    def health_check(request: Request):
        """Database and cache connectivity."""
        health_status = {"service": "healthy", "database": "unknown", "cache": "unknown"}

        db = request.app.state.session_factory()
        try:
            db.execute(text("SELECT 1"))
            health_status["database"] = "healthy"
        except Exception as e:
            health_status["database"] = f"unhealthy: {e}"
            health_status["service"] = "degraded"
        finally:
            db.close()

        if request.app.state.cache.ping():
            health_status["cache"] = "healthy"
        else:
            health_status["cache"] = "unhealthy: no response"
            health_status["service"] = "degraded"

        return health_status

    @app.get("/metrics")
    def get_metrics(request: Request):
        """
        Observability metrics endpoint.

        Returns:
        - Latency percentiles (p50, p95, p99) per endpoint
        - Cache hit rate
        - Request counts and error rates
        - ORM statements per request
        - Uptime
        """
        return request.app.state.metrics.get_summary()

    return app


app = create_app()


def run():
    uvicorn.run(
        "sleepfeed.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )


#
# Development Server
#

if __name__ == "__main__":
    uvicorn.run("sleepfeed.main:app", host="0.0.0.0", port=8000, reload=True)
