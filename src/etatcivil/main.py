"""
Etat civil - civil registry backend

FastAPI application entry point.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from starlette.middleware.base import BaseHTTPMiddleware

from etatcivil import __version__
from etatcivil.config import settings
from etatcivil.errors import RegistryError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Rate limiter
limiter = Limiter(key_func=get_remote_address, default_limits=[
    f"{settings.rate_limit_requests}/{settings.rate_limit_window_seconds}seconds"
])

# HTTP status for each registry error kind
STATUS_BY_KIND = {
    "not_found": 404,
    "duplicate": 409,
    "invalid": 400,
    "unexpected": 500,
}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log requests and tag responses with an ID and processing time."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.time()

        request_id = request.headers.get("X-Request-ID", f"req_{int(time.time() * 1000)}")

        logger.info(
            f"Request: {request.method} {request.url.path} "
            f"[{request_id}] from {request.client.host if request.client else 'unknown'}"
        )

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(process_time)

        logger.info(
            f"Response: {request.method} {request.url.path} "
            f"[{request_id}] status={response.status_code} time={process_time:.3f}s"
        )

        return response


# Database engine and session factory
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    logger.info("Starting civil registry...")
    app.state.db_session = async_session
    logger.info("Civil registry started")

    yield

    logger.info("Shutting down civil registry...")
    await engine.dispose()
    logger.info("Civil registry shutdown complete")


app = FastAPI(
    title="Etat civil",
    description="Civil registry: persons, birth acts and death acts",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
    openapi_url="/openapi.json" if not settings.is_production else None,
)

# Rate limiting
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

# Request logging middleware
app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID", "X-Process-Time"],
    max_age=600,
)


def error_body(status_code: int, error: str, message: str) -> dict[str, Any]:
    return {
        "status": status_code,
        "error": error,
        "message": message,
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, exc: RegistryError) -> JSONResponse:
    """Map registry failures to HTTP responses by kind."""
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        logger.error(f"Registry failure on {request.url.path}: {exc.message}")
    else:
        logger.info(f"Rejected {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content=error_body(status_code, exc.kind, exc.message),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content=error_body(
            429, "rate_limited", "Too many requests. Please try again later."
        ),
        headers={"Retry-After": str(exc.detail)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions without leaking details in production."""
    logger.exception(f"Unhandled exception: {exc}")
    message = (
        "An unexpected error occurred"
        if settings.is_production
        else str(exc)
    )
    return JSONResponse(status_code=500, content=error_body(500, "unexpected", message))


@app.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Health check endpoint."""
    health_status: dict[str, Any] = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__,
        "services": {},
    }

    try:
        async with request.app.state.db_session() as session:
            await session.execute(text("SELECT 1"))
        health_status["services"]["postgres"] = {"status": "healthy"}
    except Exception as e:
        health_status["services"]["postgres"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "degraded"

    return health_status


# Import and include routers
from etatcivil.api.routes import (
    birth_acts_router,
    death_acts_router,
    persons_router,
)

app.include_router(death_acts_router, prefix="/api/v1/death-acts", tags=["death acts"])
app.include_router(birth_acts_router, prefix="/api/v1/birth-acts", tags=["birth acts"])
app.include_router(persons_router, prefix="/api/v1/persons", tags=["persons"])
