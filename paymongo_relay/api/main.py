"""
Main FastAPI application.

PayMongo checkout relay API with:
- CORS and origin checks
- Per-IP rate limiting on /api/ routes
- Request ID tracking and security headers
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from paymongo_relay import __version__
from paymongo_relay.config import get_settings
from paymongo_relay.core.rate_limit import RateLimitExceeded
from paymongo_relay.monitoring.logging import setup_logging
from paymongo_relay.monitoring.metrics import metrics

from .dependencies import close_services, get_ip_rate_limiter
from .routes import monitoring_router, payment_router
from .security import client_ip

# Setup logging first
setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()

RATE_LIMIT_MESSAGE = "Too many requests, please try again later"
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        test_mode=settings.is_test_mode,
        leadconnector_enabled=bool(settings.leadconnector_webhook_url)
        and not settings.disable_leadconnector_webhook,
        ghl_enabled=settings.ghl_enabled,
        webhook_signature_verification=bool(settings.paymongo_webhook_secret),
    )

    yield

    logger.info("application_shutdown")
    try:
        await close_services()
        logger.info("service_clients_closed")
    except Exception as e:
        logger.error("service_shutdown_error", error=str(e))


# Create FastAPI application
app = FastAPI(
    title="PayMongo Checkout Relay",
    description=(
        "Checkout relay between the Nexistry Academy frontend and PayMongo. "
        "Features: exact centavo pricing with tax breakdowns, hosted checkout sessions, "
        "webhook relay to LeadConnector and GoHighLevel, and refunds."
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list() if settings.is_production else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next: Any) -> Response:
    """Reject disallowed origins and apply the per-IP limit to /api/ routes."""
    if not request.url.path.startswith("/api/"):
        return await call_next(request)

    origin = request.headers.get("origin")
    if (
        settings.is_production
        and origin
        and origin not in settings.get_allowed_origins_list()
    ):
        logger.warning("origin_not_allowed", origin=origin)
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN, content={"error": "Origin not allowed"}
        )

    limiter = get_ip_rate_limiter()
    decision = await limiter.check(client_ip(request))
    if not decision.allowed:
        metrics.record_rate_limit_rejection(limiter.name)
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"error": RATE_LIMIT_MESSAGE},
            headers={"Retry-After": str(decision.retry_after_seconds)},
        )

    response = await call_next(request)
    response.headers["X-RateLimit-Limit"] = str(limiter.limit)
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    return response


@app.middleware("http")
async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """
    Add request ID to all requests for tracing.

    Also adds timing information, security headers and structured logging context.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start_time = time.time()

    # Add to structlog context
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    logger.info(
        "request_started",
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)

        duration = time.time() - start_time
        logger.info(
            "request_completed",
            request_id=request_id,
            status_code=response.status_code,
            duration_seconds=duration,
        )

        return response

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            "request_failed",
            request_id=request_id,
            error=str(e),
            duration_seconds=duration,
        )
        raise

    finally:
        # Clear structlog context
        structlog.contextvars.clear_contextvars()


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Rate limit rejections raised inside routes."""
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"error": RATE_LIMIT_MESSAGE},
        headers={"Retry-After": str(exc.retry_after_seconds)},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTP errors as ``{"error": ...}`` bodies."""
    if isinstance(exc.detail, dict):
        content = exc.detail
    elif exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        content = {"error": "Endpoint not found"}
    else:
        content = {"error": exc.detail}
    return JSONResponse(
        status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed request bodies are client errors."""
    logger.warning("request_validation_failed", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": str(exc) if settings.debug else "Internal server error",
            "timestamp": _now_iso(),
        },
    )


# Include routers
app.include_router(payment_router)
app.include_router(monitoring_router)


@app.get("/", tags=["root"])
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "name": "Nexistry Academy PayMongo API",
        "version": __version__,
        "status": "operational",
        "environment": settings.app_env,
        "test_mode": settings.is_test_mode,
        "endpoints": {
            "createPayment": "/api/payments/create-payment-intent",
            "paymentWebhook": "/api/payments/webhook",
            "checkStatus": "/api/payments/status/{payment_id}",
            "refund": "/api/payments/refund/{payment_id}",
            "health": "/health",
            "metrics": "/metrics",
        },
        "docs": "/docs",
    }


def run() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "paymongo_relay.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
