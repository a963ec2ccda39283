"""API key authentication and request rate limiting."""
import hmac
from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Request, status

from paymongo_relay.config import get_settings
from paymongo_relay.core.rate_limit import RateLimitExceeded, SlidingWindowRateLimiter
from paymongo_relay.monitoring.metrics import metrics

from .dependencies import get_checkout_rate_limiter

logger = structlog.get_logger(__name__)


def client_ip(request: Request) -> str:
    """Client IP, honouring the first ``X-Forwarded-For`` hop behind a proxy."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def require_api_key(request: Request) -> None:
    """
    Require a valid API key header.

    Raises:
        HTTPException: 401 if the key is missing, 403 if it does not match
    """
    settings = get_settings()
    provided: Optional[str] = request.headers.get(settings.api_key_header)
    if not provided:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="API key required")

    if not settings.api_key or not hmac.compare_digest(provided, settings.api_key):
        logger.warning("invalid_api_key", path=request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")


async def enforce_checkout_rate_limit(
    request: Request,
    limiter: SlidingWindowRateLimiter = Depends(get_checkout_rate_limiter),
) -> None:
    """
    Limit checkout attempts per customer email, falling back to client IP.

    Raises:
        RateLimitExceeded: If the customer is over the limit
    """
    identifier = client_ip(request)
    try:
        body = await request.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("email"), str) and body["email"]:
        identifier = body["email"].strip().lower()

    try:
        await limiter.enforce(identifier)
    except RateLimitExceeded:
        metrics.record_rate_limit_rejection(limiter.name)
        raise
