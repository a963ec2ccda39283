"""
Service providers for the API.

Each provider is cached so the process shares one HTTP client per upstream;
tests replace them through ``app.dependency_overrides``.
"""
from functools import lru_cache
from typing import Optional

import redis.asyncio as aioredis

from paymongo_relay.config import get_settings
from paymongo_relay.core.checkout import CheckoutService
from paymongo_relay.core.rate_limit import (
    InMemorySlidingWindowStore,
    RedisSlidingWindowStore,
    SlidingWindowRateLimiter,
    SlidingWindowStore,
)
from paymongo_relay.integrations.ghl_client import GhlClient
from paymongo_relay.integrations.notifier import LeadConnectorNotifier
from paymongo_relay.integrations.paymongo_client import PayMongoClient
from paymongo_relay.integrations.webhook_handler import ProcessedEventStore, WebhookHandler
from paymongo_relay.monitoring.health import HealthCheck


@lru_cache()
def get_redis_client() -> Optional[aioredis.Redis]:
    """Shared Redis client, or None when Redis is not configured."""
    settings = get_settings()
    if not settings.redis_url:
        return None
    return aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)


def _rate_limit_store() -> SlidingWindowStore:
    redis_client = get_redis_client()
    if redis_client is not None:
        return RedisSlidingWindowStore(redis_client)
    return InMemorySlidingWindowStore(max_keys=get_settings().rate_limit_max_tracked_keys)


@lru_cache()
def get_ip_rate_limiter() -> SlidingWindowRateLimiter:
    """Limiter applied to every ``/api/`` request by client IP."""
    settings = get_settings()
    return SlidingWindowRateLimiter(
        _rate_limit_store(),
        limit=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        name="ip",
    )


@lru_cache()
def get_checkout_rate_limiter() -> SlidingWindowRateLimiter:
    """Limiter applied to checkout creation by customer email."""
    settings = get_settings()
    return SlidingWindowRateLimiter(
        _rate_limit_store(),
        limit=settings.checkout_rate_limit_max_requests,
        window_seconds=settings.checkout_rate_limit_window_seconds,
        name="checkout",
    )


@lru_cache()
def get_paymongo_client() -> PayMongoClient:
    return PayMongoClient()


@lru_cache()
def get_notifier() -> LeadConnectorNotifier:
    return LeadConnectorNotifier()


@lru_cache()
def get_ghl_client() -> Optional[GhlClient]:
    """GHL client, or None when CRM sync is not configured."""
    if not get_settings().ghl_enabled:
        return None
    return GhlClient()


@lru_cache()
def get_checkout_service() -> CheckoutService:
    return CheckoutService(get_paymongo_client(), get_notifier())


@lru_cache()
def get_webhook_handler() -> WebhookHandler:
    return WebhookHandler(
        notifier=get_notifier(),
        ghl_client=get_ghl_client(),
        event_store=ProcessedEventStore(redis_client=get_redis_client()),
    )


@lru_cache()
def get_health_check() -> HealthCheck:
    return HealthCheck(get_paymongo_client(), get_redis_client())


async def close_services() -> None:
    """Close clients that were created during the process lifetime."""
    if get_paymongo_client.cache_info().currsize:
        await get_paymongo_client().close()
    if get_notifier.cache_info().currsize:
        await get_notifier().close()
    if get_ghl_client.cache_info().currsize:
        ghl_client = get_ghl_client()
        if ghl_client is not None:
            await ghl_client.close()
    if get_redis_client.cache_info().currsize:
        redis_client = get_redis_client()
        if redis_client is not None:
            await redis_client.aclose()
