"""
Health check endpoints for liveness/readiness probes.

Checks:
- PayMongo API reachability
- Redis connectivity (only when Redis is configured)
"""
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
import structlog

from paymongo_relay.config import get_settings
from paymongo_relay.integrations.paymongo_client import PayMongoClient

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - PayMongo API reachability check
    - Redis connectivity check
    - Overall system health status
    """

    def __init__(
        self,
        paymongo_client: PayMongoClient,
        redis_client: Optional[aioredis.Redis] = None,
    ) -> None:
        self.settings = get_settings()
        self.paymongo_client = paymongo_client
        self.redis_client = redis_client

    async def check_paymongo(self) -> Dict[str, Any]:
        """
        Check PayMongo API reachability.

        Raises:
            HealthCheckError: If PayMongo check fails
        """
        try:
            # Cheapest authenticated call available
            await self.paymongo_client.list_webhooks()
            return {
                "status": "healthy",
                "service": "paymongo",
                "message": "PayMongo API connection successful",
                "test_mode": self.settings.is_test_mode,
            }
        except Exception as e:
            logger.error("paymongo_health_check_failed", error=str(e))
            raise HealthCheckError(f"PayMongo health check failed: {str(e)}")

    async def check_redis(self) -> Dict[str, Any]:
        """
        Check Redis connectivity.

        Raises:
            HealthCheckError: If Redis check fails
        """
        if self.redis_client is None:
            return {
                "status": "healthy",
                "service": "redis",
                "message": "Redis not configured, using in-memory stores",
            }
        try:
            await self.redis_client.ping()
            return {
                "status": "healthy",
                "service": "redis",
                "message": "Redis connection successful",
            }
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            raise HealthCheckError(f"Redis health check failed: {str(e)}")

    async def check_all(self) -> Dict[str, Any]:
        """Run all health checks."""
        checks: Dict[str, Any] = {}
        all_healthy = True

        for name, check in (("paymongo", self.check_paymongo), ("redis", self.check_redis)):
            try:
                checks[name] = await check()
            except HealthCheckError as e:
                checks[name] = {"status": "unhealthy", "service": name, "error": str(e)}
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness probe endpoint.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
            "environment": self.settings.app_env,
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe: all dependencies must be available."""
        return await self.check_all()
