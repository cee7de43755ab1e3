"""
Health checks for liveness/readiness probes.

Checks:
- Database connectivity
- Redis connectivity (only when event dedup is configured)
- Stripe configuration
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from earnings_ledger.config import Settings

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when a health check fails."""

    pass


class HealthCheck:
    """Health check service for the ledger's dependencies."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        webhook_handler: Optional[Any] = None,
    ):
        """
        Args:
            settings: Application settings
            session_factory: Database session source
            webhook_handler: Object with ``dedup_enabled`` and ``ping()``, if any
        """
        self.settings = settings
        self.session_factory = session_factory
        self.webhook_handler = webhook_handler

    async def check_database(self) -> Dict[str, Any]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {e}") from e

        return {"status": "healthy", "service": "database"}

    async def check_redis(self) -> Dict[str, Any]:
        if self.webhook_handler is None or not self.webhook_handler.dedup_enabled:
            return {"status": "disabled", "service": "redis"}
        try:
            await self.webhook_handler.ping()
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            raise HealthCheckError(f"Redis health check failed: {e}") from e

        return {"status": "healthy", "service": "redis"}

    async def check_stripe(self) -> Dict[str, Any]:
        missing = [
            name
            for name, value in (
                ("STRIPE_SECRET_KEY", self.settings.stripe_secret_key),
                ("STRIPE_WEBHOOK_SECRET", self.settings.stripe_webhook_secret),
            )
            if not value
        ]
        if missing:
            raise HealthCheckError(f"Stripe not configured: {', '.join(missing)} missing")

        return {
            "status": "healthy",
            "service": "stripe",
            "test_mode": self.settings.is_test_mode,
        }

    async def check_all(self) -> Dict[str, Any]:
        """Run all checks; any failure makes the whole service unhealthy."""
        checks: Dict[str, Any] = {}
        all_healthy = True

        for name, check in (
            ("database", self.check_database),
            ("redis", self.check_redis),
            ("stripe", self.check_stripe),
        ):
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
        return {"status": "alive", "message": "Application is running"}

    async def readiness(self) -> Dict[str, Any]:
        return await self.check_all()
