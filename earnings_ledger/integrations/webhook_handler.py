"""
Stripe webhook handler with signature verification and event deduplication.

Implements:
- Webhook signature verification against the shared signing secret
- Envelope parsing into the closed set of ledger events
- Event-id deduplication in Redis (fail-open, optional)

Redis dedup is an optimization only. A delivery that slips past it is still
stopped by the order-level guard.
"""
import json
from typing import Optional

import redis.asyncio as aioredis
import stripe
import structlog

from earnings_ledger.config import Settings
from earnings_ledger.core.events import WebhookEvent, parse_event
from earnings_ledger.core.exceptions import (
    AuthenticationError,
    ProviderNotConfiguredError,
    ValidationError,
)
from earnings_ledger.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class WebhookHandler:
    """
    Turns a raw signed delivery into a typed, not-yet-seen event.

    Features:
    - Signature verification using the Stripe webhook secret
    - Event deduplication (processed event ids kept in Redis)
    """

    def __init__(
        self,
        webhook_secret: Optional[str],
        tolerance_seconds: int = 300,
        redis_url: Optional[str] = None,
        dedup_ttl_seconds: int = 86400 * 7,
        redis_client: Optional[aioredis.Redis] = None,
    ):
        """
        Initialize webhook handler.

        Args:
            webhook_secret: Signing secret; None makes every delivery fail as unconfigured
            tolerance_seconds: Maximum accepted signature age
            redis_url: Redis URL for event dedup; None disables dedup
            dedup_ttl_seconds: How long processed event ids are kept
            redis_client: Pre-built client, mainly for tests
        """
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds
        self.redis_url = redis_url
        self.dedup_ttl_seconds = dedup_ttl_seconds
        self.redis_client = redis_client
        self._redis_initialized = redis_client is not None

        logger.info(
            "webhook_handler_initialized",
            dedup_enabled=self.dedup_enabled,
            signing_secret_configured=webhook_secret is not None,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "WebhookHandler":
        return cls(
            webhook_secret=settings.stripe_webhook_secret,
            tolerance_seconds=settings.webhook_tolerance_seconds,
            redis_url=settings.redis_url,
            dedup_ttl_seconds=settings.webhook_dedup_ttl_seconds,
        )

    @property
    def dedup_enabled(self) -> bool:
        return self.redis_client is not None or self.redis_url is not None

    async def _ensure_redis(self) -> aioredis.Redis:
        """Ensure Redis client is initialized."""
        if self.redis_client is None or not self._redis_initialized:
            self.redis_client = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            self._redis_initialized = True
        return self.redis_client

    def verify(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """
        Verify the delivery signature and parse the event.

        Args:
            payload: Raw request body as bytes
            signature: Stripe-Signature header value

        Returns:
            WebhookEvent: Typed event

        Raises:
            ProviderNotConfiguredError: If no signing secret is configured
            AuthenticationError: If the signature is missing or invalid
            ValidationError: If the signed body is not a well-formed event
        """
        if not self.webhook_secret:
            raise ProviderNotConfiguredError("STRIPE_WEBHOOK_SECRET")
        if not signature:
            metrics.record_signature_failure()
            logger.warning("webhook_signature_missing")
            raise AuthenticationError("Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, self.tolerance_seconds
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            metrics.record_signature_failure()
            logger.warning("webhook_signature_verification_failed", error=str(e))
            raise AuthenticationError(f"Invalid webhook signature: {e}") from e

        try:
            envelope = json.loads(body)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Webhook body is not valid JSON: {e}") from e
        if not isinstance(envelope, dict):
            raise ValidationError("Webhook body is not a JSON object")

        event = parse_event(envelope)
        logger.info(
            "webhook_signature_verified",
            event_id=event.event_id,
            event_type=event.event_type,
        )
        return event

    async def is_event_processed(self, event_id: str) -> bool:
        """
        Check if a webhook event has already been processed.

        Returns False when dedup is disabled or Redis is unreachable, so the
        event is processed rather than lost.
        """
        if not self.dedup_enabled or not event_id:
            return False
        try:
            redis = await self._ensure_redis()
            return bool(await redis.exists(f"webhook:processed:{event_id}"))
        except Exception as e:
            logger.warning("webhook_dedup_check_error", error=str(e), event_id=event_id)
            return False

    async def mark_event_processed(self, event_id: str) -> None:
        """Remember a successfully handled event id."""
        if not self.dedup_enabled or not event_id:
            return
        try:
            redis = await self._ensure_redis()
            await redis.setex(f"webhook:processed:{event_id}", self.dedup_ttl_seconds, "1")
            logger.debug("webhook_marked_processed", event_id=event_id)
        except Exception as e:
            logger.warning("webhook_mark_processed_error", error=str(e), event_id=event_id)

    async def ping(self) -> bool:
        """Check Redis connectivity for health probes."""
        redis = await self._ensure_redis()
        return bool(await redis.ping())

    async def close(self) -> None:
        """Close Redis connection."""
        if self.redis_client is not None and self._redis_initialized:
            await self.redis_client.aclose()
