"""
Stripe API client for the earnings ledger.

Implements:
- Authoritative line-item fetch for checkout sessions
- Bounded retries with exponential backoff for transient errors
- Circuit breaker pattern
- An explicit unconfigured variant instead of null checks
"""
import asyncio
import time
from collections.abc import Mapping
from enum import Enum
from typing import Any, List, Optional, Protocol

import stripe
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from earnings_ledger.config import Settings
from earnings_ledger.core.events import LineItem
from earnings_ledger.core.exceptions import ProviderError, ProviderNotConfiguredError
from earnings_ledger.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class StripeErrorType(Enum):
    """Classification of Stripe errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with backoff


class StripeAPIError(ProviderError):
    """Stripe call failed; ``error_type`` decides whether it is retried."""

    def __init__(
        self,
        message: str,
        error_type: StripeErrorType,
        original_error: Optional[Exception] = None,
        **context: Any,
    ):
        super().__init__(message, error_type=error_type.value, **context)
        self.error_type = error_type
        self.original_error = original_error


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, StripeAPIError) and error.error_type != StripeErrorType.PERMANENT


class CircuitBreaker:
    """
    Circuit breaker for Stripe API calls.

    Stops calling Stripe for ``timeout`` seconds after ``failure_threshold``
    consecutive failures.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    def call(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        """
        Execute function with circuit breaker protection.

        Raises:
            StripeAPIError: If circuit is open
        """
        if self.state == "open":
            if self.last_failure_time and time.time() - self.last_failure_time > self.timeout:
                self._set_state("half_open")
                self.success_count = 0
            else:
                raise StripeAPIError("Circuit breaker is open", StripeErrorType.TRANSIENT)

        try:
            result = func(*args, **kwargs)
        except Exception:
            self.on_failure()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")

    def on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold and self.state != "open":
            logger.warning("circuit_breaker_opened", failure_count=self.failure_count)
            self._set_state("open")

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)
        logger.info("circuit_breaker_state_changed", state=state)


def _field(obj: Any, name: str) -> Any:
    """Read a field from a StripeObject, a plain dict, or an unexpanded id."""
    if obj is None or isinstance(obj, str):
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def line_item_from_stripe(item: Any) -> LineItem:
    """
    Map a Stripe line item (with ``price.product`` expanded) to a LineItem.

    Seller and product ids come from the product metadata written when the
    product was listed (``designer_id``, ``product_id``).
    """
    price = _field(item, "price")
    product = _field(price, "product")
    metadata = _field(product, "metadata")
    quantity = _field(item, "quantity") or 1
    amount_total = _field(item, "amount_total") or 0
    unit_amount = _field(price, "unit_amount")
    if unit_amount is None:
        unit_amount = amount_total // quantity

    return LineItem(
        line_item_id=_field(item, "id"),
        product_id=_field(metadata, "product_id") or None,
        seller_id=_field(metadata, "designer_id") or None,
        description=_field(item, "description"),
        quantity=quantity,
        unit_amount=unit_amount,
        amount_total=amount_total,
    )


class LineItemProvider(Protocol):
    """What the dispatcher needs from the payment provider."""

    async def list_line_items(self, session_id: str) -> List[LineItem]:
        ...


class StripeClient:
    """
    Wrapper for the Stripe API calls the ledger makes.

    Features:
    - Bounded retry with exponential backoff
    - Circuit breaker pattern
    - Error classification
    """

    def __init__(self, settings: Settings, circuit_breaker: Optional[CircuitBreaker] = None):
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version
        self.settings = settings
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.max_attempts = settings.line_item_fetch_attempts

        logger.info(
            "stripe_client_initialized",
            api_version=settings.stripe_api_version,
            test_mode=settings.is_test_mode,
        )

    @staticmethod
    def _classify_error(error: stripe.StripeError) -> StripeErrorType:
        if isinstance(error, stripe.RateLimitError):
            return StripeErrorType.RATE_LIMIT
        elif isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
            return StripeErrorType.TRANSIENT
        elif isinstance(
            error,
            (
                stripe.InvalidRequestError,
                stripe.AuthenticationError,
                stripe.PermissionError,
            ),
        ):
            return StripeErrorType.PERMANENT
        else:
            # Unknown errors are treated as transient
            return StripeErrorType.TRANSIENT

    def _fetch_line_items(self, session_id: str) -> List[LineItem]:
        try:
            page = self.circuit_breaker.call(
                stripe.checkout.Session.list_line_items,
                session_id,
                expand=["data.price.product"],
                limit=100,
            )
            return [line_item_from_stripe(item) for item in page.auto_paging_iter()]
        except stripe.StripeError as e:
            error_type = self._classify_error(e)
            logger.error(
                "stripe_api_error",
                operation="list_line_items",
                session_id=session_id,
                error_type=error_type.value,
                error_code=getattr(e, "code", None),
                error_message=str(e),
            )
            raise StripeAPIError(str(e), error_type, e, session_id=session_id) from e

    async def list_line_items(self, session_id: str) -> List[LineItem]:
        """
        Fetch the authoritative line items of a checkout session.

        Args:
            session_id: Stripe checkout session id

        Returns:
            List[LineItem]: Line items with seller and product metadata

        Raises:
            StripeAPIError: If the fetch fails after all attempts
        """
        logger.info("fetching_line_items", session_id=session_id)

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=0.25, max=2),
                reraise=True,
            ):
                with attempt:
                    items = await asyncio.to_thread(self._fetch_line_items, session_id)
        except StripeAPIError:
            metrics.record_provider_call("list_line_items", "failed")
            raise

        metrics.record_provider_call("list_line_items", "success")
        logger.info("line_items_fetched", session_id=session_id, count=len(items))
        return items


class UnconfiguredStripeClient:
    """Stands in for StripeClient when no secret key is set."""

    def __init__(self, missing: str = "STRIPE_SECRET_KEY"):
        self.missing = missing

    async def list_line_items(self, session_id: str) -> List[LineItem]:
        raise ProviderNotConfiguredError(self.missing)


def build_stripe_client(settings: Settings) -> LineItemProvider:
    """Pick the real or the unconfigured client from settings."""
    if not settings.stripe_secret_key:
        logger.warning("stripe_not_configured", missing="STRIPE_SECRET_KEY")
        return UnconfiguredStripeClient()
    return StripeClient(settings)
