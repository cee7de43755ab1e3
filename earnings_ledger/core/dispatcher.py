"""
Webhook dispatcher: the payment-event-driven earnings pipeline.

Flow for ``checkout.session.completed``:
1. Verify signature, parse the event, drop already-seen event ids
2. Stop if an order already exists for the session
3. Fetch the authoritative line items and check they add up (none means reject)
4. Create the order
5. Per line item: order item with the tier the seller had before the session,
   wallet credit, sales total
6. Referral commission, if the session carries a code

Each line item is isolated: its failure is logged and the loop moves on.
"""
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

import structlog

from earnings_ledger.config import Settings
from earnings_ledger.core.diagnostics import DiagnosticSink
from earnings_ledger.core.events import (
    CheckoutCompleted,
    LineItem,
    PaymentFailed,
    PaymentSucceeded,
    WebhookEvent,
)
from earnings_ledger.core.exceptions import DuplicateError, NotFoundError, ValidationError
from earnings_ledger.core.idempotency import SessionGuard
from earnings_ledger.core.ledger import EarningsLedger
from earnings_ledger.core.orders import OrderMaterializer, validate_amounts
from earnings_ledger.core.primitives import LedgerPrimitives
from earnings_ledger.core.referrals import ReferralCreditor
from earnings_ledger.core.sales import SalesAccumulator
from earnings_ledger.core.tiers import CommissionTier
from earnings_ledger.integrations.stripe_client import LineItemProvider
from earnings_ledger.integrations.webhook_handler import WebhookHandler
from earnings_ledger.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class DispatchResult:
    """Summary of one handled delivery, returned to the webhook caller."""

    status: str  # processed, duplicate, ignored, rejected
    event_id: str
    event_type: str
    order_id: Optional[uuid.UUID] = None
    items_recorded: int = 0
    items_skipped: int = 0
    credited: Decimal = Decimal("0")
    message: Optional[str] = None
    skipped: List[str] = field(default_factory=list)


class WebhookDispatcher:
    """Routes verified provider events through the ledger components."""

    def __init__(
        self,
        webhook_handler: WebhookHandler,
        provider: LineItemProvider,
        guard: SessionGuard,
        materializer: OrderMaterializer,
        ledger: EarningsLedger,
        sales: SalesAccumulator,
        referrals: Optional[ReferralCreditor] = None,
        amount_tolerance_minor_units: int = 1,
    ):
        self.webhook_handler = webhook_handler
        self.provider = provider
        self.guard = guard
        self.materializer = materializer
        self.ledger = ledger
        self.sales = sales
        self.referrals = referrals
        self.amount_tolerance_minor_units = amount_tolerance_minor_units

    @classmethod
    def build(
        cls,
        settings: Settings,
        session_factory,
        provider: LineItemProvider,
        webhook_handler: WebhookHandler,
        primitives: Optional[LedgerPrimitives] = None,
    ) -> "WebhookDispatcher":
        """Wire the components from settings and a session factory."""
        diagnostics = DiagnosticSink(session_factory)
        return cls(
            webhook_handler=webhook_handler,
            provider=provider,
            guard=SessionGuard(session_factory),
            materializer=OrderMaterializer(session_factory, settings.default_currency),
            ledger=EarningsLedger(session_factory, primitives, diagnostics),
            sales=SalesAccumulator(session_factory, primitives),
            referrals=ReferralCreditor(session_factory, settings.referral_commission_pct),
            amount_tolerance_minor_units=settings.amount_tolerance_minor_units,
        )

    async def handle(self, payload: bytes, signature: Optional[str]) -> DispatchResult:
        """
        Handle one raw webhook delivery.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header

        Returns:
            DispatchResult: Outcome to report back with a 200

        Raises:
            AuthenticationError: Bad or missing signature (400)
            ProviderNotConfiguredError: Missing Stripe credentials (500)
        """
        start_time = time.time()
        event = self.webhook_handler.verify(payload, signature)
        log = logger.bind(event_id=event.event_id, event_type=event.event_type)

        if await self.webhook_handler.is_event_processed(event.event_id):
            log.info("webhook_event_already_processed")
            result = DispatchResult("duplicate", event.event_id, event.event_type)
        else:
            result = await self.dispatch(event)
            await self.webhook_handler.mark_event_processed(event.event_id)

        metrics.record_webhook_event(event.event_type, result.status, time.time() - start_time)
        return result

    async def dispatch(self, event: WebhookEvent) -> DispatchResult:
        """Route a verified event to its handler."""
        if isinstance(event, CheckoutCompleted):
            return await self.handle_checkout_completed(event)
        if isinstance(event, PaymentSucceeded):
            return await self._update_order_status(event, event.payment_intent_id, "completed")
        if isinstance(event, PaymentFailed):
            return await self._update_order_status(event, event.payment_intent_id, "failed")

        logger.info("webhook_event_ignored", event_id=event.event_id, event_type=event.event_type)
        return DispatchResult("ignored", event.event_id, event.event_type)

    async def handle_checkout_completed(self, event: CheckoutCompleted) -> DispatchResult:
        session = event.session
        log = logger.bind(event_id=event.event_id, session_id=session.session_id)

        existing = await self.guard.processed_order_id(session.session_id)
        if existing is not None:
            return DispatchResult(
                "duplicate",
                event.event_id,
                event.event_type,
                order_id=existing,
                message="Checkout session already processed",
            )

        line_items = await self.provider.list_line_items(session.session_id)
        if not line_items:
            log.warning("checkout_session_rejected", reason="no_line_items")
            metrics.record_session_rejected("no_line_items")
            return DispatchResult(
                "rejected",
                event.event_id,
                event.event_type,
                message="Checkout session has no line items",
            )

        try:
            validate_amounts(session, line_items, self.amount_tolerance_minor_units)
        except ValidationError as e:
            log.error("checkout_session_rejected", reason="amount_mismatch", error=str(e), **e.context)
            metrics.record_session_rejected("amount_mismatch")
            return DispatchResult("rejected", event.event_id, event.event_type, message=str(e))

        try:
            order_id = await self.materializer.create_order(session)
        except DuplicateError as e:
            log.info("checkout_session_already_processed", reason="order_constraint")
            return DispatchResult(
                "duplicate", event.event_id, event.event_type, message=str(e)
            )
        except Exception as e:
            log.error("checkout_session_failed", reason="order_insert_failed", error=str(e))
            metrics.record_session_rejected("order_insert_failed")
            raise

        result = DispatchResult("processed", event.event_id, event.event_type, order_id=order_id)
        # Tiers are fixed per seller for the whole session
        session_tiers: Dict[str, CommissionTier] = {}
        for item in line_items:
            await self._process_line_item(order_id, item, result, session_tiers)

        if session.referral_code and self.referrals is not None:
            await self.referrals.credit_referral(
                session.referral_code, order_id, session.total_amount
            )

        log.info(
            "checkout_session_processed",
            order_id=str(order_id),
            items_recorded=result.items_recorded,
            items_skipped=result.items_skipped,
            credited=str(result.credited),
        )
        return result

    async def _process_line_item(
        self,
        order_id: uuid.UUID,
        item: LineItem,
        result: DispatchResult,
        session_tiers: Dict[str, CommissionTier],
    ) -> None:
        log = logger.bind(order_id=str(order_id), line_item_id=item.line_item_id)
        try:
            materialized = await self.materializer.add_item(order_id, item, session_tiers)
        except NotFoundError as e:
            log.warning("line_item_skipped", reason="not_found", error=str(e), seller_id=item.seller_id)
            metrics.record_line_item("skipped_not_found")
            result.items_skipped += 1
            result.skipped.append(item.line_item_id)
            return
        except Exception as e:
            log.error(
                "line_item_skipped",
                reason="error",
                error=str(e),
                error_type=type(e).__name__,
                seller_id=item.seller_id,
            )
            metrics.record_line_item("skipped_error")
            result.items_skipped += 1
            result.skipped.append(item.line_item_id)
            return

        metrics.record_line_item("recorded")
        result.items_recorded += 1

        credit = await self.ledger.credit_sale(
            seller_id=materialized.seller_id,
            amount=materialized.designer_earnings,
            order_id=order_id,
            order_item_id=materialized.order_item_id,
            metadata={
                "line_item_id": item.line_item_id,
                "commission_tier": materialized.tier.name,
                "total_price": str(materialized.total_price),
            },
        )
        if credit.credited:
            result.credited += credit.amount

        # Already-credited items were already counted towards sales_total
        if credit.status != "duplicate":
            await self.sales.add_sale(materialized.seller_id, materialized.total_price)

    async def _update_order_status(
        self, event: WebhookEvent, payment_intent_id: str, status: str
    ) -> DispatchResult:
        await self.materializer.set_status_by_payment_intent(payment_intent_id, status)
        return DispatchResult("processed", event.event_id, event.event_type)
