"""
Order materialization.

Turns a verified checkout session and its provider line items into one
Order row plus one OrderItem per line item. Each insert runs in its own
transaction so a bad item cannot take its siblings down with it.
"""
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Sequence

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from earnings_ledger.core.events import CheckoutSession, LineItem
from earnings_ledger.core.exceptions import (
    AmountMismatchError,
    DuplicateError,
    NotFoundError,
    PersistenceError,
)
from earnings_ledger.core.tiers import COMMISSION_TIERS, CommissionTier, resolve_tier
from earnings_ledger.database.models import Order, OrderItem, Seller

logger = structlog.get_logger(__name__)


def validate_amounts(
    session: CheckoutSession,
    line_items: Sequence[LineItem],
    tolerance_minor_units: int = 1,
) -> int:
    """
    Check that line items add up to the session's declared total.

    Args:
        session: Checkout session with the declared total
        line_items: Line items fetched from the provider
        tolerance_minor_units: Allowed rounding difference

    Returns:
        int: Sum of line totals in minor units

    Raises:
        AmountMismatchError: If the difference exceeds the tolerance
    """
    computed = sum(item.amount_total for item in line_items)
    if abs(computed - session.amount_total) > tolerance_minor_units:
        raise AmountMismatchError(session.session_id, session.amount_total, computed)
    return computed


@dataclass(frozen=True)
class MaterializedItem:
    """An inserted order item, with what the ledger needs to credit it."""

    order_item_id: uuid.UUID
    seller_id: str
    total_price: Decimal
    designer_earnings: Decimal
    platform_fee: Decimal
    tier: CommissionTier


class OrderMaterializer:
    """Writes Order and OrderItem rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        default_currency: str = "ron",
        tiers: Sequence[CommissionTier] = COMMISSION_TIERS,
    ):
        self.session_factory = session_factory
        self.default_currency = default_currency
        self.tiers = tiers

    async def create_order(self, session: CheckoutSession) -> uuid.UUID:
        """
        Insert the Order row for a checkout session.

        Returns:
            uuid.UUID: New order id

        Raises:
            DuplicateError: If an order already exists for the session
            PersistenceError: If the insert fails for any other reason
        """
        order = Order(
            stripe_session_id=session.session_id,
            stripe_payment_intent_id=session.payment_intent_id,
            customer_email=session.customer_email,
            total_amount=session.total_amount,
            currency=(session.currency or self.default_currency).lower(),
            status="completed",
            referral_code=session.referral_code,
        )
        try:
            async with self.session_factory() as db, db.begin():
                db.add(order)
        except IntegrityError as e:
            raise DuplicateError(
                f"Order for session {session.session_id} already exists",
                session_id=session.session_id,
            ) from e
        except Exception as e:
            raise PersistenceError(
                f"Failed to create order: {e}", session_id=session.session_id
            ) from e

        logger.info(
            "order_created",
            order_id=str(order.id),
            session_id=session.session_id,
            total_amount=str(order.total_amount),
            currency=order.currency,
        )
        return order.id

    async def get_seller(self, seller_id: str) -> Optional[Seller]:
        async with self.session_factory() as db:
            return await db.get(Seller, seller_id)

    async def add_item(
        self,
        order_id: uuid.UUID,
        item: LineItem,
        session_tiers: Optional[Dict[str, CommissionTier]] = None,
    ) -> MaterializedItem:
        """
        Insert one OrderItem with its commission snapshot.

        The tier comes from the seller's ``sales_total`` as it stood before the
        checkout session. Pass the same ``session_tiers`` dict for every item of
        a session: the first item of each seller fills it, later items reuse it,
        so sales added mid-session do not move the tier.

        Raises:
            NotFoundError: If the line item lacks seller or product metadata,
                or the seller does not exist
            PersistenceError: If the insert fails
        """
        context = {"order_id": str(order_id), "line_item_id": item.line_item_id}
        if not item.seller_id or not item.product_id:
            raise NotFoundError(
                "Line item is missing seller or product metadata",
                seller_id=item.seller_id,
                product_id=item.product_id,
                **context,
            )

        seller = await self.get_seller(item.seller_id)
        if seller is None:
            raise NotFoundError(
                f"Seller {item.seller_id} not found", seller_id=item.seller_id, **context
            )

        tier = session_tiers.get(item.seller_id) if session_tiers is not None else None
        if tier is None:
            tier = resolve_tier(seller.sales_total, self.tiers)
            if session_tiers is not None:
                session_tiers[item.seller_id] = tier
        earnings, fee = tier.split(item.total_price)

        order_item = OrderItem(
            order_id=order_id,
            stripe_line_item_id=item.line_item_id,
            seller_id=item.seller_id,
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=item.total_price,
            designer_earnings=earnings,
            platform_fee=fee,
            commission_tier=tier.name,
            commission_percentage=tier.designer_earnings_pct,
        )
        try:
            async with self.session_factory() as db, db.begin():
                db.add(order_item)
        except Exception as e:
            raise PersistenceError(
                f"Failed to create order item: {e}", seller_id=item.seller_id, **context
            ) from e

        logger.info(
            "order_item_created",
            order_item_id=str(order_item.id),
            seller_id=item.seller_id,
            total_price=str(item.total_price),
            designer_earnings=str(earnings),
            platform_fee=str(fee),
            commission_tier=tier.name,
            seller_sales_total=str(seller.sales_total),
            **context,
        )
        return MaterializedItem(
            order_item_id=order_item.id,
            seller_id=item.seller_id,
            total_price=item.total_price,
            designer_earnings=earnings,
            platform_fee=fee,
            tier=tier,
        )

    async def set_status_by_payment_intent(self, payment_intent_id: str, status: str) -> int:
        """
        Transition orders paid by ``payment_intent_id`` to ``status``.

        Returns:
            int: Number of orders updated
        """
        async with self.session_factory() as db, db.begin():
            result = await db.execute(
                update(Order)
                .where(Order.stripe_payment_intent_id == payment_intent_id)
                .values(status=status)
            )
        rows_updated = result.rowcount or 0
        if rows_updated == 0:
            logger.warning("order_not_found_for_payment_intent", payment_intent_id=payment_intent_id)
        else:
            logger.info(
                "order_status_updated",
                payment_intent_id=payment_intent_id,
                status=status,
                rows_updated=rows_updated,
            )
        return rows_updated

    async def find_by_session(self, session_id: str) -> Optional[Order]:
        """Load an order with its items for read endpoints."""
        async with self.session_factory() as db:
            result = await db.execute(select(Order).where(Order.stripe_session_id == session_id))
            return result.scalar_one_or_none()
