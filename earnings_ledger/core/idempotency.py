"""
Exactly-once guard for checkout sessions.

Two defences keep a session from being materialized twice:
1. An Order lookup by ``stripe_session_id`` before any write
2. The unique constraint on ``orders.stripe_session_id`` at insert time

The lookup and the insert are not one transaction. Two concurrent deliveries
can both pass the lookup; the loser hits the constraint, which
``OrderMaterializer`` reports as ``DuplicateError``.
"""
import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from earnings_ledger.database.models import Order

logger = structlog.get_logger(__name__)


class SessionGuard:
    """Answers "has this checkout session already been processed?"."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def processed_order_id(self, session_id: str) -> Optional[uuid.UUID]:
        """
        Look up the order created for a checkout session.

        Args:
            session_id: Provider checkout session id

        Returns:
            Optional[uuid.UUID]: Existing order id, None if the session is new
        """
        async with self.session_factory() as db:
            result = await db.execute(
                select(Order.id).where(Order.stripe_session_id == session_id)
            )
            order_id = result.scalar_one_or_none()

        if order_id is not None:
            logger.info(
                "checkout_session_already_processed",
                session_id=session_id,
                order_id=str(order_id),
            )
        return order_id

    async def is_processed(self, session_id: str) -> bool:
        return await self.processed_order_id(session_id) is not None
