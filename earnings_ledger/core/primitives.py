"""
Atomic ledger primitives.

Both the wallet credit and the sales increment have a server-side routine that
does the whole mutation in one unit. The routines are an injected dependency:
``None`` means the primitive is unavailable and every call goes to the
fallback path.
"""
import uuid
from decimal import Decimal
from typing import Optional, Protocol

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from earnings_ledger.config import Settings

logger = structlog.get_logger(__name__)


class LedgerPrimitives(Protocol):
    """Server-side routines used by the atomic paths."""

    async def credit_wallet(
        self,
        db: AsyncSession,
        seller_id: str,
        amount: Decimal,
        order_id: uuid.UUID,
        order_item_id: uuid.UUID,
        description: str,
    ) -> bool:
        """Increment balance/total_earnings and insert the sale row together."""
        ...

    async def increment_sales(self, db: AsyncSession, seller_id: str, amount: Decimal) -> bool:
        """Add ``amount`` to the seller's sales_total."""
        ...


class StoredProcedurePrimitives:
    """Calls the PL/pgSQL routines installed by ``init_db``."""

    async def credit_wallet(
        self,
        db: AsyncSession,
        seller_id: str,
        amount: Decimal,
        order_id: uuid.UUID,
        order_item_id: uuid.UUID,
        description: str,
    ) -> bool:
        result = await db.execute(
            text(
                "SELECT credit_seller_wallet("
                ":seller_id, :amount, :order_id, :order_item_id, :description)"
            ),
            {
                "seller_id": seller_id,
                "amount": amount,
                "order_id": order_id,
                "order_item_id": order_item_id,
                "description": description,
            },
        )
        return bool(result.scalar())

    async def increment_sales(self, db: AsyncSession, seller_id: str, amount: Decimal) -> bool:
        result = await db.execute(
            text("SELECT increment_seller_sales(:seller_id, :amount)"),
            {"seller_id": seller_id, "amount": amount},
        )
        return bool(result.scalar())


def build_primitives(settings: Settings) -> Optional[LedgerPrimitives]:
    """Stored routines exist only on PostgreSQL and only when enabled."""
    if not settings.ledger_atomic_primitives:
        logger.info("ledger_primitives_disabled")
        return None
    if not settings.database_url.startswith("postgresql"):
        logger.warning(
            "ledger_primitives_unsupported_dialect",
            dialect=settings.database_url.split("://")[0],
        )
        return None
    return StoredProcedurePrimitives()
