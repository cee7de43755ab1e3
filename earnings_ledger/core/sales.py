"""
Sales accumulator: maintains ``Seller.sales_total``.

Runs independently of the earnings ledger. A failure here is a warning; it
never blocks or rolls back a wallet credit. The only effect of a missed
increment is a seller staying in a lower commission tier for longer.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from earnings_ledger.core.exceptions import NotFoundError, PersistenceError
from earnings_ledger.core.primitives import LedgerPrimitives
from earnings_ledger.core.result import Err, Result, attempt_then_fallback, capture
from earnings_ledger.database.models import Seller
from earnings_ledger.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SalesOutcome:
    updated: bool
    path: Optional[str] = None
    sales_total: Optional[Decimal] = None


class SalesAccumulator:
    """Adds gross sale amounts to a seller's cumulative total."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        primitives: Optional[LedgerPrimitives] = None,
    ):
        self.session_factory = session_factory
        self.primitives = primitives

    async def current_total(self, seller_id: str) -> Decimal:
        async with self.session_factory() as db:
            result = await db.execute(select(Seller.sales_total).where(Seller.id == seller_id))
            total = result.scalar_one_or_none()
        if total is None:
            raise NotFoundError(f"Seller {seller_id} not found", seller_id=seller_id)
        return Decimal(total)

    async def add_sale(self, seller_id: str, amount: Decimal) -> SalesOutcome:
        """
        Add ``amount`` to the seller's ``sales_total``.

        Args:
            seller_id: Seller whose total grows
            amount: Gross line total in major units

        Returns:
            SalesOutcome: Whether the increment was verified, and by which path
        """
        context = {"seller_id": seller_id, "amount": str(amount)}

        before = await capture(lambda: self.current_total(seller_id), **context)
        if isinstance(before, Err):
            return self._failed("sales_total_read_failed", before.error, context)

        result = await attempt_then_fallback(
            lambda: self._increment_atomic(seller_id, amount, context),
            lambda: self._increment_fallback(seller_id, amount, context),
            operation="sales_increment",
        )
        if isinstance(result, Err):
            return self._failed("sales_total_update_failed", result.error, context)

        after = await capture(lambda: self.current_total(seller_id), **context)
        if isinstance(after, Err):
            return self._failed("sales_total_verification_failed", after.error, context)

        # Concurrent increments only push the total higher
        expected = before.value + amount
        if after.value < expected:
            logger.warning(
                "sales_total_verification_failed",
                expected=str(expected),
                actual=str(after.value),
                path=result.value,
                **context,
            )
            metrics.record_sales_update("failed")
            return SalesOutcome(updated=False, path=result.value, sales_total=after.value)

        logger.info(
            "sales_total_updated",
            path=result.value,
            sales_total=str(after.value),
            **context,
        )
        metrics.record_sales_update(result.value)
        return SalesOutcome(updated=True, path=result.value, sales_total=after.value)

    async def _increment_atomic(self, seller_id: str, amount: Decimal, context: dict) -> Result[str]:
        primitives = self.primitives
        if primitives is None:
            return Err(PersistenceError("Atomic sales primitive unavailable", **context))

        async def run() -> str:
            async with self.session_factory() as db, db.begin():
                applied = await primitives.increment_sales(db, seller_id, amount)
            if not applied:
                raise PersistenceError("Atomic sales increment matched no seller", **context)
            return "atomic"

        return await capture(run, **context)

    async def _increment_fallback(self, seller_id: str, amount: Decimal, context: dict) -> Result[str]:
        async def run() -> str:
            async with self.session_factory() as db, db.begin():
                seller = await db.get(Seller, seller_id)
                if seller is None:
                    raise NotFoundError(f"Seller {seller_id} not found", seller_id=seller_id)
                seller.sales_total = (seller.sales_total or Decimal("0")) + amount
            return "fallback"

        return await capture(run, **context)

    def _failed(self, event: str, error: Exception, context: dict) -> SalesOutcome:
        logger.warning(event, error=str(error), error_type=type(error).__name__, **context)
        metrics.record_sales_update("failed")
        return SalesOutcome(updated=False)
