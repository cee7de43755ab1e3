"""
Earnings ledger: credits seller wallets for completed sales.

Credit flow for one order item:
1. Skip if a completed sale row already exists for the order item
2. Fetch or lazily create the seller's wallet
3. Atomic routine (increment + sale row as one unit), else manual fallback
4. Read the sale row back; if it is missing, write a diagnostic record

The manual fallback first re-checks for the sale row, since the atomic routine
may have committed before failing. It then reads the balance, writes the new
balance, and inserts the sale row in a second transaction. Two overlapping
fallbacks for the same seller can lose an update; that is accepted for the
degraded path only.
"""
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from earnings_ledger.core.diagnostics import DiagnosticSink
from earnings_ledger.core.exceptions import PersistenceError, VerificationError
from earnings_ledger.core.primitives import LedgerPrimitives
from earnings_ledger.core.result import Err, Result, attempt_then_fallback, capture
from earnings_ledger.database.models import SellerWallet, WalletTransaction
from earnings_ledger.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

ATOMIC = "atomic"
FALLBACK = "fallback"


@dataclass(frozen=True)
class CreditOutcome:
    """What happened to one credit request."""

    status: str  # credited, duplicate, unverified
    amount: Decimal
    path: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def credited(self) -> bool:
        return self.status == "credited"


class EarningsLedger:
    """
    Credits designer earnings to seller wallets.

    This is the only writer of ``balance`` and ``total_earnings`` for sales.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        primitives: Optional[LedgerPrimitives] = None,
        diagnostics: Optional[DiagnosticSink] = None,
    ):
        """
        Initialize the ledger.

        Args:
            session_factory: Source of short-lived sessions, one per step
            primitives: Atomic routines; None routes every credit to the fallback
            diagnostics: Sink for unverified credits
        """
        self.session_factory = session_factory
        self.primitives = primitives
        self.diagnostics = diagnostics or DiagnosticSink(session_factory)

    async def sale_recorded(self, order_item_id: uuid.UUID) -> bool:
        """Check for a completed sale row for this order item."""
        async with self.session_factory() as db:
            stmt = (
                select(WalletTransaction.id)
                .where(
                    WalletTransaction.order_item_id == order_item_id,
                    WalletTransaction.type == "sale",
                    WalletTransaction.status == "completed",
                )
                .limit(1)
            )
            result = await db.execute(stmt)
            return result.first() is not None

    async def ensure_wallet(self, seller_id: str) -> uuid.UUID:
        """
        Fetch the seller's wallet, creating a zeroed one if missing.

        Returns:
            uuid.UUID: Wallet id
        """
        wallet_id = await self._wallet_id(seller_id)
        if wallet_id is not None:
            return wallet_id

        try:
            async with self.session_factory() as db, db.begin():
                wallet = SellerWallet(
                    seller_id=seller_id,
                    balance=Decimal("0"),
                    total_earnings=Decimal("0"),
                    total_withdrawn=Decimal("0"),
                    pending_balance=Decimal("0"),
                )
                db.add(wallet)
            logger.info("wallet_created", seller_id=seller_id, wallet_id=str(wallet.id))
            return wallet.id
        except IntegrityError:
            # Created concurrently by another delivery
            wallet_id = await self._wallet_id(seller_id)
            if wallet_id is None:
                raise
            return wallet_id

    async def _wallet_id(self, seller_id: str) -> Optional[uuid.UUID]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(SellerWallet.id).where(SellerWallet.seller_id == seller_id)
            )
            return result.scalar_one_or_none()

    async def credit_sale(
        self,
        seller_id: str,
        amount: Decimal,
        order_id: uuid.UUID,
        order_item_id: uuid.UUID,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CreditOutcome:
        """
        Credit ``amount`` to the seller's wallet for one order item.

        Args:
            seller_id: Seller to credit
            amount: Designer earnings in major units
            order_id: Order the sale belongs to
            order_item_id: Idempotency key for the sale row
            description: Ledger row description
            metadata: Extra context stored on the sale row by the fallback path

        Returns:
            CreditOutcome: credited, duplicate or unverified
        """
        context = {
            "seller_id": seller_id,
            "order_id": str(order_id),
            "order_item_id": str(order_item_id),
        }
        description = description or f"Sale commission from order {order_id}"

        precheck = await capture(lambda: self.sale_recorded(order_item_id), **context)
        if isinstance(precheck, Err):
            return await self._unverified(amount, None, precheck.error, context)
        if precheck.value:
            logger.info("wallet_credit_duplicate", **context)
            metrics.record_wallet_credit("duplicate")
            return CreditOutcome(status="duplicate", amount=amount)

        wallet = await capture(lambda: self.ensure_wallet(seller_id), **context)
        if isinstance(wallet, Err):
            result: Result[str] = wallet
        else:
            result = await attempt_then_fallback(
                lambda: self._credit_atomic(
                    seller_id, amount, order_id, order_item_id, description, context
                ),
                lambda: self._credit_fallback(
                    wallet.value, amount, order_id, order_item_id, description, metadata, context
                ),
                operation="wallet_credit",
            )

        path = None if isinstance(result, Err) else result.value
        if isinstance(result, Err):
            logger.error(
                "wallet_credit_failed",
                error=str(result.error),
                error_type=type(result.error).__name__,
                **context,
            )

        verified = await capture(lambda: self.sale_recorded(order_item_id), **context)
        if isinstance(verified, Err) or not verified.value:
            error = verified.error if isinstance(verified, Err) else None
            if error is None and isinstance(result, Err):
                error = result.error
            return await self._unverified(amount, path, error, context)

        if path is None:
            # Our write failed but a concurrent delivery's sale row is there
            logger.info("wallet_credit_recorded_concurrently", **context)
            metrics.record_wallet_credit("duplicate")
            return CreditOutcome(status="duplicate", amount=amount)

        logger.info("wallet_credited", amount=str(amount), path=path, **context)
        metrics.record_wallet_credit(path, float(amount))
        return CreditOutcome(status="credited", amount=amount, path=path)

    async def _credit_atomic(
        self,
        seller_id: str,
        amount: Decimal,
        order_id: uuid.UUID,
        order_item_id: uuid.UUID,
        description: str,
        context: Dict[str, Any],
    ) -> Result[str]:
        primitives = self.primitives
        if primitives is None:
            return Err(PersistenceError("Atomic wallet primitive unavailable", **context))

        async def run() -> str:
            async with self.session_factory() as db, db.begin():
                applied = await primitives.credit_wallet(
                    db, seller_id, amount, order_id, order_item_id, description
                )
            if not applied:
                raise PersistenceError("Atomic wallet credit found no wallet", **context)
            return ATOMIC

        return await capture(run, **context)

    async def _credit_fallback(
        self,
        wallet_id: uuid.UUID,
        amount: Decimal,
        order_id: uuid.UUID,
        order_item_id: uuid.UUID,
        description: str,
        metadata: Optional[Dict[str, Any]],
        context: Dict[str, Any],
    ) -> Result[str]:
        async def run() -> str:
            if await self.sale_recorded(order_item_id):
                # The atomic routine committed before its error reached us
                logger.warning("wallet_credit_committed_before_error", **context)
                return ATOMIC

            async with self.session_factory() as db:
                async with db.begin():
                    wallet = await db.get(SellerWallet, wallet_id)
                    if wallet is None:
                        raise PersistenceError("Wallet disappeared during fallback", **context)
                    wallet.balance = wallet.balance + amount
                    wallet.total_earnings = wallet.total_earnings + amount

                try:
                    async with db.begin():
                        db.add(
                            WalletTransaction(
                                wallet_id=wallet_id,
                                type="sale",
                                amount=amount,
                                status="completed",
                                order_id=order_id,
                                order_item_id=order_item_id,
                                description=description,
                                details=metadata,
                            )
                        )
                except Exception as e:
                    # Balance already moved without its ledger row
                    await self.diagnostics.record(
                        error_type="wallet_fallback_log_failed",
                        message=f"Balance credited but sale row insert failed: {e}",
                        seller_id=context["seller_id"],
                        order_id=context["order_id"],
                        metadata={"order_item_id": context["order_item_id"], "amount": str(amount)},
                    )
                    raise
            return FALLBACK

        return await capture(run, **context)

    async def _unverified(
        self,
        amount: Decimal,
        path: Optional[str],
        cause: Optional[Exception],
        context: Dict[str, Any],
    ) -> CreditOutcome:
        error = VerificationError(
            "Sale transaction not found after credit attempt",
            cause=str(cause) if cause else None,
            path=path,
            **context,
        )
        logger.critical(
            "wallet_credit_unverified",
            amount=str(amount),
            path=path,
            cause=str(cause) if cause else None,
            **context,
        )
        metrics.record_wallet_credit("failed")
        metrics.record_verification_failure()
        await self.diagnostics.record(
            error_type="wallet_credit_unverified",
            message=str(error),
            seller_id=context["seller_id"],
            order_id=context["order_id"],
            metadata={
                "order_item_id": context["order_item_id"],
                "amount": str(amount),
                "path": path,
                "cause": str(cause) if cause else None,
            },
        )
        return CreditOutcome(status="unverified", amount=amount, path=path, error=error)
