"""
Referral commissions for promoters.

When a checkout carries a ``referral_code``, the promoter owning the code is
credited a percentage of the session total. This is a side-channel: every
failure is logged and swallowed so it can never affect seller earnings.
"""
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from earnings_ledger.core.tiers import CENT
from earnings_ledger.database.models import Promoter, PromoterWallet, PromoterWalletTransaction
from earnings_ledger.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class ReferralCreditor:
    """Credits promoter wallets for referred orders."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        commission_pct: Decimal = Decimal("10"),
    ):
        self.session_factory = session_factory
        self.commission_pct = commission_pct

    def commission_for(self, total: Decimal) -> Decimal:
        return (total * self.commission_pct / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)

    async def credit_referral(
        self, referral_code: str, order_id: uuid.UUID, order_total: Decimal
    ) -> Optional[Decimal]:
        """
        Credit the promoter behind ``referral_code``.

        Args:
            referral_code: Code from the checkout session metadata
            order_id: Order the commission is for
            order_total: Session total in major units

        Returns:
            Optional[Decimal]: Credited commission, None if nothing was credited
        """
        context = {"referral_code": referral_code, "order_id": str(order_id)}
        try:
            return await self._credit(referral_code, order_id, order_total, context)
        except Exception as e:
            logger.error(
                "referral_credit_failed",
                error=str(e),
                error_type=type(e).__name__,
                **context,
            )
            metrics.record_referral_credit("failed")
            return None

    async def _credit(
        self, referral_code: str, order_id: uuid.UUID, order_total: Decimal, context: dict
    ) -> Optional[Decimal]:
        amount = self.commission_for(order_total)
        if amount <= 0:
            logger.info("referral_commission_zero", **context)
            return None

        async with self.session_factory() as db, db.begin():
            promoter = (
                await db.execute(select(Promoter).where(Promoter.referral_code == referral_code))
            ).scalar_one_or_none()
            if promoter is None:
                logger.warning("referral_code_unknown", **context)
                metrics.record_referral_credit("unknown_code")
                return None

            already = (
                await db.execute(
                    select(PromoterWalletTransaction.id).where(
                        PromoterWalletTransaction.promoter_id == promoter.id,
                        PromoterWalletTransaction.order_id == order_id,
                        PromoterWalletTransaction.type == "commission",
                    )
                )
            ).first()
            if already is not None:
                logger.info("referral_commission_duplicate", promoter_id=promoter.id, **context)
                metrics.record_referral_credit("duplicate")
                return None

            wallet = (
                await db.execute(
                    select(PromoterWallet).where(PromoterWallet.promoter_id == promoter.id)
                )
            ).scalar_one_or_none()
            if wallet is None:
                wallet = PromoterWallet(
                    promoter_id=promoter.id,
                    balance=Decimal("0"),
                    total_earnings=Decimal("0"),
                    total_withdrawn=Decimal("0"),
                    pending_balance=Decimal("0"),
                )
                db.add(wallet)
                await db.flush()

            wallet.balance = wallet.balance + amount
            wallet.total_earnings = wallet.total_earnings + amount
            db.add(
                PromoterWalletTransaction(
                    wallet_id=wallet.id,
                    promoter_id=promoter.id,
                    type="commission",
                    amount=amount,
                    status="completed",
                    order_id=order_id,
                    description=f"Referral commission from order {order_id}",
                )
            )
            promoter_id = promoter.id

        logger.info(
            "referral_commission_credited",
            promoter_id=promoter_id,
            amount=str(amount),
            **context,
        )
        metrics.record_referral_credit("credited")
        return amount
