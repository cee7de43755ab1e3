"""
Tests for the earnings ledger and the sales accumulator.
"""
import uuid
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import select

from earnings_ledger.core.ledger import EarningsLedger
from earnings_ledger.core.sales import SalesAccumulator
from earnings_ledger.database.models import DiagnosticRecord, Seller, WalletTransaction
from tests.conftest import (
    BrokenLedgerPrimitives,
    FakeLedgerPrimitives,
    SilentLedgerPrimitives,
    count,
    wallet_for,
)


class CommitThenDisconnectPrimitives(FakeLedgerPrimitives):
    """Commits the credit in its own transaction, then loses the connection."""

    def __init__(self, session_factory) -> None:
        super().__init__()
        self.session_factory = session_factory

    async def credit_wallet(self, db, *args) -> bool:
        async with self.session_factory() as own, own.begin():
            await super().credit_wallet(own, *args)
        raise ConnectionResetError("connection lost after commit")


def _sample(name: str) -> float:
    return REGISTRY.get_sample_value(name) or 0.0


class TestEarningsLedger:
    """Test suite for wallet crediting."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_atomic_credit_creates_wallet_lazily(
        self, session_factory, seller, fake_primitives
    ) -> None:
        ledger = EarningsLedger(session_factory, fake_primitives)
        assert await wallet_for(session_factory, "seller_1") is None

        outcome = await ledger.credit_sale("seller_1", Decimal("420.00"), uuid.uuid4(), uuid.uuid4())

        assert outcome.credited
        assert outcome.path == "atomic"
        wallet = await wallet_for(session_factory, "seller_1")
        assert wallet.balance == Decimal("420.00")
        assert wallet.total_earnings == Decimal("420.00")
        assert wallet.total_withdrawn == Decimal("0")
        assert wallet.pending_balance == Decimal("0")
        assert fake_primitives.calls == ["credit_wallet"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unavailable_primitive_uses_fallback(self, session_factory, seller) -> None:
        ledger = EarningsLedger(session_factory, primitives=None)
        order_id, order_item_id = uuid.uuid4(), uuid.uuid4()

        outcome = await ledger.credit_sale(
            "seller_1", Decimal("280.00"), order_id, order_item_id, metadata={"line_item_id": "li_1"}
        )

        assert outcome.credited
        assert outcome.path == "fallback"
        wallet = await wallet_for(session_factory, "seller_1")
        assert wallet.balance == Decimal("280.00")

        async with session_factory() as db:
            row = (
                await db.execute(
                    select(WalletTransaction).where(WalletTransaction.order_item_id == order_item_id)
                )
            ).scalar_one()
        assert row.type == "sale"
        assert row.status == "completed"
        assert row.order_id == order_id
        assert row.amount == Decimal("280.00")
        assert row.details == {"line_item_id": "li_1"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_erroring_primitive_falls_back_once(self, session_factory, seller) -> None:
        primitives = BrokenLedgerPrimitives()
        ledger = EarningsLedger(session_factory, primitives)

        outcome = await ledger.credit_sale("seller_1", Decimal("10.00"), uuid.uuid4(), uuid.uuid4())

        assert outcome.credited
        assert outcome.path == "fallback"
        assert primitives.calls == ["credit_wallet"]
        wallet = await wallet_for(session_factory, "seller_1")
        assert wallet.balance == Decimal("10.00")

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_lost_acknowledgement_is_not_credited_twice(self, session_factory, seller) -> None:
        primitives = CommitThenDisconnectPrimitives(session_factory)
        ledger = EarningsLedger(session_factory, primitives)
        order_item_id = uuid.uuid4()

        outcome = await ledger.credit_sale("seller_1", Decimal("420.00"), uuid.uuid4(), order_item_id)

        assert outcome.credited
        assert outcome.path == "atomic"
        assert primitives.calls == ["credit_wallet"]
        wallet = await wallet_for(session_factory, "seller_1")
        assert wallet.balance == Decimal("420.00")
        assert wallet.total_earnings == Decimal("420.00")
        assert await count(
            session_factory, WalletTransaction, WalletTransaction.order_item_id == order_item_id
        ) == 1
        assert await count(session_factory, DiagnosticRecord) == 0

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_same_order_item_credited_once(self, session_factory, seller, fake_primitives) -> None:
        ledger = EarningsLedger(session_factory, fake_primitives)
        order_id, order_item_id = uuid.uuid4(), uuid.uuid4()

        first = await ledger.credit_sale("seller_1", Decimal("70.00"), order_id, order_item_id)
        second = await ledger.credit_sale("seller_1", Decimal("70.00"), order_id, order_item_id)

        assert first.status == "credited"
        assert second.status == "duplicate"
        wallet = await wallet_for(session_factory, "seller_1")
        assert wallet.balance == Decimal("70.00")
        assert await count(session_factory, WalletTransaction) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_items_of_one_order_credited_separately(
        self, session_factory, seller, fake_primitives
    ) -> None:
        ledger = EarningsLedger(session_factory, fake_primitives)
        order_id = uuid.uuid4()

        await ledger.credit_sale("seller_1", Decimal("420.00"), order_id, uuid.uuid4())
        await ledger.credit_sale("seller_1", Decimal("280.00"), order_id, uuid.uuid4())

        wallet = await wallet_for(session_factory, "seller_1")
        assert wallet.balance == Decimal("700.00")
        assert await count(
            session_factory, WalletTransaction, WalletTransaction.order_id == order_id
        ) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unverified_credit_writes_diagnostic(self, session_factory, seller) -> None:
        ledger = EarningsLedger(session_factory, SilentLedgerPrimitives())
        before = _sample("ledger_verification_failures_total")
        order_id = uuid.uuid4()

        outcome = await ledger.credit_sale("seller_1", Decimal("42.00"), order_id, uuid.uuid4())

        assert outcome.status == "unverified"
        assert outcome.error is not None
        assert _sample("ledger_verification_failures_total") == before + 1

        async with session_factory() as db:
            records = list((await db.execute(select(DiagnosticRecord))).scalars())
        assert len(records) == 1
        assert records[0].error_type == "wallet_credit_unverified"
        assert records[0].seller_id == "seller_1"
        assert records[0].order_id == str(order_id)
        assert records[0].details["amount"] == "42.00"

        # Never retried: the wallet stays untouched
        wallet = await wallet_for(session_factory, "seller_1")
        assert wallet.balance == Decimal("0")


class TestSalesAccumulator:
    """Test suite for cumulative sales updates."""

    async def _sales_total(self, session_factory) -> Decimal:
        async with session_factory() as db:
            return (await db.get(Seller, "seller_1")).sales_total

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_atomic_increment(self, session_factory, seller, fake_primitives) -> None:
        sales = SalesAccumulator(session_factory, fake_primitives)

        outcome = await sales.add_sale("seller_1", Decimal("600.00"))

        assert outcome.updated
        assert outcome.path == "atomic"
        assert await self._sales_total(session_factory) == Decimal("650.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fallback_increment(self, session_factory, seller) -> None:
        sales = SalesAccumulator(session_factory, BrokenLedgerPrimitives())

        outcome = await sales.add_sale("seller_1", Decimal("400.00"))

        assert outcome.updated
        assert outcome.path == "fallback"
        assert outcome.sales_total == Decimal("450.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_seller_is_a_warning_not_an_error(self, session_factory) -> None:
        sales = SalesAccumulator(session_factory, None)

        outcome = await sales.add_sale("ghost", Decimal("10.00"))

        assert not outcome.updated
