"""
Pytest configuration and fixtures.

Every test gets a fresh in-memory SQLite database. The PostgreSQL routines
are replaced by ``FakeLedgerPrimitives``, which performs the same mutations
through the ORM inside the caller's transaction.
"""
import asyncio
import hashlib
import hmac
import json
import time
import uuid
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from earnings_ledger.config import Settings
from earnings_ledger.core.dispatcher import WebhookDispatcher
from earnings_ledger.core.events import LineItem
from earnings_ledger.database.connection import create_session_factory
from earnings_ledger.database.models import (
    Base,
    Order,
    OrderItem,
    Promoter,
    Seller,
    SellerWallet,
    WalletTransaction,
)
from earnings_ledger.integrations.webhook_handler import WebhookHandler

WEBHOOK_SECRET = "whsec_test_fake_secret"


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "integration: end-to-end tests through the pipeline or API")
    config.addinivalue_line("markers", "race: duplicate and concurrent delivery scenarios")


class FakeLedgerPrimitives:
    """ORM stand-in for the PL/pgSQL routines."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    async def credit_wallet(
        self,
        db: AsyncSession,
        seller_id: str,
        amount: Decimal,
        order_id: uuid.UUID,
        order_item_id: uuid.UUID,
        description: str,
    ) -> bool:
        self.calls.append("credit_wallet")
        wallet = (
            await db.execute(select(SellerWallet).where(SellerWallet.seller_id == seller_id))
        ).scalar_one_or_none()
        if wallet is None:
            return False
        wallet.balance = wallet.balance + amount
        wallet.total_earnings = wallet.total_earnings + amount
        db.add(
            WalletTransaction(
                wallet_id=wallet.id,
                type="sale",
                amount=amount,
                status="completed",
                order_id=order_id,
                order_item_id=order_item_id,
                description=description,
            )
        )
        return True

    async def increment_sales(self, db: AsyncSession, seller_id: str, amount: Decimal) -> bool:
        self.calls.append("increment_sales")
        result = await db.execute(
            update(Seller)
            .where(Seller.id == seller_id)
            .values(sales_total=Seller.sales_total + amount)
        )
        return result.rowcount == 1


class BrokenLedgerPrimitives:
    """Routines that exist but always error, as when they were never installed."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    async def credit_wallet(self, db: AsyncSession, *args: Any) -> bool:
        self.calls.append("credit_wallet")
        raise RuntimeError("function credit_seller_wallet does not exist")

    async def increment_sales(self, db: AsyncSession, *args: Any) -> bool:
        self.calls.append("increment_sales")
        raise RuntimeError("function increment_seller_sales does not exist")


class SilentLedgerPrimitives(FakeLedgerPrimitives):
    """Reports success without writing anything."""

    async def credit_wallet(self, db: AsyncSession, *args: Any) -> bool:
        self.calls.append("credit_wallet")
        return True


class FakeProvider:
    """Line-item provider returning canned line items per session."""

    def __init__(self, line_items: Optional[Dict[str, List[LineItem]]] = None):
        self.line_items = line_items or {}
        self.requests: List[str] = []

    async def list_line_items(self, session_id: str) -> List[LineItem]:
        self.requests.append(session_id)
        return list(self.line_items.get(session_id, []))


class GatedProvider(FakeProvider):
    """Holds every fetch until ``parties`` deliveries are waiting on it."""

    def __init__(self, line_items: Dict[str, List[LineItem]], parties: int = 2):
        super().__init__(line_items)
        self.parties = parties
        self._all_arrived = asyncio.Event()

    async def list_line_items(self, session_id: str) -> List[LineItem]:
        items = await super().list_line_items(session_id)
        if len(self.requests) >= self.parties:
            self._all_arrived.set()
        await asyncio.wait_for(self._all_arrived.wait(), timeout=5)
        return items


def line_item(
    line_item_id: str,
    amount_total: int,
    seller_id: Optional[str] = "seller_1",
    product_id: Optional[str] = "product_1",
    quantity: int = 1,
) -> LineItem:
    return LineItem(
        line_item_id=line_item_id,
        seller_id=seller_id,
        product_id=product_id,
        quantity=quantity,
        unit_amount=amount_total // quantity,
        amount_total=amount_total,
    )


def checkout_event(
    session_id: str,
    amount_total: int,
    event_id: Optional[str] = None,
    referral_code: Optional[str] = None,
    payment_intent: str = "pi_test_123",
) -> Dict[str, Any]:
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "amount_total": amount_total,
                "currency": "ron",
                "payment_intent": payment_intent,
                "customer_details": {"email": "buyer@example.com"},
                "metadata": {"referral_code": referral_code} if referral_code else {},
            }
        },
    }


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header the way Stripe signs deliveries."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def encode(event: Dict[str, Any]) -> bytes:
    return json.dumps(event).encode("utf-8")


async def count(session_factory: async_sessionmaker[AsyncSession], model: Any, *where: Any) -> int:
    async with session_factory() as db:
        result = await db.execute(select(func.count()).select_from(model).where(*where))
        return result.scalar_one()


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        stripe_secret_key="sk_test_fake_key_for_testing",
        stripe_webhook_secret=WEBHOOK_SECRET,
        database_url="sqlite+aiosqlite:///:memory:",
        database_auto_create=False,
        redis_url=None,
        app_name="earnings-ledger-test",
        app_env="test",
        log_level="DEBUG",
        ledger_atomic_primitives=False,
    )


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield create_session_factory(engine)

    await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path: Any) -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    """File-backed database with a connection pool, so sessions really run concurrently."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield create_session_factory(engine)

    await engine.dispose()


@pytest_asyncio.fixture
async def seller(session_factory: async_sessionmaker[AsyncSession]) -> Seller:
    """Bronze seller with 50.00 of prior sales."""
    async with session_factory() as db, db.begin():
        seller = Seller(id="seller_1", name="Ana Designer", sales_total=Decimal("50.00"))
        db.add(seller)
    return seller


@pytest_asyncio.fixture
async def promoter(session_factory: async_sessionmaker[AsyncSession]) -> Promoter:
    async with session_factory() as db, db.begin():
        promoter = Promoter(id="promoter_1", name="Ioana Influencer", referral_code="IOANA10")
        db.add(promoter)
    return promoter


@pytest.fixture
def fake_primitives() -> FakeLedgerPrimitives:
    return FakeLedgerPrimitives()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def webhook_handler() -> WebhookHandler:
    return WebhookHandler(webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def dispatcher(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    provider: FakeProvider,
    webhook_handler: WebhookHandler,
    fake_primitives: FakeLedgerPrimitives,
) -> WebhookDispatcher:
    return WebhookDispatcher.build(
        test_settings,
        session_factory,
        provider=provider,
        webhook_handler=webhook_handler,
        primitives=fake_primitives,
    )


async def wallet_for(
    session_factory: async_sessionmaker[AsyncSession], seller_id: str
) -> Optional[SellerWallet]:
    async with session_factory() as db:
        result = await db.execute(select(SellerWallet).where(SellerWallet.seller_id == seller_id))
        return result.scalar_one_or_none()


async def items_for(
    session_factory: async_sessionmaker[AsyncSession], session_id: str
) -> List[OrderItem]:
    async with session_factory() as db:
        result = await db.execute(
            select(OrderItem)
            .join(Order, Order.id == OrderItem.order_id)
            .where(Order.stripe_session_id == session_id)
            .order_by(OrderItem.stripe_line_item_id)
        )
        return list(result.scalars())
