"""SQLAlchemy database models for the earnings ledger."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

Money = Numeric(12, 2)

WALLET_TRANSACTION_TYPES = ("sale", "withdrawal", "refund", "adjustment")
ORDER_STATUSES = ("completed", "failed")


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Seller(Base):
    """
    Seller (designer) owning products on the marketplace.

    Only ``sales_total`` belongs to the ledger; the tier derived from it is
    resolved at sale time and never stored here.
    """

    __tablename__ = "sellers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sales_total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    __table_args__ = (CheckConstraint("sales_total >= 0", name="non_negative_sales_total"),)

    def __repr__(self) -> str:
        return f"<Seller(id={self.id}, sales_total={self.sales_total})>"


class Order(Base):
    """
    One row per processed checkout session.

    ``stripe_session_id`` is unique: it is the storage-level idempotency key.
    """

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    stripe_session_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True
    )
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")
    referral_code: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", lazy="selectin", order_by="OrderItem.created_at"
    )

    __table_args__ = (
        CheckConstraint("status IN ('completed', 'failed')", name="valid_order_status"),
    )

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, session={self.stripe_session_id}, status={self.status})>"


class OrderItem(Base):
    """
    One row per provider line item.

    Commission fields are a snapshot of the seller's tier at the time of sale
    and are never recomputed.
    """

    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id"), nullable=False)
    stripe_line_item_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    seller_id: Mapped[str] = mapped_column(ForeignKey("sellers.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    designer_earnings: Mapped[Decimal] = mapped_column(Money, nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    commission_tier: Mapped[str] = mapped_column(String(50), nullable=False)
    commission_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )

    order: Mapped[Order] = relationship(back_populates="items")

    __table_args__ = (
        UniqueConstraint("order_id", "stripe_line_item_id", name="uq_order_items_line_item"),
        CheckConstraint("quantity > 0", name="positive_quantity"),
    )

    def __repr__(self) -> str:
        return (
            f"<OrderItem(id={self.id}, seller_id={self.seller_id}, "
            f"total={self.total_price}, tier={self.commission_tier})>"
        )


class SellerWallet(Base):
    """Seller wallet, created lazily on the first credit."""

    __tablename__ = "seller_wallets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    seller_id: Mapped[str] = mapped_column(ForeignKey("sellers.id"), unique=True, nullable=False)
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_earnings: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_withdrawn: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    pending_balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<SellerWallet(seller_id={self.seller_id}, balance={self.balance})>"


class WalletTransaction(Base):
    """
    Append-only ledger row explaining every wallet balance change.

    Sale rows are unique per order item.
    """

    __tablename__ = "wallet_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    wallet_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("seller_wallets.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")
    order_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    order_item_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[Dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), index=True
    )

    __table_args__ = (
        UniqueConstraint("order_item_id", "type", name="uq_wallet_transactions_item_type"),
        CheckConstraint(
            "type IN ('sale', 'withdrawal', 'refund', 'adjustment')",
            name="valid_transaction_type",
        ),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name="valid_transaction_status",
        ),
        Index("idx_wallet_transactions_wallet_created", "wallet_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<WalletTransaction(id={self.id}, type={self.type}, "
            f"amount={self.amount}, status={self.status})>"
        )


class Promoter(Base):
    """Promoter (influencer) identified by a referral code."""

    __tablename__ = "promoters"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    referral_code: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )


class PromoterWallet(Base):
    """Promoter wallet, credited by the referral side-channel."""

    __tablename__ = "promoter_wallets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    promoter_id: Mapped[str] = mapped_column(
        ForeignKey("promoters.id"), unique=True, nullable=False
    )
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_earnings: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_withdrawn: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    pending_balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )


class PromoterWalletTransaction(Base):
    """Append-only promoter ledger row."""

    __tablename__ = "promoter_wallet_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    wallet_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("promoter_wallets.id"), nullable=False
    )
    promoter_id: Mapped[str] = mapped_column(ForeignKey("promoters.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="commission")
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")
    order_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )


class DiagnosticRecord(Base):
    """
    Append-only operator reconciliation log.

    Written when the ledger cannot prove a credit landed. Never read back by
    the service itself.
    """

    __tablename__ = "error_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    error_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    seller_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), index=True
    )

    def __repr__(self) -> str:
        return f"<DiagnosticRecord(type={self.error_type}, seller_id={self.seller_id})>"
