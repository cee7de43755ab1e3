"""
Pydantic schemas for API responses.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class WebhookResponse(BaseModel):
    """Response schema for webhook deliveries."""

    received: bool = Field(default=True, description="Delivery accepted")
    status: str = Field(..., description="processed, duplicate, ignored or rejected")
    event_id: Optional[str] = Field(default=None, description="Stripe event ID")
    event_type: Optional[str] = Field(default=None, description="Stripe event type")
    order_id: Optional[UUID] = Field(default=None, description="Order created or found")
    items_recorded: int = Field(default=0, description="Order items written")
    items_skipped: int = Field(default=0, description="Line items skipped")
    credited: Decimal = Field(default=Decimal("0"), description="Earnings credited to sellers")
    message: Optional[str] = Field(default=None, description="Detail for non-processed outcomes")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "received": True,
                    "status": "processed",
                    "event_id": "evt_1234567890",
                    "event_type": "checkout.session.completed",
                    "order_id": "123e4567-e89b-12d3-a456-426614174000",
                    "items_recorded": 2,
                    "items_skipped": 0,
                    "credited": "700.00",
                }
            ]
        }
    }


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    seller_id: str
    product_id: str
    stripe_line_item_id: Optional[str] = None
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    designer_earnings: Decimal
    platform_fee: Decimal
    commission_tier: str
    commission_percentage: Decimal


class OrderResponse(BaseModel):
    """Order with its items, as shown on the checkout success page."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    stripe_session_id: str
    stripe_payment_intent_id: Optional[str] = None
    customer_email: Optional[str] = None
    total_amount: Decimal
    currency: str
    status: str
    referral_code: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemResponse] = Field(default_factory=list)


class WalletResponse(BaseModel):
    """Seller wallet balances. Sellers without a sale yet get zeroed balances."""

    id: Optional[UUID] = Field(default=None, description="Wallet ID, None until the first credit")
    seller_id: str
    balance: Decimal
    total_earnings: Decimal
    total_withdrawn: Decimal
    pending_balance: Decimal
    sales_total: Decimal = Field(..., description="Cumulative sales used for the commission tier")
    commission_tier: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WalletTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    wallet_id: UUID
    type: str
    amount: Decimal
    status: str
    description: Optional[str] = None
    order_id: Optional[UUID] = None
    order_item_id: Optional[UUID] = None
    created_at: datetime


class WalletTransactionsResponse(BaseModel):
    """Most recent ledger rows, newest first."""

    seller_id: str
    transactions: List[WalletTransactionResponse] = Field(default_factory=list)


class CommissionTierResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    threshold: Decimal
    designer_earnings_pct: Decimal
    platform_fee_pct: Decimal


class CommissionTiersResponse(BaseModel):
    """Tier table, plus the seller's position in it when a total is given."""

    tiers: List[CommissionTierResponse]
    current: Optional[CommissionTierResponse] = None
    next: Optional[CommissionTierResponse] = None
    remaining_to_next: Optional[Decimal] = None


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual checks")
    message: Optional[str] = Field(default=None, description="Status message")
