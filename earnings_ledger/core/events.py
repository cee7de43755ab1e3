"""
Typed webhook events.

Provider envelopes are parsed into a closed set of event kinds. Event types the
ledger does not act on become ``IgnoredEvent`` instead of falling through.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from earnings_ledger.core.exceptions import ValidationError

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"

MINOR_UNITS_PER_MAJOR = Decimal("100")


def to_major_units(amount_minor: int) -> Decimal:
    """Convert provider minor units (e.g. bani, cents) to a 2-place Decimal."""
    return (Decimal(amount_minor) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"))


class LineItem(BaseModel):
    """Authoritative line item as returned by the provider's line-item fetch."""

    model_config = ConfigDict(frozen=True)

    line_item_id: str
    product_id: Optional[str] = None
    seller_id: Optional[str] = None
    description: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    unit_amount: int = Field(default=0, ge=0, description="Unit price in minor units")
    amount_total: int = Field(default=0, ge=0, description="Line total in minor units")

    @property
    def unit_price(self) -> Decimal:
        return to_major_units(self.unit_amount)

    @property
    def total_price(self) -> Decimal:
        return to_major_units(self.amount_total)


class CheckoutSession(BaseModel):
    """The parts of a checkout session the ledger reads."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    payment_intent_id: Optional[str] = None
    amount_total: int = Field(default=0, ge=0, description="Declared total in minor units")
    currency: Optional[str] = None
    customer_email: Optional[str] = None
    referral_code: Optional[str] = None

    @property
    def total_amount(self) -> Decimal:
        return to_major_units(self.amount_total)


class CheckoutCompleted(BaseModel):
    kind: Literal["checkout_completed"] = "checkout_completed"
    event_id: str
    event_type: str = CHECKOUT_COMPLETED
    session: CheckoutSession


class PaymentSucceeded(BaseModel):
    kind: Literal["payment_succeeded"] = "payment_succeeded"
    event_id: str
    event_type: str = PAYMENT_SUCCEEDED
    payment_intent_id: str


class PaymentFailed(BaseModel):
    kind: Literal["payment_failed"] = "payment_failed"
    event_id: str
    event_type: str = PAYMENT_FAILED
    payment_intent_id: str
    failure_message: Optional[str] = None


class IgnoredEvent(BaseModel):
    kind: Literal["ignored"] = "ignored"
    event_id: str
    event_type: str


WebhookEvent = Annotated[
    Union[CheckoutCompleted, PaymentSucceeded, PaymentFailed, IgnoredEvent],
    Field(discriminator="kind"),
]

_event_adapter: TypeAdapter[Any] = TypeAdapter(WebhookEvent)


def _expanded_id(value: Any) -> Optional[str]:
    """Stripe fields may hold an id or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _checkout_session(obj: Dict[str, Any]) -> Dict[str, Any]:
    customer_details = obj.get("customer_details") or {}
    metadata = obj.get("metadata") or {}
    return {
        "session_id": obj.get("id"),
        "payment_intent_id": _expanded_id(obj.get("payment_intent")),
        "amount_total": obj.get("amount_total") or 0,
        "currency": obj.get("currency"),
        "customer_email": customer_details.get("email") or obj.get("customer_email"),
        "referral_code": metadata.get("referral_code") or None,
    }


def parse_event(envelope: Dict[str, Any]) -> WebhookEvent:
    """
    Parse a verified provider envelope into a typed event.

    Args:
        envelope: Decoded JSON body ``{"id", "type", "data": {"object": ...}}``

    Returns:
        WebhookEvent: One of the closed set of event kinds

    Raises:
        ValidationError: If the envelope is malformed for its declared type
    """
    event_id = envelope.get("id") or ""
    event_type = envelope.get("type") or ""
    obj = (envelope.get("data") or {}).get("object") or {}

    if event_type == CHECKOUT_COMPLETED:
        raw: Dict[str, Any] = {"kind": "checkout_completed", "session": _checkout_session(obj)}
    elif event_type == PAYMENT_SUCCEEDED:
        raw = {"kind": "payment_succeeded", "payment_intent_id": obj.get("id")}
    elif event_type == PAYMENT_FAILED:
        last_error = obj.get("last_payment_error") or {}
        raw = {
            "kind": "payment_failed",
            "payment_intent_id": obj.get("id"),
            "failure_message": last_error.get("message"),
        }
    else:
        raw = {"kind": "ignored"}

    raw.update(event_id=event_id, event_type=event_type)
    try:
        return _event_adapter.validate_python(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Malformed {event_type or 'unknown'} event: {e.error_count()} invalid field(s)",
            event_id=event_id,
            event_type=event_type,
        ) from e
