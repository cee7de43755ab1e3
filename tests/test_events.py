"""
Tests for webhook envelope parsing.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from earnings_ledger.core.events import (
    CheckoutCompleted,
    IgnoredEvent,
    LineItem,
    PaymentFailed,
    PaymentSucceeded,
    parse_event,
    to_major_units,
)
from earnings_ledger.core.exceptions import ValidationError
from tests.conftest import checkout_event


class TestParseEvent:
    """Test suite for the closed set of event kinds."""

    @pytest.mark.unit
    def test_checkout_completed(self) -> None:
        event = parse_event(checkout_event("cs_test_1", 100000, event_id="evt_1", referral_code="IOANA10"))

        assert isinstance(event, CheckoutCompleted)
        assert event.event_id == "evt_1"
        assert event.session.session_id == "cs_test_1"
        assert event.session.amount_total == 100000
        assert event.session.total_amount == Decimal("1000.00")
        assert event.session.customer_email == "buyer@example.com"
        assert event.session.payment_intent_id == "pi_test_123"
        assert event.session.referral_code == "IOANA10"

    @pytest.mark.unit
    def test_checkout_with_expanded_payment_intent(self) -> None:
        envelope = checkout_event("cs_test_2", 500)
        envelope["data"]["object"]["payment_intent"] = {"id": "pi_expanded", "object": "payment_intent"}

        event = parse_event(envelope)

        assert event.session.payment_intent_id == "pi_expanded"
        assert event.session.referral_code is None

    @pytest.mark.unit
    def test_payment_succeeded(self) -> None:
        event = parse_event(
            {"id": "evt_2", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}}
        )
        assert isinstance(event, PaymentSucceeded)
        assert event.payment_intent_id == "pi_1"

    @pytest.mark.unit
    def test_payment_failed_keeps_failure_message(self) -> None:
        event = parse_event(
            {
                "id": "evt_3",
                "type": "payment_intent.payment_failed",
                "data": {
                    "object": {"id": "pi_2", "last_payment_error": {"message": "Card declined"}}
                },
            }
        )
        assert isinstance(event, PaymentFailed)
        assert event.failure_message == "Card declined"

    @pytest.mark.unit
    def test_unknown_type_is_ignored_not_dropped(self) -> None:
        event = parse_event({"id": "evt_4", "type": "customer.created", "data": {"object": {}}})
        assert isinstance(event, IgnoredEvent)
        assert event.event_type == "customer.created"

    @pytest.mark.unit
    def test_checkout_without_session_id_is_malformed(self) -> None:
        envelope = checkout_event("cs_test_3", 100)
        del envelope["data"]["object"]["id"]

        with pytest.raises(ValidationError, match="Malformed checkout.session.completed"):
            parse_event(envelope)

    @pytest.mark.unit
    def test_payment_event_without_intent_id_is_malformed(self) -> None:
        with pytest.raises(ValidationError):
            parse_event({"id": "evt_5", "type": "payment_intent.succeeded", "data": {}})


class TestMoney:
    """Test suite for minor/major unit conversion."""

    @pytest.mark.unit
    def test_to_major_units(self) -> None:
        assert to_major_units(60000) == Decimal("600.00")
        assert to_major_units(1) == Decimal("0.01")
        assert to_major_units(0) == Decimal("0.00")

    @pytest.mark.unit
    def test_line_item_prices(self) -> None:
        item = LineItem(line_item_id="li_1", quantity=3, unit_amount=1999, amount_total=5997)
        assert item.unit_price == Decimal("19.99")
        assert item.total_price == Decimal("59.97")

    @pytest.mark.unit
    def test_line_item_rejects_zero_quantity(self) -> None:
        with pytest.raises(PydanticValidationError):
            LineItem(line_item_id="li_2", quantity=0)
