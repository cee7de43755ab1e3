"""
Tests for commission tier resolution and revenue splits.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from earnings_ledger.core.tiers import (
    COMMISSION_TIERS,
    CommissionTier,
    _validate_table,
    next_tier,
    resolve_tier,
)


class TestResolveTier:
    """Test suite for tier lookup by cumulative sales."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "sales_total,expected_pct",
        [
            ("0", 70),
            ("99.99", 70),
            ("100", 75),
            ("999.99", 75),
            ("1000", 80),
            ("9999.99", 80),
            ("10000", 83),
        ],
    )
    def test_tier_boundaries(self, sales_total: str, expected_pct: int) -> None:
        tier = resolve_tier(Decimal(sales_total))
        assert tier.designer_earnings_pct == Decimal(expected_pct)

    @pytest.mark.unit
    def test_percentage_never_decreases_with_sales(self) -> None:
        totals = [Decimal(n) for n in range(0, 20000, 250)]
        percentages = [resolve_tier(total).designer_earnings_pct for total in totals]
        assert percentages == sorted(percentages)

    @pytest.mark.unit
    def test_missing_or_negative_total_falls_back_to_lowest_tier(self) -> None:
        assert resolve_tier(None).id == "bronze"
        assert resolve_tier(Decimal("-5")).id == "bronze"

    @pytest.mark.unit
    def test_accepts_int_and_float(self) -> None:
        assert resolve_tier(1000).id == "gold"
        assert resolve_tier(150.5).id == "silver"

    @pytest.mark.unit
    def test_next_tier(self) -> None:
        assert next_tier(Decimal("50")).id == "silver"
        assert next_tier(Decimal("1000")).id == "platinum"
        assert next_tier(Decimal("25000")) is None


class TestCommissionSplit:
    """Test suite for designer/platform splits."""

    @pytest.mark.unit
    @pytest.mark.parametrize("tier", COMMISSION_TIERS, ids=lambda t: t.id)
    @pytest.mark.parametrize("total", ["0.01", "0.05", "19.99", "333.33", "600.00", "1234.57"])
    def test_split_conserves_total(self, tier: CommissionTier, total: str) -> None:
        amount = Decimal(total)
        earnings, fee = tier.split(amount)

        assert earnings + fee == amount
        assert earnings >= 0 and fee >= 0
        expected = amount * tier.designer_earnings_pct / Decimal("100")
        assert abs(earnings - expected) <= Decimal("0.005")

    @pytest.mark.unit
    def test_bronze_split_of_600(self) -> None:
        earnings, fee = resolve_tier(Decimal("50")).split(Decimal("600.00"))
        assert earnings == Decimal("420.00")
        assert fee == Decimal("180.00")

    @pytest.mark.unit
    def test_rounding_is_half_up(self) -> None:
        tier = resolve_tier(Decimal("10000"))  # 83%
        earnings, fee = tier.split(Decimal("0.50"))
        # 0.415 rounds up to 0.42
        assert earnings == Decimal("0.42")
        assert fee == Decimal("0.08")


class TestTierTableValidation:
    """Test suite for tier table invariants checked at definition time."""

    @pytest.mark.unit
    def test_percentages_must_sum_to_100(self) -> None:
        with pytest.raises(PydanticValidationError, match="sum to 100"):
            CommissionTier(
                id="broken",
                name="Broken",
                threshold=Decimal("0"),
                designer_earnings_pct=Decimal("70"),
                platform_fee_pct=Decimal("20"),
            )

    @pytest.mark.unit
    def test_table_must_start_at_zero(self) -> None:
        tier = CommissionTier(
            id="silver",
            name="Silver",
            threshold=Decimal("100"),
            designer_earnings_pct=Decimal("75"),
            platform_fee_pct=Decimal("25"),
        )
        with pytest.raises(ValueError, match="threshold 0"):
            _validate_table([tier])

    @pytest.mark.unit
    def test_table_must_be_ascending(self) -> None:
        with pytest.raises(ValueError, match="ascending"):
            _validate_table([COMMISSION_TIERS[0], COMMISSION_TIERS[2], COMMISSION_TIERS[1]])

    @pytest.mark.unit
    def test_shipped_table(self) -> None:
        assert [t.threshold for t in COMMISSION_TIERS] == [
            Decimal("0"),
            Decimal("100"),
            Decimal("1000"),
            Decimal("10000"),
        ]
        for tier in COMMISSION_TIERS:
            assert tier.designer_earnings_pct + tier.platform_fee_pct == Decimal("100")
