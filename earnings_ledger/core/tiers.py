"""
Commission tiers.

A seller's cumulative sales decide the share of each sale they keep. The
tier is resolved from ``sales_total`` as it stood *before* the sale being
priced and is frozen into the order item.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, model_validator

CENT = Decimal("0.01")


class CommissionTier(BaseModel):
    """Named band of cumulative sales with a fixed revenue split."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    threshold: Decimal
    designer_earnings_pct: Decimal
    platform_fee_pct: Decimal

    @model_validator(mode="after")
    def percentages_sum_to_100(self) -> "CommissionTier":
        if self.designer_earnings_pct + self.platform_fee_pct != Decimal("100"):
            raise ValueError(
                f"Tier {self.id}: designer and platform shares must sum to 100, got "
                f"{self.designer_earnings_pct} + {self.platform_fee_pct}"
            )
        if self.threshold < 0:
            raise ValueError(f"Tier {self.id}: threshold must be non-negative")
        return self

    def split(self, total: Decimal) -> tuple[Decimal, Decimal]:
        """
        Split a line total into designer earnings and platform fee.

        The platform fee is the remainder, so the two always add back up to
        ``total`` exactly.
        """
        total = total.quantize(CENT, rounding=ROUND_HALF_UP)
        earnings = (total * self.designer_earnings_pct / Decimal("100")).quantize(
            CENT, rounding=ROUND_HALF_UP
        )
        return earnings, total - earnings


def _validate_table(tiers: Sequence[CommissionTier]) -> tuple[CommissionTier, ...]:
    if not tiers:
        raise ValueError("Commission tier table is empty")
    if tiers[0].threshold != 0:
        raise ValueError("Lowest commission tier must start at threshold 0")
    for lower, upper in zip(tiers, tiers[1:]):
        if upper.threshold <= lower.threshold:
            raise ValueError("Commission tiers must be strictly ascending by threshold")
    return tuple(tiers)


COMMISSION_TIERS: tuple[CommissionTier, ...] = _validate_table(
    [
        CommissionTier(
            id="bronze",
            name="Bronze Designer",
            threshold=Decimal("0"),
            designer_earnings_pct=Decimal("70"),
            platform_fee_pct=Decimal("30"),
        ),
        CommissionTier(
            id="silver",
            name="Silver Designer",
            threshold=Decimal("100"),
            designer_earnings_pct=Decimal("75"),
            platform_fee_pct=Decimal("25"),
        ),
        CommissionTier(
            id="gold",
            name="Gold Designer",
            threshold=Decimal("1000"),
            designer_earnings_pct=Decimal("80"),
            platform_fee_pct=Decimal("20"),
        ),
        CommissionTier(
            id="platinum",
            name="Platinum Designer",
            threshold=Decimal("10000"),
            designer_earnings_pct=Decimal("83"),
            platform_fee_pct=Decimal("17"),
        ),
    ]
)


def resolve_tier(
    sales_total: Decimal | int | float | None,
    tiers: Sequence[CommissionTier] = COMMISSION_TIERS,
) -> CommissionTier:
    """
    Find the highest tier whose threshold the seller has reached.

    Args:
        sales_total: Cumulative gross sales before the current sale
        tiers: Tier table, ascending by threshold

    Returns:
        CommissionTier: Matching tier, the lowest tier when nothing else matches
    """
    total = Decimal(str(sales_total or 0))
    for tier in reversed(tiers):
        if total >= tier.threshold:
            return tier
    return tiers[0]


def next_tier(
    sales_total: Decimal | int | float | None,
    tiers: Sequence[CommissionTier] = COMMISSION_TIERS,
) -> Optional[CommissionTier]:
    """Return the first tier above ``sales_total``, or None at the top."""
    total = Decimal(str(sales_total or 0))
    for tier in tiers:
        if tier.threshold > total:
            return tier
    return None
