"""Core earnings ledger logic."""
from .exceptions import (
    AmountMismatchError,
    AuthenticationError,
    DuplicateError,
    LedgerError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    ProviderNotConfiguredError,
    ValidationError,
    VerificationError,
)
from .idempotency import SessionGuard
from .ledger import CreditOutcome, EarningsLedger
from .orders import OrderMaterializer, validate_amounts
from .referrals import ReferralCreditor
from .sales import SalesAccumulator, SalesOutcome
from .tiers import COMMISSION_TIERS, CommissionTier, next_tier, resolve_tier

__all__ = [
    "AmountMismatchError",
    "AuthenticationError",
    "COMMISSION_TIERS",
    "CommissionTier",
    "CreditOutcome",
    "DuplicateError",
    "EarningsLedger",
    "LedgerError",
    "NotFoundError",
    "OrderMaterializer",
    "PersistenceError",
    "ProviderError",
    "ProviderNotConfiguredError",
    "ReferralCreditor",
    "SalesAccumulator",
    "SalesOutcome",
    "SessionGuard",
    "ValidationError",
    "VerificationError",
    "next_tier",
    "resolve_tier",
    "validate_amounts",
]
