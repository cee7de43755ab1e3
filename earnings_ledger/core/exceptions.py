"""Error taxonomy for webhook and ledger processing."""
from typing import Any, Optional


class LedgerError(Exception):
    """Base exception carrying structured logging context."""

    def __init__(self, message: str, **context: Any):
        """
        Initialize ledger error.

        Args:
            message: Error message
            **context: Identifiers for structured logs (seller_id, order_id, ...)
        """
        super().__init__(message)
        self.context = context


class AuthenticationError(LedgerError):
    """Webhook signature missing or invalid. Nothing is processed."""

    pass


class ValidationError(LedgerError):
    """Provider data is inconsistent. The whole session is aborted."""

    pass


class AmountMismatchError(ValidationError):
    """Sum of line-item totals differs from the declared session total."""

    def __init__(self, session_id: str, declared: int, computed: int):
        super().__init__(
            f"Session {session_id} declares {declared} but line items sum to {computed}",
            session_id=session_id,
            declared_minor=declared,
            computed_minor=computed,
        )
        self.declared = declared
        self.computed = computed


class NotFoundError(LedgerError):
    """Seller or product metadata missing for a line item. The item is skipped."""

    pass


class DuplicateError(LedgerError):
    """Event, session or sale already processed. Treated as success."""

    pass


class PersistenceError(LedgerError):
    """Atomic primitive unavailable or failing. Triggers the fallback path."""

    pass


class VerificationError(LedgerError):
    """A write could not be confirmed by reading it back."""

    pass


class ProviderNotConfiguredError(LedgerError):
    """Payment provider credentials are missing."""

    def __init__(self, missing: Optional[str] = None):
        message = "Payment provider is not configured"
        if missing:
            message = f"{message}: {missing} is not set"
        super().__init__(message, missing=missing)


class ProviderError(LedgerError):
    """Payment provider call failed after retries."""

    pass
