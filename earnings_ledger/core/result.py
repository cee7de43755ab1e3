"""
Result values and the try-then-fallback combinator.

The ledger and the sales accumulator both follow the same shape: one attempt
at an atomic primitive, one attempt at a manual fallback, no retries. Each
attempt returns a Result instead of raising, and ``attempt_then_fallback``
composes the pair.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

import structlog

from earnings_ledger.core.exceptions import LedgerError, PersistenceError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful attempt."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed attempt, carrying the classified error."""

    error: LedgerError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
Attempt = Callable[[], Awaitable[Result[T]]]


async def capture(
    fn: Callable[[], Awaitable[T]],
    wrap: type[LedgerError] = PersistenceError,
    **context: Any,
) -> Result[T]:
    """
    Run ``fn`` and convert any exception into an ``Err``.

    Ledger errors are kept as they are; anything else (driver errors,
    missing routines) is wrapped in ``wrap``.
    """
    try:
        return Ok(await fn())
    except LedgerError as e:
        return Err(e)
    except Exception as e:
        return Err(wrap(f"{type(e).__name__}: {e}", **context))


async def attempt_then_fallback(
    primary: Attempt[T],
    fallback: Attempt[T],
    operation: str,
) -> Result[T]:
    """
    Run ``primary``; on ``Err`` run ``fallback`` exactly once.

    Args:
        primary: Atomic attempt
        fallback: Degraded substitute with the same contract
        operation: Name used in logs

    Returns:
        Result: The primary result if it succeeded, else the fallback result
    """
    result = await primary()
    if result.ok:
        return result

    logger.warning(
        "atomic_path_failed_using_fallback",
        operation=operation,
        error=str(result.error),
        error_type=type(result.error).__name__,
        **result.error.context,
    )
    return await fallback()
