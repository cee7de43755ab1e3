"""
Tests for the try-then-fallback combinator.
"""
import pytest

from earnings_ledger.core.exceptions import NotFoundError, PersistenceError
from earnings_ledger.core.result import Err, Ok, attempt_then_fallback, capture


class TestCapture:
    """Test suite for exception capture."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_value_becomes_ok(self) -> None:
        async def fn() -> int:
            return 42

        result = await capture(fn)
        assert isinstance(result, Ok)
        assert result.ok and result.value == 42

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ledger_error_kept_as_is(self) -> None:
        async def fn() -> int:
            raise NotFoundError("no seller", seller_id="s1")

        result = await capture(fn)
        assert isinstance(result, Err)
        assert isinstance(result.error, NotFoundError)
        assert result.error.context == {"seller_id": "s1"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_foreign_error_wrapped_with_context(self) -> None:
        async def fn() -> int:
            raise RuntimeError("connection reset")

        result = await capture(fn, seller_id="s1")
        assert isinstance(result.error, PersistenceError)
        assert "RuntimeError: connection reset" in str(result.error)
        assert result.error.context == {"seller_id": "s1"}


class TestAttemptThenFallback:
    """Test suite for primary/fallback composition."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_primary_success_skips_fallback(self) -> None:
        calls = []

        async def primary():
            calls.append("primary")
            return Ok("atomic")

        async def fallback():
            calls.append("fallback")
            return Ok("fallback")

        result = await attempt_then_fallback(primary, fallback, operation="test")
        assert result.value == "atomic"
        assert calls == ["primary"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_primary_failure_runs_fallback_once(self) -> None:
        calls = []

        async def primary():
            calls.append("primary")
            return Err(PersistenceError("routine missing"))

        async def fallback():
            calls.append("fallback")
            return Ok("fallback")

        result = await attempt_then_fallback(primary, fallback, operation="test")
        assert result.value == "fallback"
        assert calls == ["primary", "fallback"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_both_fail_returns_fallback_error(self) -> None:
        async def primary():
            return Err(PersistenceError("routine missing"))

        async def fallback():
            return Err(PersistenceError("disk full"))

        result = await attempt_then_fallback(primary, fallback, operation="test")
        assert not result.ok
        assert str(result.error) == "disk full"
