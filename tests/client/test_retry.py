"""Tests for retry helpers."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from statesync.client.retry import first_success, retry_with_backoff


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self) -> None:
        """Should return immediately on success."""
        func = AsyncMock(return_value="ok")
        assert await retry_with_backoff(func) == "ok"
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self) -> None:
        """Should retry after a failure."""
        func = AsyncMock(side_effect=[ConnectionError("down"), "ok"])
        with patch("statesync.client.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await retry_with_backoff(func, initial_backoff=0.4) == "ok"
        assert func.await_count == 2
        sleep.assert_awaited_once_with(0.4)

    @pytest.mark.asyncio
    async def test_raises_after_max_attempts(self) -> None:
        """Should re-raise the last exception once attempts are exhausted."""
        func = AsyncMock(side_effect=ConnectionError("down"))
        with pytest.raises(ConnectionError):
            await retry_with_backoff(func, max_attempts=3, initial_backoff=0)
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_propagates(self) -> None:
        """Exceptions outside retryable_exceptions should not be retried."""
        func = AsyncMock(side_effect=KeyError("nope"))
        with pytest.raises(KeyError):
            await retry_with_backoff(
                func, initial_backoff=0, retryable_exceptions=(ConnectionError,)
            )
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_exponential_backoff_capped(self) -> None:
        """Delays should grow by the multiplier up to max_backoff."""
        func = AsyncMock(side_effect=ConnectionError("down"))
        with patch("statesync.client.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(ConnectionError):
                await retry_with_backoff(
                    func,
                    max_attempts=4,
                    initial_backoff=1.0,
                    max_backoff=3.0,
                    backoff_multiplier=2.0,
                )
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_invalid_max_attempts(self) -> None:
        with pytest.raises(ValueError):
            await retry_with_backoff(AsyncMock(), max_attempts=0)


class TestFirstSuccess:
    """Tests for first_success."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self) -> None:
        """Should return the first candidate that succeeds and stop there."""
        calls: list[str] = []

        async def attempt(candidate: str) -> str:
            calls.append(candidate)
            if candidate != "c":
                raise ConnectionError(candidate)
            return candidate.upper()

        assert await first_success(["a", "b", "c", "d"], attempt) == ("c", "C")
        assert calls == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_all_fail(self) -> None:
        """Should return None when every candidate fails."""
        attempt = AsyncMock(side_effect=ConnectionError("down"))
        assert await first_success(["a", "b"], attempt) is None
        assert attempt.await_count == 2

    @pytest.mark.asyncio
    async def test_empty_candidates(self) -> None:
        assert await first_success([], AsyncMock()) is None
