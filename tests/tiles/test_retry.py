"""Tests for load_with_retry."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from domain.models import TileCoordinate
from shared.errors import RateLimitedError, TileDecodeError, TileFetchError
from tiles.retry import load_with_retry

COORD = TileCoordinate(15, 16598, 11273)


class TestLoadWithRetry:
    """Tests for the retry controller."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, clock):
        fetch = AsyncMock(return_value='tile')
        result = await load_with_retry(fetch, COORD, clock=clock)
        assert result == 'tile'
        fetch.assert_awaited_once_with(COORD)
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_two_failures_then_success(self, clock):
        """Backoff doubles per attempt and elapsed time covers the base delay."""
        fetch = AsyncMock(
            side_effect=[TileFetchError('boom'), TileFetchError('boom'), 'tile']
        )
        start = clock.monotonic()
        result = await load_with_retry(fetch, COORD, clock=clock, base_delay_s=0.1)
        assert result == 'tile'
        assert fetch.await_count == 3
        assert clock.sleeps == pytest.approx([0.1, 0.2])
        assert clock.monotonic() - start >= 0.1

    @pytest.mark.asyncio
    async def test_exhaustion_returns_none(self, clock, caplog):
        fetch = AsyncMock(side_effect=TileFetchError('down'))
        with caplog.at_level('WARNING'):
            result = await load_with_retry(fetch, COORD, max_retries=3, clock=clock)
        assert result is None
        assert fetch.await_count == 3
        # No wait after the final attempt
        assert clock.sleeps == pytest.approx([0.1, 0.2])
        assert '15/16598/11273' in caplog.text

    @pytest.mark.asyncio
    async def test_decode_error_counts_as_failure(self, clock):
        fetch = AsyncMock(side_effect=[TileDecodeError('garbage'), 'tile'])
        assert await load_with_retry(fetch, COORD, clock=clock) == 'tile'
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_absorbed(self, clock):
        fetch = AsyncMock(side_effect=KeyError('x'))
        assert await load_with_retry(fetch, COORD, max_retries=2, clock=clock) is None
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_rate_limit_waits_fixed_delay_and_retries_once(self, clock):
        fetch = AsyncMock(side_effect=[RateLimitedError('429'), 'tile'])
        result = await load_with_retry(
            fetch, COORD, clock=clock, max_retries=1, rate_limit_delay_s=1.0
        )
        # The extra attempt does not consume the single generic attempt
        assert result == 'tile'
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_second_rate_limit_gives_up(self, clock):
        fetch = AsyncMock(side_effect=[RateLimitedError('429'), RateLimitedError('429'), 'tile'])
        result = await load_with_retry(fetch, COORD, clock=clock, max_retries=5)
        assert result is None
        assert fetch.await_count == 2
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_before_attempt_runs_before_every_attempt(self, clock):
        hook = AsyncMock()
        fetch = AsyncMock(side_effect=[TileFetchError('x'), 'tile'])
        await load_with_retry(fetch, COORD, clock=clock, before_attempt=hook)
        assert hook.await_count == 2

    @pytest.mark.asyncio
    async def test_zero_retries_never_fetches(self, clock):
        fetch = AsyncMock(return_value='tile')
        assert await load_with_retry(fetch, COORD, max_retries=0, clock=clock) is None
        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, clock):
        fetch = AsyncMock(side_effect=asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await load_with_retry(fetch, COORD, clock=clock)
