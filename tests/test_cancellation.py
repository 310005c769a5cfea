"""Tests for CancellationToken."""

from __future__ import annotations

import asyncio
import time

import pytest

from cloudfinder.errors import SearchCancelled
from cloudfinder.utils.cancellation import CancellationToken


class TestCancellationToken:
    """Test cancel and raise_if_cancelled."""

    def test_initial_state(self) -> None:
        token = CancellationToken()

        assert token.cancelled is False
        token.raise_if_cancelled()

    def test_cancel(self) -> None:
        token = CancellationToken()
        token.cancel()

        assert token.cancelled is True
        with pytest.raises(SearchCancelled):
            token.raise_if_cancelled()


class TestSleep:
    """Test the cancellable debounce wait."""

    @pytest.mark.asyncio
    async def test_sleeps_full_delay(self) -> None:
        token = CancellationToken()
        begin = time.perf_counter()

        await token.sleep(0.05)

        assert time.perf_counter() - begin >= 0.04

    @pytest.mark.asyncio
    async def test_wakes_early_when_cancelled(self) -> None:
        """Should raise as soon as the token is cancelled, not after the delay."""
        token = CancellationToken()
        sleeper = asyncio.create_task(token.sleep(5))
        await asyncio.sleep(0.01)
        begin = time.perf_counter()

        token.cancel()
        with pytest.raises(SearchCancelled):
            await asyncio.wait_for(sleeper, timeout=1)

        assert time.perf_counter() - begin < 1

    @pytest.mark.asyncio
    async def test_already_cancelled(self) -> None:
        token = CancellationToken()
        token.cancel()

        with pytest.raises(SearchCancelled):
            await token.sleep(0)
