"""Cooperative cancellation for asynchronous search legs."""

from __future__ import annotations

import asyncio

from cloudfinder.errors import SearchCancelled


class CancellationToken:
    """Passed through an asynchronous flow and checked at each suspension point.

    Cancelling does not interrupt I/O already in progress; the flow stops
    at the next check.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SearchCancelled()

    async def sleep(self, delay: float) -> None:
        """Wait ``delay`` seconds, waking early if cancelled."""
        self.raise_if_cancelled()
        if delay > 0:
            try:
                await asyncio.wait_for(self._event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        self.raise_if_cancelled()
