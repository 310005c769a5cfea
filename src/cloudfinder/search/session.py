"""Caller-side sequencing of typeahead searches.

The engine is stateless, so a caller issuing one query per keystroke
must cancel the previous query before starting the next one, and must
drop responses that arrive for a query the user has since replaced.
``SearchChannel`` does both for one logical caller (a browser tab, a
websocket connection).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Optional, Tuple

from cloudfinder.models import SearchResponse
from cloudfinder.search.engine import Engine, SearchHandle

LOGGER = logging.getLogger(__name__)


class SearchChannel:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.current_query: Optional[str] = None
        self._handle: Optional[SearchHandle] = None
        # Identifies the latest submission, so a resubmitted query text
        # does not revive responses of the earlier submission.
        self._sequence = itertools.count(1)
        self._current_seq = 0
        self._queue: asyncio.Queue[
            Tuple[int, Optional[BaseException], Optional[SearchResponse]]
        ] = asyncio.Queue()

    def submit(self, q: str, limit: Optional[int], delegate: bool) -> SearchHandle:
        """Start a query, superseding any previous one on this channel."""
        if self._handle is not None:
            self._handle.cancel()
        seq = next(self._sequence)
        self._current_seq = seq
        self.current_query = q
        self._handle = self.engine.query_search(
            q, limit, delegate, lambda error, response: self._on_response(seq, error, response)
        )
        return self._handle

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()

    async def receive(self) -> SearchResponse:
        """Next response for the current submission. Raises its errors."""
        while True:
            seq, error, response = await self._queue.get()
            if seq != self._current_seq:
                LOGGER.debug("Discarding stale response of submission %d", seq)
                continue
            if error is not None:
                raise error
            return response

    def _on_response(
        self, seq: int, error: Optional[BaseException], response: Optional[SearchResponse]
    ) -> None:
        self._queue.put_nowait((seq, error, response))
