"""Tests for SearchChannel."""

from __future__ import annotations

import asyncio

import pytest

from cloudfinder.errors import StoreError
from cloudfinder.index.local_index import LocalIndex
from cloudfinder.search.engine import Engine
from cloudfinder.search.scorer import Scorer
from cloudfinder.search.session import SearchChannel

from conftest import NOW_MS, FakeDelegate, make_doc


@pytest.fixture
def index() -> LocalIndex:
    return LocalIndex()


async def make_channel(store, index, delegate=None) -> SearchChannel:
    docs = [make_doc("a", "Budget plan"), make_doc("b", "Budget review"), make_doc("c", "Bud vase")]
    await store.put_documents(docs)
    for doc in docs:
        index.add(doc)
    return SearchChannel(Engine(store, index, delegate, Scorer(clock=lambda: NOW_MS), delegate_delay=0))


class TestSearchChannel:
    """Test sequencing of superseded queries."""

    @pytest.mark.asyncio
    async def test_receives_current_query(self, store, index) -> None:
        channel = await make_channel(store, index)

        channel.submit("budget", 10, False)
        response = await channel.receive()

        assert response.query == "budget"
        assert response.is_finished is True
        assert channel.current_query == "budget"

    @pytest.mark.asyncio
    async def test_stale_responses_discarded(self, store, index) -> None:
        """Should drop responses for a query that has been replaced."""
        channel = await make_channel(store, index)

        first = channel.submit("bud", 10, False)
        second = channel.submit("budget", 10, False)
        await asyncio.gather(first.wait(), second.wait())

        response = await channel.receive()

        assert response.query == "budget"
        assert {r.doc.id for r in response.results.results} == {"a", "b"}

    @pytest.mark.asyncio
    async def test_submit_cancels_previous(self, store, index) -> None:
        """Should cancel the pending delegate query of the previous submission."""
        delegate = FakeDelegate([make_doc("remote", "Budget remote")], delay=0.05)
        channel = await make_channel(store, index, delegate)

        first = channel.submit("bud", 10, True)
        await asyncio.sleep(0.01)
        second = channel.submit("budget", 10, True)
        await asyncio.gather(first.wait(), second.wait())

        assert first.cancelled is True
        assert second.cancelled is False
        local = await channel.receive()
        merged = await channel.receive()
        assert (local.query, local.is_finished) == ("budget", False)
        assert (merged.query, merged.is_finished) == ("budget", True)
        assert "remote" in {r.doc.id for r in merged.results.results}

    @pytest.mark.asyncio
    async def test_cancel(self, store, index) -> None:
        delegate = FakeDelegate([make_doc("remote", "Budget remote")], delay=0.05)
        channel = await make_channel(store, index, delegate)

        handle = channel.submit("budget", 10, True)
        await asyncio.sleep(0.01)
        channel.cancel()
        await handle.wait()

        assert handle.cancelled is True

    @pytest.mark.asyncio
    async def test_errors_raised_for_current_query(self, store, index) -> None:
        channel = await make_channel(store, index)
        store.close()

        channel.submit("budget", 10, False)

        with pytest.raises(StoreError):
            await channel.receive()

    @pytest.mark.asyncio
    async def test_resubmitted_query_drops_earlier_submission(self, store, index) -> None:
        """Should only deliver responses of the latest submission of the same text."""
        delegate = FakeDelegate([make_doc("remote", "Budget remote")], delay=0.05)
        channel = await make_channel(store, index, delegate)

        first = channel.submit("budget", 10, True)
        await asyncio.sleep(0.01)
        second = channel.submit("budget", 10, False)
        await asyncio.gather(first.wait(), second.wait())

        response = await channel.receive()

        assert response.query == "budget"
        assert response.is_finished is True
        assert "remote" not in {r.doc.id for r in response.results.results}
