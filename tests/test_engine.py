"""Tests for the search engine."""

from __future__ import annotations

import asyncio
import logging

import pytest

from cloudfinder.errors import HttpFailure, StoreError
from cloudfinder.index.local_index import LocalIndex
from cloudfinder.models import Contribution, Person
from cloudfinder.search.engine import TOP_PEOPLE, Engine
from cloudfinder.search.scorer import Scorer

from conftest import NOW_MS, FakeDelegate, make_doc


async def seed(store, index: LocalIndex, docs) -> None:
    await store.put_documents(docs)
    for doc in docs:
        index.add(doc)


def make_engine(store, index: LocalIndex, delegate=None) -> Engine:
    return Engine(store, index, delegate, Scorer(clock=lambda: NOW_MS), delegate_delay=0)


def ids(response) -> set[str]:
    return {r.doc.id for r in response.results.results}


class TestLocalSearch:
    """Test searches answered from the local index only."""

    @pytest.mark.asyncio
    async def test_single_finished_response(self, store) -> None:
        index = LocalIndex()
        await seed(store, index, [make_doc("a", "Budget plan"), make_doc("b", "Holiday rota")])
        engine = make_engine(store, index)

        responses = await engine.search("budget", 10)

        assert len(responses) == 1
        assert responses[0].query == "budget"
        assert responses[0].is_finished is True
        assert ids(responses[0]) == {"a"}

    @pytest.mark.asyncio
    async def test_delegate_requested_but_not_configured(self, store) -> None:
        """Should answer locally when no delegate is available."""
        index = LocalIndex()
        await seed(store, index, [make_doc("a", "Budget plan")])

        responses = await make_engine(store, index).search("budget", 10, delegate=True)

        assert [r.is_finished for r in responses] == [True]

    @pytest.mark.asyncio
    async def test_ir_score_carried_into_results(self, store) -> None:
        index = LocalIndex()
        await seed(store, index, [make_doc("a", "Budget plan")])

        responses = await make_engine(store, index).search("budget")
        top = responses[0].results.results[0]

        assert top.intermediate.ir_score == index.search("budget")[0].score

    @pytest.mark.asyncio
    async def test_hits_missing_from_store_are_dropped(self, store) -> None:
        """Should skip index hits with no stored document."""
        index = LocalIndex()
        await seed(store, index, [make_doc("a", "Budget plan")])
        index.add(make_doc("ghost", "Budget ghost"))

        responses = await make_engine(store, index).search("budget")

        assert ids(responses[0]) == {"a"}

    @pytest.mark.asyncio
    async def test_local_failure_reaches_callback(self, store) -> None:
        """Should deliver store errors to the callback and skip the response."""
        index = LocalIndex()
        index.add(make_doc("a", "Budget plan"))
        store.close()
        engine = make_engine(store, index)
        received = []

        handle = engine.query_search("budget", 10, False, lambda e, r: received.append((e, r)))
        await handle.wait()

        assert len(received) == 1
        error, response = received[0]
        assert isinstance(error, StoreError)
        assert response is None
        with pytest.raises(StoreError):
            await engine.search("budget")


class TestDelegateSearch:
    """Test searches that also query the remote delegate."""

    @pytest.mark.asyncio
    async def test_merged_response(self, store) -> None:
        """Should follow up with local and remote results, deduplicated."""
        index = LocalIndex()
        await seed(store, index, [make_doc("A", "Budget one"), make_doc("B", "Budget two")])
        delegate = FakeDelegate([make_doc("B", "Budget two remote"), make_doc("C", "Budget three")])

        responses = await make_engine(store, index, delegate).search("budget", 10, delegate=True)

        assert [r.is_finished for r in responses] == [False, True]
        assert ids(responses[0]) == {"A", "B"}
        assert ids(responses[1]) == {"A", "B", "C"}
        assert len(responses[1].results.results) == 3
        titles = {r.doc.id: r.doc.title for r in responses[1].results.results}
        assert titles["B"] == "Budget two"
        assert delegate.calls == ["budget"]

    @pytest.mark.asyncio
    async def test_cancel_before_delegate_resolves(self, store) -> None:
        """Should stop after the local response when cancelled in time."""
        index = LocalIndex()
        await seed(store, index, [make_doc("A", "Budget one")])
        delegate = FakeDelegate([make_doc("C", "Budget three")], delay=0.05)
        received = []

        handle = make_engine(store, index, delegate).query_search(
            "budget", 10, True, lambda e, r: received.append(r)
        )
        await asyncio.sleep(0.01)
        handle.cancel()
        await handle.wait()

        assert handle.cancelled is True
        assert [r.is_finished for r in received] == [False]

    @pytest.mark.asyncio
    async def test_cancel_after_delegate_resolves(self, store) -> None:
        """Should treat a late cancel as a no-op."""
        index = LocalIndex()
        await seed(store, index, [make_doc("A", "Budget one")])
        delegate = FakeDelegate([make_doc("C", "Budget three")])
        received = []

        handle = make_engine(store, index, delegate).query_search(
            "budget", 10, True, lambda e, r: received.append(r)
        )
        await handle.wait()
        handle.cancel()

        assert handle.done()
        assert handle.cancelled is False
        assert [r.is_finished for r in received] == [False, True]

    @pytest.mark.asyncio
    async def test_transport_failure_finishes_with_local_results(
        self, store, transport_failure
    ) -> None:
        index = LocalIndex()
        await seed(store, index, [make_doc("A", "Budget one")])
        delegate = FakeDelegate(error=transport_failure)

        responses = await make_engine(store, index, delegate).search("budget", 10, delegate=True)

        assert [r.is_finished for r in responses] == [False, True]
        assert ids(responses[1]) == {"A"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [HttpFailure("https://remote.test/search", 500, "boom"), RuntimeError("bad payload")],
    )
    async def test_application_failure_finishes_with_local_results(self, store, error) -> None:
        index = LocalIndex()
        await seed(store, index, [make_doc("A", "Budget one")])
        delegate = FakeDelegate(error=error)

        responses = await make_engine(store, index, delegate).search("budget", 10, delegate=True)

        assert [r.is_finished for r in responses] == [False, True]
        assert ids(responses[1]) == {"A"}

    @pytest.mark.asyncio
    async def test_limit_applies_to_merged_results(self, store) -> None:
        index = LocalIndex()
        await seed(store, index, [make_doc("A", "Budget one")])
        delegate = FakeDelegate([make_doc(str(i), f"Budget {i}") for i in range(5)])

        responses = await make_engine(store, index, delegate).search("budget", 3, delegate=True)

        assert len(responses[1].results.results) == 3
        assert responses[1].results.total_count == 6


class TestPeople:
    """Test contributor ranking."""

    @pytest.mark.asyncio
    async def test_ranked_by_distinct_docs(self, store) -> None:
        ada, bob = Person(id="ada", display_name="Ada"), Person(id="bob", display_name="Bob")
        await store.put_contributions(
            [
                Contribution("d1", bob, 1, 1),
                Contribution("d1", ada, 2, 2),
                Contribution("d1", ada, 3, 3),
                Contribution("d2", ada, 1, 4),
            ]
        )
        engine = make_engine(store, LocalIndex())

        people = await engine.query_people_for_documents(["d1", "d2"])

        assert [p.person.id for p in people] == ["ada", "bob"]
        assert (people[0].doc_count, people[0].contribution_count) == (2, 3)
        assert (people[1].doc_count, people[1].contribution_count) == (1, 1)

    @pytest.mark.asyncio
    async def test_authorless_contributions_ignored(self, store) -> None:
        await store.put_contributions([Contribution("d1", None, 1, 1)])

        people = await make_engine(store, LocalIndex()).query_people_for_documents(["d1"])

        assert people == []

    @pytest.mark.asyncio
    async def test_capped(self, store) -> None:
        await store.put_contributions(
            [Contribution(f"d{i}", Person(id=f"p{i}"), 1, i) for i in range(TOP_PEOPLE + 3)]
        )
        engine = make_engine(store, LocalIndex())

        people = await engine.query_people_for_documents([f"d{i}" for i in range(TOP_PEOPLE + 3)])

        assert len(people) == TOP_PEOPLE
        assert [p.person.id for p in people] == [f"p{i}" for i in range(TOP_PEOPLE)]

    @pytest.mark.asyncio
    async def test_people_attached_to_results(self, store) -> None:
        index = LocalIndex()
        await seed(store, index, [make_doc("A", "Budget one")])
        await store.put_contributions([Contribution("A", Person(id="ada"), 1, 1)])

        responses = await make_engine(store, index).search("budget")

        assert [p.person.id for p in responses[0].results.people_results] == ["ada"]


class TestDiscovery:
    """Test discovery through the engine."""

    @pytest.mark.asyncio
    async def test_query_discovery(self, store) -> None:
        await store.put_documents([make_doc("v", viewed_timestamp=NOW_MS)])

        response = await make_engine(store, LocalIndex()).query_discovery()

        assert [r.doc.id for r in response.my_docs.results] == ["v"]


class TestDebounce:
    """Test cancellation during the delay before the delegate query."""

    @pytest.mark.asyncio
    async def test_cancel_during_delay_skips_delegate(self, store) -> None:
        """Should never call the delegate when cancelled during the debounce."""
        index = LocalIndex()
        await seed(store, index, [make_doc("A", "Budget one")])
        delegate = FakeDelegate([make_doc("C", "Budget three")])
        engine = Engine(store, index, delegate, Scorer(clock=lambda: NOW_MS), delegate_delay=0.2)
        received = []

        handle = engine.query_search("budget", 10, True, lambda e, r: received.append(r))
        while not received:
            await asyncio.sleep(0.005)
        handle.cancel()
        await asyncio.wait_for(handle.wait(), timeout=1)

        assert delegate.calls == []
        assert [r.is_finished for r in received] == [False]

    @pytest.mark.asyncio
    async def test_delegate_called_after_delay(self, store) -> None:
        index = LocalIndex()
        await seed(store, index, [make_doc("A", "Budget one")])
        delegate = FakeDelegate([make_doc("C", "Budget three")])
        engine = Engine(store, index, delegate, Scorer(clock=lambda: NOW_MS), delegate_delay=0.02)

        responses = await engine.search("budget", 10, delegate=True)

        assert delegate.calls == ["budget"]
        assert [r.is_finished for r in responses] == [False, True]


class TestDelegateLogging:
    """Test how delegate failures are logged."""

    @pytest.mark.asyncio
    async def test_transport_failure_logged_without_body(self, store, transport_failure, caplog) -> None:
        index = LocalIndex()
        await seed(store, index, [make_doc("A", "Budget one")])
        engine = make_engine(store, index, FakeDelegate(error=transport_failure))

        with caplog.at_level(logging.DEBUG, logger="cloudfinder.search.engine"):
            await engine.search("budget", 10, delegate=True)

        assert transport_failure.to_display_string() in caplog.text
        assert "offline" not in caplog.text
