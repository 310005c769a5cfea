"""Search and discovery logic.

A search always produces a response from the local index. When asked
to, it also queries the remote delegate and follows up with a second,
merged response. The engine keeps no state between queries: callers
that issue queries in sequence cancel the previous handle themselves
and discard responses whose ``query`` no longer matches their input
(see ``cloudfinder.search.session``).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence

from cloudfinder.errors import HttpFailure, SearchCancelled
from cloudfinder.index.local_index import LocalIndex
from cloudfinder.index.storage import SQLiteDocumentStore
from cloudfinder.models import (
    DiscoveryResponse,
    Person,
    PersonResult,
    SearchResponse,
    SearchResult,
    search_result,
)
from cloudfinder.remote.delegate import DelegateSearch
from cloudfinder.search.discovery import DiscoverySelector
from cloudfinder.search.scorer import Scorer
from cloudfinder.utils.cancellation import CancellationToken

LOGGER = logging.getLogger(__name__)

# Wait before querying the delegate, so fast typing doesn't flood it.
DELEGATE_DELAY = 0.08
# Number of contributors reported with search results.
TOP_PEOPLE = 5

SearchCallback = Callable[[Optional[BaseException], Optional[SearchResponse]], None]


class SearchHandle:
    """Tracks one in-flight search."""

    def __init__(
        self,
        query: str,
        task: asyncio.Task,
        delegate_task: Optional[asyncio.Task],
        token: CancellationToken,
    ) -> None:
        self.query = query
        self._task = task
        self._delegate_task = delegate_task
        self._token = token

    def cancel(self) -> None:
        """Cancel the pending delegate query, if any. A no-op once it has resolved."""
        if self._delegate_task is not None and not self._delegate_task.done():
            LOGGER.debug("Cancelling delegate query [%s]", self.query)
            self._token.cancel()
        else:
            LOGGER.debug("Too late to cancel delegate query [%s]", self.query)

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> None:
        """Wait until every response for this search has been delivered."""
        await self._task


class Engine:
    def __init__(
        self,
        store: SQLiteDocumentStore,
        local_index: LocalIndex,
        delegate: Optional[DelegateSearch],
        scorer: Scorer,
        *,
        delegate_delay: float = DELEGATE_DELAY,
    ) -> None:
        self.store = store
        self.local_index = local_index
        self.delegate = delegate
        self.scorer = scorer
        self.delegate_delay = delegate_delay
        self.discovery = DiscoverySelector(store, scorer)

    async def query_discovery(self) -> DiscoveryResponse:
        return await self.discovery.select()

    def query_search(
        self,
        q: str,
        limit: Optional[int],
        delegate: bool,
        callback: SearchCallback,
    ) -> SearchHandle:
        """Start a search, delivering responses to ``callback(error, response)``.

        The callback may be invoked twice: once with local results and, if
        ``delegate`` is set, once more with results merged from the remote
        delegate (``is_finished`` marks the last one). Errors of the local
        phase are delivered through the callback; delegate failures are
        logged and absorbed. Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        token = CancellationToken()
        delegate_task = None
        if delegate and self.delegate is not None:
            delegate_task = loop.create_task(self._query_delegate(q, limit, token))
        elif delegate:
            LOGGER.debug("No delegate configured, searching locally only")
        task = loop.create_task(self._run_search(q, limit, delegate_task, token, callback))
        return SearchHandle(q, task, delegate_task, token)

    async def search(
        self, q: str, limit: Optional[int] = None, delegate: bool = False
    ) -> List[SearchResponse]:
        """Run a search to completion and return every response, in order."""
        responses: List[SearchResponse] = []
        errors: List[BaseException] = []

        def collect(error: Optional[BaseException], response: Optional[SearchResponse]) -> None:
            if error is not None:
                errors.append(error)
            elif response is not None:
                responses.append(response)

        await self.query_search(q, limit, delegate, collect).wait()
        if errors:
            raise errors[0]
        return responses

    async def _run_search(
        self,
        q: str,
        limit: Optional[int],
        delegate_task: Optional[asyncio.Task],
        token: CancellationToken,
        callback: SearchCallback,
    ) -> None:
        try:
            hits = self.local_index.search(q)
            hit_ids = list(dict.fromkeys(hit.id for hit in hits))
            id_to_score = {hit.id: hit.score for hit in hits}
            docs, people = await asyncio.gather(
                self.store.get_documents(hit_ids),
                self.query_people_for_documents(hit_ids),
            )
        except Exception as exc:
            LOGGER.debug("Local search for [%s] failed: %s", q, exc)
            token.cancel()
            callback(exc, None)
            if delegate_task is not None:
                await delegate_task
            return

        local_results = [search_result(doc, id_to_score.get(doc.id, -1.0)) for doc in docs]
        callback(
            None,
            SearchResponse(
                query=q,
                results=self.scorer.rerank(local_results, people, limit),
                is_finished=delegate_task is None,
            ),
        )
        if delegate_task is None:
            return

        remote_results = await delegate_task
        if remote_results is None:
            return

        # Local results win where both sides found a document.
        known_ids = set(hit_ids)
        full_results = local_results + [r for r in remote_results if r.doc.id not in known_ids]
        try:
            full_people = await self.query_people_for_documents([r.doc.id for r in full_results])
        except Exception:
            LOGGER.exception("Failed to find contributors for delegate results of [%s]", q)
            full_people = people
        callback(
            None,
            SearchResponse(
                query=q,
                results=self.scorer.rerank(full_results, full_people, limit),
                is_finished=True,
            ),
        )

    async def _query_delegate(
        self, q: str, limit: Optional[int], token: CancellationToken
    ) -> Optional[List[SearchResult]]:
        """Query the delegate. Returns None if cancelled, and no results on failure."""
        try:
            await token.sleep(self.delegate_delay)
            remote = await self.delegate.search(q, limit, token=token)
            token.raise_if_cancelled()
        except SearchCancelled:
            LOGGER.debug("Delegate query [%s] cancelled", q)
            return None
        except HttpFailure as exc:
            if exc.transport:
                LOGGER.debug("Search failed in transport: %s", exc.to_display_string())
            else:
                LOGGER.error("Failure in delegate search: %s", exc)
            return []
        except Exception:
            LOGGER.exception("Failure in delegate search")
            return []
        return list(remote.results)

    async def query_people_for_documents(self, doc_ids: Sequence[str]) -> List[PersonResult]:
        """Rank the authors of the given documents by how many of them they touched."""
        contribs = await self.store.find_contributions_to_docs(doc_ids)
        authors: Dict[str, Person] = {}
        docs_by_author: Dict[str, List[str]] = {}
        for contrib in contribs:
            if contrib.author is None:
                continue
            authors[contrib.author.id] = contrib.author
            docs_by_author.setdefault(contrib.author.id, []).append(contrib.doc_id)

        ranked = sorted(docs_by_author.items(), key=lambda item: len(set(item[1])), reverse=True)
        return [
            PersonResult(
                person=authors[author_id],
                doc_count=len(set(author_docs)),
                contribution_count=len(author_docs),
            )
            for author_id, author_docs in ranked[:TOP_PEOPLE]
        ]
