"""Selection of "likely relevant now" documents, without a query."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List

from cloudfinder.index.storage import Direction, Index, SQLiteDocumentStore
from cloudfinder.models import DiscoveryResponse, Document, search_result
from cloudfinder.search.scorer import Scorer

LOGGER = logging.getLogger(__name__)

# Maximum number of discovery results.
DISCO_RESULT_LIMIT = 4
# Minimum number of "viewed by me" results included in discovery results.
MIN_VIEWED_INCLUDED = 2
# Candidates read from the edited-by-me and modified indexes.
CANDIDATE_LIMIT = 100
# A timestamp a long way from now (~ year 2100).
FAR_FUTURE_TIMESTAMP = 4000111000111


def recency_key(doc: Document) -> int:
    """Order by view time if known, else by modification time.

    Every modification-only key sorts before (older than) every view key.
    """
    return doc.viewed_timestamp or ((doc.modification_timestamp or 0) - FAR_FUTURE_TIMESTAMP)


def select_my_docs(viewed: List[Document], edited: List[Document]) -> Dict[str, Document]:
    """Build the "my documents" set from recently viewed and edited-by-me docs."""
    # Guarantee the most recently viewed docs, so idle users still see something.
    included: Dict[str, Document] = {}
    for doc in viewed[:MIN_VIEWED_INCLUDED]:
        included[doc.id] = doc

    candidates = sorted(
        (d for d in edited if d.id not in included), key=recency_key, reverse=True
    )
    for doc in candidates[: max(DISCO_RESULT_LIMIT - len(included), 0)]:
        included[doc.id] = doc

    for doc in viewed[MIN_VIEWED_INCLUDED:]:
        if len(included) >= DISCO_RESULT_LIMIT:
            break
        included.setdefault(doc.id, doc)
    return included


def select_org_docs(modified: List[Document], my_docs: Dict[str, Document]) -> List[Document]:
    """Recently modified docs I never edited, excluding anything already in my docs."""
    return [d for d in modified if not d.edited_timestamp and d.id not in my_docs][:DISCO_RESULT_LIMIT]


class DiscoverySelector:
    def __init__(self, store: SQLiteDocumentStore, scorer: Scorer) -> None:
        self.store = store
        self.scorer = scorer

    async def select(self) -> DiscoveryResponse:
        viewed, edited, modified = await asyncio.gather(
            self.store.list_documents(DISCO_RESULT_LIMIT, Index.VIEWED, Direction.DESC),
            self.store.list_documents(CANDIDATE_LIMIT, Index.MODIFIED_BY_ME, Direction.DESC),
            self.store.list_documents(CANDIDATE_LIMIT, Index.MODIFIED, Direction.DESC),
        )
        LOGGER.debug(
            "Building discovery result from %d viewed and %d edited docs", len(viewed), len(edited)
        )
        my_docs = select_my_docs(viewed, edited)
        org_docs = select_org_docs(modified, my_docs)

        return DiscoveryResponse(
            my_docs=self.scorer.rerank(
                [search_result(d) for d in my_docs.values()], [], DISCO_RESULT_LIMIT
            ),
            org_docs=self.scorer.rerank([search_result(d) for d in org_docs], [], DISCO_RESULT_LIMIT),
        )
