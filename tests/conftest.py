"""Shared fixtures for CloudFinder tests."""

from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest

from cloudfinder.errors import HttpFailure
from cloudfinder.index.storage import SQLiteDocumentStore
from cloudfinder.models import Document, SearchResult, SearchResultSet, search_result_set
from cloudfinder.utils.cancellation import CancellationToken

DAY_MS = 24 * 60 * 60 * 1000
NOW_MS = 1_700_000_000_000


def make_doc(doc_id: str, title: str = "", **fields) -> Document:
    return Document(id=doc_id, title=title or f"Document {doc_id}", **fields)


class FakeDelegate:
    """Remote delegate returning canned results, optionally after a delay or with an error."""

    def __init__(
        self,
        docs: Optional[List[Document]] = None,
        *,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ) -> None:
        self.docs = docs or []
        self.delay = delay
        self.error = error
        self.calls: List[str] = []

    async def search(
        self, query: str, limit: Optional[int] = None, *, token: Optional[CancellationToken] = None
    ) -> SearchResultSet:
        self.calls.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return search_result_set([SearchResult(doc=d) for d in self.docs], len(self.docs))


@pytest.fixture
def store(tmp_path):
    """A document store in a temporary database."""
    store = SQLiteDocumentStore(tmp_path / "test.db")
    yield store
    store.close()


@pytest.fixture
def transport_failure() -> HttpFailure:
    return HttpFailure("https://remote.test/search", 0, "offline")
