"""Loads stored documents into the local index."""

from __future__ import annotations

import logging
import time
from typing import Sequence

from cloudfinder.config import DEFAULT_FULLTEXT_COUNT, DEFAULT_TITLE_COUNT
from cloudfinder.index.local_index import LocalIndex
from cloudfinder.index.storage import Direction, Index, SQLiteDocumentStore
from cloudfinder.models import Document

LOGGER = logging.getLogger(__name__)


class Pipeline:
    """Coordinates the document store and the local index.

    The most recently modified ``fulltext_count`` documents are indexed
    with their content, the next ``title_count`` by title only.
    """

    def __init__(
        self,
        store: SQLiteDocumentStore,
        index: LocalIndex | None = None,
        *,
        title_count: int = DEFAULT_TITLE_COUNT,
        fulltext_count: int = DEFAULT_FULLTEXT_COUNT,
    ) -> None:
        self.store = store
        self.index = index if index is not None else LocalIndex()
        self.title_count = title_count
        self.fulltext_count = fulltext_count

    def clear(self) -> None:
        LOGGER.info("Dropping index")
        self.index.clear()

    async def reindex_doc_ids(self, ids: Sequence[str], *, full_text: bool = False) -> int:
        """Re-add the given documents to the index. Returns the number indexed."""
        LOGGER.info("Reindexing %d docs", len(ids))
        docs = await self.store.get_documents(ids)
        if full_text:
            await self._index_full_text(docs)
        else:
            await self._index_title(docs)
        LOGGER.info("Reindexing done")
        return len(docs)

    async def reload_index(self) -> int:
        """Rebuild the index from the store. Returns the number of documents indexed."""
        LOGGER.info("Reloading local index")
        self.index.clear()
        begin = time.perf_counter()
        docs = await self.store.list_documents(
            self.title_count + self.fulltext_count, Index.MODIFIED, Direction.DESC
        )
        LOGGER.debug("Loaded %d documents from store", len(docs))
        try:
            await self._index_full_text(docs[: self.fulltext_count])
        finally:
            await self._index_title(docs[self.fulltext_count :])
        LOGGER.info(
            "Local index constructed in %d ms", int((time.perf_counter() - begin) * 1000)
        )
        return len(docs)

    async def _index_full_text(self, docs: Sequence[Document]) -> None:
        LOGGER.debug("Indexing fulltext of %d documents", len(docs))
        contents = await self.store.get_document_contents([d.id for d in docs])
        content_by_id = {c.id: c for c in contents}
        await self.index.add_many(docs, [content_by_id.get(d.id) for d in docs])

    async def _index_title(self, docs: Sequence[Document]) -> None:
        LOGGER.debug("Indexing title of %d documents", len(docs))
        await self.index.add_many(docs)
