"""In-memory full-text index over document titles and content.

Backed by an SQLite FTS5 table with the porter stemmer; ranking is
FTS5's ``bm25()`` with title matches weighted above content matches.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Dict, List, Optional, Sequence

from cloudfinder.models import Document, DocumentContent, QueryHit
from cloudfinder.utils.text import html_to_text, tokenize

LOGGER = logging.getLogger(__name__)

# Title matches dominate body matches.
TITLE_WEIGHT = 10.0
CONTENT_WEIGHT = 1.0
# Documents added between yields to the event loop in add_many().
ADD_CHUNK_SIZE = 40

_SCHEMA = """
CREATE VIRTUAL TABLE docs_fts USING fts5(
    id UNINDEXED,
    title,
    content,
    tokenize='porter unicode61'
)
"""


def build_match_query(query: str) -> str:
    """Turn free text into an FTS5 expression matching any of its terms.

    Each term is quoted, so FTS5 operators in user input are searched as
    plain words.
    """
    terms = dict.fromkeys(term.lower() for term in tokenize(query))
    return " OR ".join(f'"{term}"' for term in terms)


class LocalIndex:
    """Full-text index keyed by exact document id.

    Adding a document that is already present replaces it.
    """

    def __init__(self) -> None:
        self._conn = sqlite3.connect(":memory:", check_same_thread=False)
        self._conn.execute(_SCHEMA)
        # exact document id -> FTS rowid
        self._rowids: Dict[str, int] = {}
        self._next_rowid = 1

    def clear(self) -> None:
        self._conn.execute("DELETE FROM docs_fts")
        self._conn.commit()
        self._rowids.clear()

    def close(self) -> None:
        self._conn.close()

    def __len__(self) -> int:
        return len(self._rowids)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._rowids

    def add(self, doc: Document, content: Optional[DocumentContent] = None) -> None:
        """Add or update a document, indexing its content when given."""
        self._delete(doc.id)
        rowid = self._next_rowid
        self._next_rowid += 1
        self._conn.execute(
            "INSERT INTO docs_fts(rowid, id, title, content) VALUES (?, ?, ?, ?)",
            (rowid, doc.id, doc.title or "", _extract_text(content) or ""),
        )
        self._conn.commit()
        self._rowids[doc.id] = rowid

    async def add_many(
        self, docs: Sequence[Document], contents: Sequence[Optional[DocumentContent]] = ()
    ) -> None:
        """Add or update many documents. ``contents[i]`` pairs with ``docs[i]``; missing entries index the title only."""
        padded = list(contents) + [None] * (len(docs) - len(contents))
        for i, (doc, content) in enumerate(zip(docs, padded)):
            self.add(doc, content)
            if (i + 1) % ADD_CHUNK_SIZE == 0:
                await asyncio.sleep(0)

    def remove(self, doc_id: str) -> bool:
        """Remove a document by exact id. Returns whether it was present."""
        removed = self._delete(doc_id)
        self._conn.commit()
        return removed

    def search(self, query: str) -> List[QueryHit]:
        """Return every matching document, best match first."""
        match = build_match_query(query)
        if not match or not self._rowids:
            return []
        rows = self._conn.execute(
            """
            SELECT id, bm25(docs_fts, 0.0, ?, ?) AS rank
            FROM docs_fts
            WHERE docs_fts MATCH ?
            ORDER BY rank, rowid
            """,
            (TITLE_WEIGHT, CONTENT_WEIGHT, match),
        ).fetchall()
        # bm25() is lower-is-better; hits carry higher-is-better scores.
        return [QueryHit(id=doc_id, score=-rank) for doc_id, rank in rows]

    def _delete(self, doc_id: str) -> bool:
        rowid = self._rowids.pop(doc_id, None)
        if rowid is None:
            return False
        self._conn.execute("DELETE FROM docs_fts WHERE rowid = ?", (rowid,))
        return True


def _extract_text(content: Optional[DocumentContent]) -> Optional[str]:
    if content is None or not content.content:
        return None
    if content.mime_type == "text/html":
        return html_to_text(content.content)
    return content.content
