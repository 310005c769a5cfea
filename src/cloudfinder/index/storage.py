"""SQLite persistence for documents, content and contributions."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager, suppress
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator, List, Sequence, TypeVar

from cloudfinder.errors import StoreError
from cloudfinder.models import Contribution, Document, DocumentContent
from cloudfinder.utils.batch import batched

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# Stay well below SQLite's bound-parameter limit.
_ID_BATCH_SIZE = 500


class Index(str, Enum):
    """Timestamp indexes over the documents table."""

    CREATED = "creation_timestamp"
    MODIFIED = "modification_timestamp"
    MODIFIED_BY_ME = "edited_timestamp"
    VIEWED = "viewed_timestamp"


class Direction(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class SQLiteDocumentStore:
    """Persistence layer for the local mirror of remote documents.

    All public operations are coroutines and raise ``StoreError`` on
    any database failure. SQL runs in a worker thread; one lock
    serializes access to the shared connection.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._ensure_schema()
        except sqlite3.Error as exc:
            raise StoreError(f"Unable to open document store at {db_path}: {exc}") from exc

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as exc:
                with suppress(sqlite3.Error):
                    self._conn.rollback()
                raise StoreError(str(exc)) from exc
            except Exception:
                self._conn.rollback()
                raise

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(func, *args)

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    creation_timestamp INTEGER,
                    modification_timestamp INTEGER,
                    edited_timestamp INTEGER,
                    viewed_timestamp INTEGER,
                    version INTEGER NOT NULL DEFAULT 0,
                    data TEXT NOT NULL
                )
                """
            )
            for index in Index:
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_documents_{index.value} ON documents({index.value})"
                )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS contents (
                    id TEXT PRIMARY KEY,
                    version INTEGER,
                    data TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS contributions (
                    key TEXT PRIMARY KEY,
                    doc_id TEXT NOT NULL,
                    modification_timestamp INTEGER,
                    data TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_contributions_doc_id ON contributions(doc_id)"
            )

    # Documents

    async def put_document(self, doc: Document) -> None:
        await self.put_documents([doc])

    async def put_documents(self, docs: Sequence[Document]) -> None:
        """Store documents. A stored document is only replaced by one with an equal or newer version."""
        await self._run(self._put_documents, list(docs))

    def _put_documents(self, docs: List[Document]) -> None:
        with self.transaction() as conn:
            conn.executemany(
                """
                INSERT INTO documents(id, creation_timestamp, modification_timestamp,
                                      edited_timestamp, viewed_timestamp, version, data)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    creation_timestamp = excluded.creation_timestamp,
                    modification_timestamp = excluded.modification_timestamp,
                    edited_timestamp = excluded.edited_timestamp,
                    viewed_timestamp = excluded.viewed_timestamp,
                    version = excluded.version,
                    data = excluded.data
                WHERE excluded.version >= documents.version
                """,
                [
                    (
                        doc.id,
                        doc.creation_timestamp,
                        doc.modification_timestamp,
                        doc.edited_timestamp,
                        doc.viewed_timestamp,
                        doc.version,
                        json.dumps(doc.to_dict(), ensure_ascii=True),
                    )
                    for doc in docs
                ],
            )

    async def get_document(self, doc_id: str) -> Document | None:
        docs = await self.get_documents([doc_id])
        return docs[0] if docs else None

    async def get_documents(self, ids: Sequence[str]) -> List[Document]:
        """Fetch documents in the order of ``ids``, skipping unknown ids."""
        return await self._run(self._get_documents, list(ids))

    def _get_documents(self, ids: List[str]) -> List[Document]:
        found = {}
        with self._reading() as conn:
            for batch in batched(ids, _ID_BATCH_SIZE):
                placeholders = ",".join("?" * len(batch))
                rows = conn.execute(
                    f"SELECT id, data FROM documents WHERE id IN ({placeholders})", tuple(batch)
                ).fetchall()
                for row in rows:
                    found[row["id"]] = Document.from_dict(json.loads(row["data"]))
        return [found[doc_id] for doc_id in dict.fromkeys(ids) if doc_id in found]

    async def list_documents(
        self,
        limit: int | None,
        index: Index | None = None,
        direction: Direction = Direction.ASC,
    ) -> List[Document]:
        """List documents ordered by a timestamp index.

        Documents without a value for the index are not part of it and
        are not listed.
        """
        order = "DESC" if Direction(direction) is Direction.DESC else "ASC"
        if index is None:
            sql = f"SELECT data FROM documents ORDER BY id {order}"
        else:
            column = Index(index).value
            sql = (
                f"SELECT data FROM documents WHERE {column} IS NOT NULL "
                f"ORDER BY {column} {order}, id {order}"
            )
        params: tuple = ()
        if limit:
            sql += " LIMIT ?"
            params = (int(limit),)
        return await self._run(self._query_documents, sql, params)

    def _query_documents(self, sql: str, params: tuple) -> List[Document]:
        with self._reading() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Document.from_dict(json.loads(row["data"])) for row in rows]

    async def count_documents(self) -> int:
        return await self._run(self._count_documents)

    def _count_documents(self) -> int:
        with self._reading() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0])

    # Contents

    async def put_document_content(self, content: DocumentContent) -> None:
        """Store content unless a newer version of it is already stored."""
        await self._run(self._put_document_content, content)

    def _put_document_content(self, content: DocumentContent) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO contents(id, version, data) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    version = excluded.version,
                    data = excluded.data
                WHERE COALESCE(excluded.version, 0) >= COALESCE(contents.version, 0)
                """,
                (content.id, content.version, json.dumps(content.to_dict(), ensure_ascii=True)),
            )

    async def get_document_content(self, doc_id: str) -> DocumentContent | None:
        contents = await self.get_document_contents([doc_id])
        return contents[0] if contents else None

    async def get_document_contents(self, ids: Sequence[str]) -> List[DocumentContent]:
        return await self._run(self._get_document_contents, list(ids))

    def _get_document_contents(self, ids: List[str]) -> List[DocumentContent]:
        found = {}
        with self._reading() as conn:
            for batch in batched(ids, _ID_BATCH_SIZE):
                placeholders = ",".join("?" * len(batch))
                rows = conn.execute(
                    f"SELECT id, data FROM contents WHERE id IN ({placeholders})", tuple(batch)
                ).fetchall()
                for row in rows:
                    found[row["id"]] = DocumentContent.from_dict(json.loads(row["data"]))
        return [found[doc_id] for doc_id in dict.fromkeys(ids) if doc_id in found]

    # Contributions

    async def put_contributions(self, contribs: Sequence[Contribution]) -> None:
        await self._run(self._put_contributions, list(contribs))

    def _put_contributions(self, contribs: List[Contribution]) -> None:
        with self.transaction() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO contributions(key, doc_id, modification_timestamp, data)
                VALUES (?, ?, ?, ?)
                """,
                [
                    (
                        c.key,
                        c.doc_id,
                        c.modification_timestamp,
                        json.dumps(c.to_dict(), ensure_ascii=True),
                    )
                    for c in contribs
                ],
            )

    async def find_contributions_to_docs(self, doc_ids: Sequence[str]) -> List[Contribution]:
        return await self._run(self._find_contributions_to_docs, list(dict.fromkeys(doc_ids)))

    def _find_contributions_to_docs(self, doc_ids: List[str]) -> List[Contribution]:
        contribs: List[Contribution] = []
        with self._reading() as conn:
            for batch in batched(doc_ids, _ID_BATCH_SIZE):
                placeholders = ",".join("?" * len(batch))
                rows = conn.execute(
                    f"SELECT data FROM contributions WHERE doc_id IN ({placeholders}) ORDER BY rowid",
                    tuple(batch),
                ).fetchall()
                contribs.extend(Contribution.from_dict(json.loads(row["data"])) for row in rows)
        return contribs

    async def clear(self) -> None:
        await self._run(self._clear)
        LOGGER.info("Document store cleared")

    def _clear(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM documents")
            conn.execute("DELETE FROM contents")
            conn.execute("DELETE FROM contributions")
