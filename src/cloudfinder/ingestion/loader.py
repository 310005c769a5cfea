"""Loading exported document snapshots into the store and index.

A snapshot is a JSON file with the shape::

    {"documents": [...], "contents": [...], "contributions": [...]}

where each entry matches the ``from_dict`` form of the corresponding
model.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from cloudfinder.errors import StoreError
from cloudfinder.index.pipeline import Pipeline
from cloudfinder.index.storage import SQLiteDocumentStore
from cloudfinder.models import Contribution, Document, DocumentContent
from cloudfinder.utils.batch import batched

LOGGER = logging.getLogger(__name__)

CONTENT_BATCH_SIZE = 10


@dataclass(slots=True)
class Snapshot:
    documents: List[Document] = field(default_factory=list)
    contents: List[DocumentContent] = field(default_factory=list)
    contributions: List[Contribution] = field(default_factory=list)


def load_snapshot(path: Path) -> Snapshot:
    """Parse a snapshot file."""
    with Path(path).open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"Snapshot {path} must contain a JSON object")
    return Snapshot(
        documents=[Document.from_dict(d) for d in data.get("documents", [])],
        contents=[DocumentContent.from_dict(c) for c in data.get("contents", [])],
        contributions=[Contribution.from_dict(c) for c in data.get("contributions", [])],
    )


def has_new_content(doc: Document, existing: Optional[DocumentContent]) -> bool:
    """Whether content for ``doc`` is newer than what is already stored."""
    return not (existing is not None and existing.version and existing.version >= (doc.version or 0))


def is_older_content(content: DocumentContent, existing: Optional[DocumentContent]) -> bool:
    """Whether ``content`` predates the stored content for the same document."""
    return existing is not None and (content.version or 0) < (existing.version or 0)


@dataclass(slots=True)
class IngestStats:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    contents_stored: int = 0
    contents_skipped: int = 0
    processed_ids: list[str] = field(default_factory=list)

    def increment(self, status: str, doc_id: str) -> None:
        if status == "inserted":
            self.inserted += 1
        elif status == "updated":
            self.updated += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
        self.processed_ids.append(doc_id)


class Ingestor:
    """Writes snapshots to the document store and refreshes the local index."""

    def __init__(self, store: SQLiteDocumentStore, pipeline: Pipeline) -> None:
        self.store = store
        self.pipeline = pipeline

    async def ingest(self, snapshot: Snapshot) -> IngestStats:
        stats = IngestStats()
        docs = {d.id: d for d in snapshot.documents}
        existing = {d.id: d for d in await self.store.get_documents(list(docs))}

        accepted: List[Document] = []
        for doc in docs.values():
            previous = existing.get(doc.id)
            if previous is None:
                status = "inserted"
            elif doc.version >= previous.version:
                status = "updated"
            else:
                status = "skipped"
            if status != "skipped":
                accepted.append(doc)
            stats.increment(status, doc.id)
        await self.store.put_documents(accepted)

        await self._store_contents(snapshot.contents, stats)

        if snapshot.contributions:
            await self.store.put_contributions(snapshot.contributions)

        touched = [d.id for d in accepted]
        touched.extend(c.id for c in snapshot.contents if c.id not in docs)
        await self.pipeline.reindex_doc_ids(list(dict.fromkeys(touched)), full_text=True)
        LOGGER.info(
            "Ingested %d documents (%d inserted, %d updated, %d skipped)",
            len(docs),
            stats.inserted,
            stats.updated,
            stats.skipped,
        )
        return stats

    async def _store_contents(self, contents: List[DocumentContent], stats: IngestStats) -> None:
        ids = [c.id for c in contents]
        docs = {d.id: d for d in await self.store.get_documents(ids)}
        existing = {c.id: c for c in await self.store.get_document_contents(ids)}

        for batch in batched(contents, CONTENT_BATCH_SIZE):
            for content in batch:
                doc = docs.get(content.id)
                if doc is None:
                    LOGGER.warning("Skipping content for unknown document %s", content.id)
                    stats.contents_skipped += 1
                    continue
                stored = existing.get(content.id)
                if not has_new_content(doc, stored) or is_older_content(content, stored):
                    stats.contents_skipped += 1
                    continue
                try:
                    await self.store.put_document_content(content)
                except StoreError as exc:
                    LOGGER.error("Failed to store contents of %s: %s", content.id, exc)
                    stats.failed += 1
                    continue
                existing[content.id] = content
                stats.contents_stored += 1
