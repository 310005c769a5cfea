"""Core CloudFinder data models.

Documents, their content and contribution records are written by the
fetch side and are read-only to search and discovery. Timestamps are
integer milliseconds since the Unix epoch.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(slots=True, frozen=True)
class Person:
    """A user of the remote service (author, modifier, sharer)."""

    id: str
    display_name: str = ""
    thumbnail_url: str = ""
    email_address: str = ""
    profile_url: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> Person | None:
        if not data:
            return None
        return cls(
            id=str(data["id"]),
            display_name=data.get("display_name", ""),
            thumbnail_url=data.get("thumbnail_url", ""),
            email_address=data.get("email_address", ""),
            profile_url=data.get("profile_url", ""),
        )


@dataclass(slots=True, frozen=True)
class Location:
    """One element of a document's folder path."""

    id: str
    display_name: str = ""
    link: str = ""
    mime_type: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Location:
        return cls(
            id=str(data["id"]),
            display_name=data.get("display_name", ""),
            link=data.get("link", ""),
            mime_type=data.get("mime_type", ""),
        )


@dataclass(slots=True, frozen=True)
class Document:
    """Metadata for one remote document."""

    id: str
    title: str
    mime_type: str = ""
    creation_timestamp: Optional[int] = None
    modification_timestamp: Optional[int] = None  # modified by anyone
    edited_timestamp: Optional[int] = None  # modified by me
    viewed_timestamp: Optional[int] = None  # viewed by me
    shared_timestamp: Optional[int] = None  # shared with me
    version: int = 0
    creator: Optional[Person] = None
    last_modifier: Optional[Person] = None
    sharer: Optional[Person] = None
    parent_id: str = ""
    link: str = ""
    icon_url: str = ""
    thumbnail_url: str = ""
    location_path: Tuple[Location, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Document:
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            mime_type=data.get("mime_type", ""),
            creation_timestamp=data.get("creation_timestamp"),
            modification_timestamp=data.get("modification_timestamp"),
            edited_timestamp=data.get("edited_timestamp"),
            viewed_timestamp=data.get("viewed_timestamp"),
            shared_timestamp=data.get("shared_timestamp"),
            version=int(data.get("version") or 0),
            creator=Person.from_dict(data.get("creator")),
            last_modifier=Person.from_dict(data.get("last_modifier")),
            sharer=Person.from_dict(data.get("sharer")),
            parent_id=data.get("parent_id", ""),
            link=data.get("link", ""),
            icon_url=data.get("icon_url", ""),
            thumbnail_url=data.get("thumbnail_url", ""),
            location_path=tuple(Location.from_dict(loc) for loc in data.get("location_path") or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class DocumentContent:
    """Fetched text content of a document, one per document id."""

    id: str
    content: str
    mime_type: str = "text/plain"
    version: Optional[int] = None
    modification_timestamp: Optional[int] = None
    fetch_timestamp: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DocumentContent:
        return cls(
            id=str(data["id"]),
            content=data.get("content", ""),
            mime_type=data.get("mime_type", "text/plain"),
            version=data.get("version"),
            modification_timestamp=data.get("modification_timestamp"),
            fetch_timestamp=int(data.get("fetch_timestamp") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class Contribution:
    """One author's revision of one document."""

    doc_id: str
    author: Optional[Person]
    version: Optional[int]
    modification_timestamp: int

    @property
    def key(self) -> str:
        return f"{self.doc_id}:{self.version}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Contribution:
        return cls(
            doc_id=str(data["doc_id"]),
            author=Person.from_dict(data.get("author")),
            version=data.get("version"),
            modification_timestamp=int(data.get("modification_timestamp") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class QueryHit:
    """A local index match for a raw query string."""

    id: str
    score: float


@dataclass(slots=True, frozen=True)
class Intermediate:
    """Scoring components kept for debugging."""

    ir_score: float
    freshness_boost: float


@dataclass(slots=True, frozen=True)
class SearchResult:
    doc: Document
    score: float = -1.0
    intermediate: Optional[Intermediate] = None
    debug_lines: Tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class PersonResult:
    person: Person
    doc_count: int
    contribution_count: int


@dataclass(slots=True, frozen=True)
class SearchResultSet:
    """Ranked results. ``total_count`` is the candidate count before truncation."""

    results: Tuple[SearchResult, ...] = ()
    people_results: Tuple[PersonResult, ...] = ()
    total_count: int = 0
    debug_lines: Tuple[str, ...] = ()
    debug_stats: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class SearchResponse:
    """One (possibly partial) answer to a search query."""

    query: str
    results: SearchResultSet
    is_finished: bool


@dataclass(slots=True, frozen=True)
class DiscoveryResponse:
    my_docs: SearchResultSet
    org_docs: SearchResultSet


def search_result(doc: Document, score: float = -1.0) -> SearchResult:
    """Build an unscored search result for a document."""
    return SearchResult(doc=doc, score=score)


def search_result_set(results: Tuple[SearchResult, ...] | list, total_count: int) -> SearchResultSet:
    return SearchResultSet(results=tuple(results), total_count=total_count)
