"""Remote search services queried as a supplement to the local index."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from cloudfinder.errors import DelegateError, HttpFailure
from cloudfinder.models import Document, SearchResult, SearchResultSet, search_result_set
from cloudfinder.utils.cancellation import CancellationToken

LOGGER = logging.getLogger(__name__)

DEFAULT_LIMIT = 30


class DelegateSearch(Protocol):
    """A remote service with its own search interface."""

    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        *,
        token: Optional[CancellationToken] = None,
    ) -> SearchResultSet: ...


class HttpDelegate:
    """Queries a JSON search endpoint: ``GET {base_url}/search?q=...&limit=...``.

    The endpoint answers ``{"results": [{"doc": {...}, "score": 0.3}, ...]}``.
    Failures surface as ``HttpFailure`` (status 0 when the server could not
    be reached) or ``DelegateError`` for malformed answers.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        *,
        token: Optional[CancellationToken] = None,
    ) -> SearchResultSet:
        url = f"{self.base_url}/search"
        params = {"q": query.strip(), "limit": limit or DEFAULT_LIMIT}
        if token is not None:
            token.raise_if_cancelled()

        try:
            response = await self._client.get(url, params=params)
        except httpx.TransportError as exc:
            raise HttpFailure(url, 0, str(exc)) from exc

        if token is not None:
            token.raise_if_cancelled()
        if response.status_code >= 400:
            raise HttpFailure(url, response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError as exc:
            raise DelegateError(f"Invalid JSON from {url}: {exc}") from exc
        return parse_result_set(payload)


def parse_result_set(payload: Dict[str, Any]) -> SearchResultSet:
    """Decode a remote result payload. Unscored results get a score of -1."""
    try:
        results = [
            SearchResult(
                doc=Document.from_dict(item["doc"]),
                score=-1.0 if item.get("score") is None else float(item["score"]),
            )
            for item in payload["results"]
        ]
    except (KeyError, TypeError, ValueError) as exc:
        raise DelegateError(f"Malformed search results: {exc}") from exc
    return search_result_set(results, int(payload.get("total_count", len(results))))
