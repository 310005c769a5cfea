"""Exception types shared across CloudFinder."""

from __future__ import annotations

import json


class CloudFinderError(Exception):
    """Base class for CloudFinder errors."""


class StoreError(CloudFinderError):
    """The document store failed to read or write."""


class DelegateError(CloudFinderError):
    """The remote delegate answered with data we cannot use."""


class SearchCancelled(CloudFinderError):
    """A cancellation token fired at a suspension point."""


class HttpFailure(CloudFinderError):
    """An HTTP request failed.

    A status of 0 means the request never got an answer (DNS failure,
    offline, connection refused, timeout).
    """

    def __init__(self, url: str, status: int, body: object = "") -> None:
        body_str = json.dumps(body) if isinstance(body, (dict, list)) else str(body)
        super().__init__(f'HTTP request to {url} failed with status {status}: "{body_str}"')
        self.url = url
        self.status = status
        self.body = body

    def to_display_string(self) -> str:
        return f"HTTP request to {self.url} failed with status {self.status}"

    @property
    def transport(self) -> bool:
        return self.status == 0
