"""Text helpers: HTML extraction and tokenization for the local index."""

from __future__ import annotations

import re
from html.parser import HTMLParser
from typing import List

# Splits on whitespace and punctuation, like most full-text tokenizers.
_SPACE_OR_PUNCTUATION = re.compile(r"[\W_]+", re.UNICODE)


class _TextCollector(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.pieces: List[str] = []

    def handle_data(self, data: str) -> None:
        text = data.strip()
        if text:
            self.pieces.append(text)


def html_to_text(html: str) -> str:
    """Extract the text nodes of an HTML document, joined by single spaces."""
    collector = _TextCollector()
    collector.feed(html)
    collector.close()
    return " ".join(collector.pieces)


def tokenize(text: str) -> List[str]:
    """Split text into raw terms."""
    if not text:
        return []
    return [term for term in _SPACE_OR_PUNCTUATION.split(text) if term]
