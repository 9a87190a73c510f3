"""The live page: a parsed HTML tree and the location it was loaded from."""

from __future__ import annotations

from typing import TYPE_CHECKING

from selectolax.lexbor import LexborHTMLParser

if TYPE_CHECKING:
    from selectolax.lexbor import LexborNode


class PageDocument:
    """Mutable page state shared by the session and the painter.

    Attributes:
        tree: Parsed document. Replaced wholesale by ``replace_content``.
        url: Current location, including any fragment.
    """

    def __init__(self, tree: LexborHTMLParser, url: str) -> None:
        self.tree = tree
        self.url = url

    @classmethod
    def from_html(cls, html: str, url: str) -> PageDocument:
        return cls(LexborHTMLParser(html), url)

    @property
    def content_root(self) -> LexborNode:
        """The ``<body>`` element; offsets are relative to its text."""
        body = self.tree.body
        if body is None:
            msg = "document has no <body>"
            raise ValueError(msg)
        return body

    def navigate(self, url: str, html: str | None = None) -> None:
        """Move to a new location, optionally re-rendering the content."""
        self.url = url
        if html is not None:
            self.replace_content(html)

    def replace_content(self, html: str) -> None:
        """Swap in freshly rendered markup, discarding any highlights."""
        self.tree = LexborHTMLParser(html)

    def serialize(self) -> str:
        return self.tree.html or ""
