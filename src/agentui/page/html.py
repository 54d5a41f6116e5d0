"""Build page documents from HTML markup."""

from __future__ import annotations

from html.parser import HTMLParser
from typing import List, Optional, Tuple

from agentui.page.dom import Document, Element

VOID_ELEMENTS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "source", "track", "wbr",
})


class _DocumentBuilder(HTMLParser):
    def __init__(self, document: Document) -> None:
        super().__init__(convert_charrefs=True)
        self.document = document
        self.stack: List[Element] = [document.body]

    @property
    def current(self) -> Element:
        return self.stack[-1]

    def handle_starttag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        attributes = {name: ("" if value is None else value) for name, value in attrs}
        if tag == "html":
            self._merge(self.document.document_element, attributes)
            self.stack = [self.document.body]
            return
        if tag in ("head", "body"):
            target = self.document.head if tag == "head" else self.document.body
            self._merge(target, attributes)
            self.stack = [target]
            return

        element = self.document.create_element(tag, attributes)
        self.current.append_child(element)
        if tag not in VOID_ELEMENTS:
            self.stack.append(element)

    def handle_startendtag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        self.handle_starttag(tag, attrs)
        if tag not in VOID_ELEMENTS and tag not in ("html", "head", "body"):
            self.stack.pop()

    def handle_endtag(self, tag: str) -> None:
        if tag in ("html", "head", "body"):
            return
        for index in range(len(self.stack) - 1, 0, -1):
            if self.stack[index].tag_name == tag:
                del self.stack[index:]
                return

    def handle_data(self, data: str) -> None:
        text = data.strip()
        if not text:
            return
        element = self.current
        element.text = f"{element.text} {text}".strip() if element.text else text

    @staticmethod
    def _merge(element: Element, attributes: dict) -> None:
        for name, value in attributes.items():
            element.set_attribute(name, value)


def load_html(markup: str, url: str = "http://localhost/") -> Document:
    """Parse ``markup`` into a new :class:`Document` at ``url``.

    Fragments without ``<html>``/``<body>`` are placed inside ``<body>``.
    """
    document = Document(url=url)
    builder = _DocumentBuilder(document)
    builder.feed(markup)
    builder.close()
    return document
