"""Modal open/close with reversible accessibility marking.

Opening a modal marks every top-level sibling (body children that do
not contain the modal) ``aria-hidden="true"`` and ``inert``. The
controller records the prior value of every attribute it touches so
closing restores exactly what was there before, and returns focus to
the element that had it when the modal opened.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from agentui.page.dom import Document, Element

logger = logging.getLogger(__name__)


@dataclass
class _ModalRecord:
    """Attribute changes made while opening one modal."""
    changes: List[Tuple[Element, str, Optional[str]]] = field(default_factory=list)
    previous_focus: Optional[Element] = None

    def touched(self, element: Element, name: str) -> bool:
        return any(el is element and attr == name for el, attr, _ in self.changes)


def first_focusable(root: Element) -> Optional[Element]:
    """First focusable descendant of ``root`` in document order."""
    for element in root.iter_descendants():
        if element.is_focusable and element.get_attribute("tabindex") != "-1":
            return element
    return None


class ModalController:
    """Opens and closes modals on one document."""

    def __init__(self, document: Document) -> None:
        self.document = document
        self._records: Dict[int, _ModalRecord] = {}

    def is_open(self, modal: Element) -> bool:
        return id(modal) in self._records

    def _set(self, record: _ModalRecord, element: Element, name: str, value: Optional[str]) -> None:
        if not record.touched(element, name):
            record.changes.append((element, name, element.get_attribute(name)))
        if value is None:
            element.remove_attribute(name)
        else:
            element.set_attribute(name, value)

    def _top_level(self, modal: Element) -> Optional[Element]:
        """The body child that is or contains ``modal``."""
        node: Optional[Element] = modal
        while node is not None and node.parent is not self.document.body:
            node = node.parent
        return node

    def open(self, modal: Element) -> None:
        """Show ``modal``, isolate it from the rest of the page and focus it."""
        record = self._records.get(id(modal))
        if record is None:
            active = self.document.active_element
            record = _ModalRecord(
                previous_focus=active if active is not self.document.body else None
            )
            self._records[id(modal)] = record

        if modal.has_attribute("hidden"):
            self._set(record, modal, "hidden", None)
        if modal.inline_style.get("display") == "none":
            remaining = "; ".join(
                f"{k}: {v}" for k, v in modal.inline_style.items() if k != "display"
            )
            self._set(record, modal, "style", remaining or None)
        if modal.tag_name == "dialog" and not modal.has_attribute("open"):
            self._set(record, modal, "open", "")
        self._set(record, modal, "role", "dialog")
        self._set(record, modal, "aria-modal", "true")

        # A modal opened over another one carries the marks the first set.
        top_level = self._top_level(modal)
        for element in {id(e): e for e in (modal, top_level) if e is not None}.values():
            if element.get_attribute("aria-hidden") == "true":
                self._set(record, element, "aria-hidden", None)
            if element.has_attribute("inert"):
                self._set(record, element, "inert", None)

        for sibling in list(self.document.body.children):
            if sibling is top_level:
                continue
            self._set(record, sibling, "aria-hidden", "true")
            self._set(record, sibling, "inert", "")

        target = first_focusable(modal)
        if target is not None:
            target.focus()

    def close(self, modal: Element) -> None:
        """Hide ``modal``, undo the marks set by :meth:`open`, restore focus."""
        record = self._records.pop(id(modal), None)
        if record is not None:
            for element, name, prior in reversed(record.changes):
                if prior is None:
                    element.remove_attribute(name)
                else:
                    element.set_attribute(name, prior)

        if not modal.has_attribute("hidden"):
            modal.set_attribute("hidden", "")
        if modal.tag_name == "dialog":
            modal.remove_attribute("open")

        focused = self.document.active_element
        if focused is not None and modal.contains(focused):
            focused.blur()
        if record is not None and record.previous_focus is not None:
            previous = record.previous_focus
            if previous.is_connected:
                previous.focus()
            else:
                logger.debug("Previously focused element is gone, focus not restored")

    def forget(self) -> None:
        """Drop all records without touching the page."""
        self._records.clear()
