"""In-process page object model.

The shim observes and manipulates pages through this model: a document
tree of elements with attributes, inline and rule-based style, layout
boxes, keyboard focus, DOM-style event dispatch (capture, target and
bubble phases), mutation observers, and a window carrying location,
history and scroll position.

Mutation records are queued per observer and delivered on the next
turn of the running asyncio loop, mirroring microtask delivery in a
browser. Without a running loop they are delivered synchronously.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import urljoin

from agentui.page import selectors

logger = logging.getLogger(__name__)

Listener = Callable[["Event"], Any]

DEFAULT_WIDTH = 100.0
DEFAULT_HEIGHT = 20.0

FOCUSABLE_TAGS = frozenset({"input", "select", "textarea", "button"})
FORM_CONTROL_TAGS = frozenset({"input", "select", "textarea"})


class Event:
    """A dispatched page event."""

    NONE = 0
    CAPTURING_PHASE = 1
    AT_TARGET = 2
    BUBBLING_PHASE = 3

    def __init__(
        self,
        type: str,
        *,
        bubbles: bool = True,
        detail: Any = None,
        related_target: Optional["Element"] = None,
    ) -> None:
        self.type = type
        self.bubbles = bubbles
        self.detail = detail
        self.related_target = related_target
        self.target: Optional["EventTarget"] = None
        self.current_target: Optional["EventTarget"] = None
        self.event_phase = Event.NONE
        self.default_prevented = False
        self._propagation_stopped = False

    def stop_propagation(self) -> None:
        self._propagation_stopped = True

    def prevent_default(self) -> None:
        self.default_prevented = True

    def __repr__(self) -> str:
        return f"Event(type={self.type!r}, target={self.target!r})"


class EventTarget:
    """Listener registry with DOM ``addEventListener`` semantics."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Tuple[Listener, bool]]] = {}

    def add_event_listener(self, type: str, listener: Listener, capture: bool = False) -> None:
        entries = self._listeners.setdefault(type, [])
        if (listener, capture) not in entries:
            entries.append((listener, capture))

    def remove_event_listener(self, type: str, listener: Listener, capture: bool = False) -> None:
        entries = self._listeners.get(type)
        if not entries:
            return
        try:
            entries.remove((listener, capture))
        except ValueError:
            return
        if not entries:
            del self._listeners[type]

    def listener_count(self, type: Optional[str] = None) -> int:
        if type is not None:
            return len(self._listeners.get(type, ()))
        return sum(len(entries) for entries in self._listeners.values())

    def _invoke(self, event: Event, phase: int) -> None:
        event.current_target = self
        event.event_phase = phase
        for listener, capture in list(self._listeners.get(event.type, ())):
            if phase == Event.CAPTURING_PHASE and not capture:
                continue
            if phase == Event.BUBBLING_PHASE and capture:
                continue
            try:
                listener(event)
            except Exception:
                # Browsers report listener errors and keep dispatching.
                logger.exception("Listener for %r raised", event.type)

    def _propagation_path(self) -> List["EventTarget"]:
        return []

    def dispatch_event(self, event: Event) -> bool:
        """Dispatch ``event`` with capture, target and bubble phases.

        Returns:
            False if a listener called ``prevent_default``.
        """
        event.target = self
        path = self._propagation_path()
        for node in path:
            if event._propagation_stopped:
                break
            node._invoke(event, Event.CAPTURING_PHASE)
        if not event._propagation_stopped:
            self._invoke(event, Event.AT_TARGET)
        if event.bubbles:
            for node in reversed(path):
                if event._propagation_stopped:
                    break
                node._invoke(event, Event.BUBBLING_PHASE)
        event.current_target = None
        event.event_phase = Event.NONE
        return not event.default_prevented


@dataclass(frozen=True)
class Rect:
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 and self.height <= 0


@dataclass(frozen=True)
class ComputedStyle:
    display: str = "block"
    visibility: str = "visible"
    opacity: str = "1"
    z_index: str = "auto"
    width: Optional[str] = None
    height: Optional[str] = None
    top: Optional[str] = None
    left: Optional[str] = None


def parse_style(text: Optional[str]) -> Dict[str, str]:
    """Parse an inline ``style`` attribute into a property dict."""
    result: Dict[str, str] = {}
    if not text:
        return result
    for declaration in text.split(";"):
        if ":" not in declaration:
            continue
        name, _, value = declaration.partition(":")
        name = name.strip().lower()
        value = value.replace("!important", "").strip()
        if name:
            result[name] = value
    return result


def _px(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    match = re.match(r"^\s*(-?\d+(?:\.\d+)?)\s*(px)?\s*$", value)
    return float(match.group(1)) if match else default


class Element(EventTarget):
    """A page element."""

    def __init__(
        self,
        tag_name: str,
        attributes: Optional[Dict[str, str]] = None,
        *,
        text: str = "",
        owner_document: Optional["Document"] = None,
    ) -> None:
        super().__init__()
        self.tag_name = tag_name.lower()
        self._attributes: Dict[str, str] = {}
        for name, value in (attributes or {}).items():
            self._attributes[name.lower()] = "" if value is None else str(value)
        self.children: List[Element] = []
        self.parent: Optional[Element] = None
        self.owner_document = owner_document
        self.text = text
        self._value: Optional[str] = None
        self._checked: Optional[bool] = None
        self.scroll_top = 0.0

    # -- attributes ------------------------------------------------------

    @property
    def attributes(self) -> Dict[str, str]:
        return dict(self._attributes)

    def get_attribute(self, name: str) -> Optional[str]:
        return self._attributes.get(name.lower())

    def has_attribute(self, name: str) -> bool:
        return name.lower() in self._attributes

    def set_attribute(self, name: str, value: Any) -> None:
        name = name.lower()
        old = self._attributes.get(name)
        new = "" if value is None else str(value)
        self._attributes[name] = new
        if old != new:
            self._notify_attribute(name, old)

    def remove_attribute(self, name: str) -> None:
        name = name.lower()
        if name not in self._attributes:
            return
        old = self._attributes.pop(name)
        self._notify_attribute(name, old)

    def toggle_attribute(self, name: str, force: Optional[bool] = None) -> bool:
        present = self.has_attribute(name)
        wanted = (not present) if force is None else force
        if wanted and not present:
            self.set_attribute(name, "")
        elif not wanted and present:
            self.remove_attribute(name)
        return wanted

    def _notify_attribute(self, name: str, old_value: Optional[str]) -> None:
        document = self.owner_document
        if document is not None and self.is_connected:
            document._queue_mutation(
                MutationRecord(
                    type="attributes",
                    target=self,
                    attribute_name=name,
                    old_value=old_value,
                )
            )

    @property
    def id(self) -> str:
        return self._attributes.get("id", "")

    @property
    def class_list(self) -> List[str]:
        return self._attributes.get("class", "").split()

    @property
    def hidden(self) -> bool:
        return self.has_attribute("hidden")

    @hidden.setter
    def hidden(self, value: bool) -> None:
        self.toggle_attribute("hidden", bool(value))

    @property
    def inline_style(self) -> Dict[str, str]:
        return parse_style(self._attributes.get("style"))

    def set_style(self, **properties: Any) -> None:
        """Merge properties (``z_index=5`` -> ``z-index: 5``) into ``style``."""
        style = self.inline_style
        for key, value in properties.items():
            name = key.replace("_", "-")
            if value is None:
                style.pop(name, None)
            else:
                style[name] = str(value)
        self.set_attribute("style", "; ".join(f"{k}: {v}" for k, v in style.items()))

    # -- tree --------------------------------------------------------------

    def append_child(self, child: "Element") -> "Element":
        return self.insert_before(child, None)

    def insert_before(self, child: "Element", reference: Optional["Element"]) -> "Element":
        if child is self or child.contains(self):
            raise ValueError("Cannot insert an element into its own subtree")
        if child.parent is not None:
            child.parent.remove_child(child)
        index = len(self.children) if reference is None else self.children.index(reference)
        self.children.insert(index, child)
        child.parent = self
        child._adopt(self.owner_document)
        if self.owner_document is not None and self.is_connected:
            self.owner_document._queue_mutation(
                MutationRecord(type="childList", target=self, added_nodes=(child,))
            )
        return child

    def remove_child(self, child: "Element") -> "Element":
        self.children.remove(child)
        child.parent = None
        document = self.owner_document
        if document is not None:
            document._node_removed(child)
            if self.is_connected:
                document._queue_mutation(
                    MutationRecord(type="childList", target=self, removed_nodes=(child,))
                )
        return child

    def remove(self) -> None:
        if self.parent is not None:
            self.parent.remove_child(self)

    def _adopt(self, document: Optional["Document"]) -> None:
        self.owner_document = document
        for child in self.children:
            child._adopt(document)

    @property
    def is_connected(self) -> bool:
        document = self.owner_document
        if document is None:
            return False
        node: Optional[Element] = self
        while node is not None:
            if node is document.document_element:
                return True
            node = node.parent
        return False

    def contains(self, other: Optional["Element"]) -> bool:
        node = other
        while node is not None:
            if node is self:
                return True
            node = node.parent
        return False

    def iter_descendants(self) -> Iterator["Element"]:
        """Depth-first pre-order traversal of descendants (self excluded)."""
        stack = list(reversed(self.children))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    @property
    def previous_element_sibling(self) -> Optional["Element"]:
        if self.parent is None:
            return None
        siblings = self.parent.children
        index = siblings.index(self)
        return siblings[index - 1] if index > 0 else None

    @property
    def text_content(self) -> str:
        parts = [self.text] if self.text else []
        parts.extend(child.text_content for child in self.children)
        return " ".join(p for p in (part.strip() for part in parts) if p)

    # -- selectors -----------------------------------------------------------

    def matches(self, selector: str) -> bool:
        return selectors.matches(self, selector)

    def closest(self, selector: str) -> Optional["Element"]:
        node: Optional[Element] = self
        while node is not None:
            if node.matches(selector):
                return node
            node = node.parent
        return None

    def query_selector_all(self, selector: str) -> List["Element"]:
        return selectors.select_all(self.iter_descendants(), selector)

    def query_selector(self, selector: str) -> Optional["Element"]:
        found = self.query_selector_all(selector)
        return found[0] if found else None

    # -- form state ----------------------------------------------------------

    @property
    def value(self) -> str:
        if self.tag_name == "select":
            option = self.selected_option
            if option is None:
                return ""
            return option.get_attribute("value") if option.has_attribute("value") else option.text_content
        if self._value is not None:
            return self._value
        if self.tag_name == "textarea":
            return self.text
        return self._attributes.get("value", "")

    @value.setter
    def value(self, new_value: Any) -> None:
        text = "" if new_value is None else str(new_value)
        if self.tag_name == "select":
            for option in self.options:
                option_value = option.get_attribute("value")
                if option_value is None:
                    option_value = option.text_content
                option._checked = option_value == text
            return
        self._value = text

    @property
    def checked(self) -> bool:
        if self._checked is not None:
            return self._checked
        return self.has_attribute("checked")

    @checked.setter
    def checked(self, value: bool) -> None:
        self._checked = bool(value)

    @property
    def options(self) -> List["Element"]:
        return [el for el in self.iter_descendants() if el.tag_name == "option"]

    @property
    def selected_option(self) -> Optional["Element"]:
        options = self.options
        for option in options:
            if option._checked:
                return option
        for option in options:
            if option._checked is None and option.has_attribute("selected"):
                return option
        return options[0] if options else None

    @property
    def disabled(self) -> bool:
        return self.has_attribute("disabled")

    # -- focus & interaction ---------------------------------------------

    @property
    def is_focusable(self) -> bool:
        if self.disabled:
            return False
        if self.tag_name in FOCUSABLE_TAGS:
            return True
        if self.tag_name == "a" and self.has_attribute("href"):
            return True
        return self.has_attribute("tabindex")

    def focus(self) -> None:
        document = self.owner_document
        if document is None or not self.is_connected or not self.is_focusable:
            return
        document._set_focus(self)

    def blur(self) -> None:
        document = self.owner_document
        if document is not None and document.active_element is self:
            document._set_focus(None)

    def click(self) -> None:
        if self.disabled:
            return
        self.dispatch_event(Event("click"))

    def scroll_into_view(self) -> None:
        document = self.owner_document
        if document is not None:
            rect = self.get_bounding_client_rect()
            document.default_view.scroll_to(y=rect.y)

    def get_bounding_client_rect(self) -> Rect:
        document = self.owner_document
        if document is None or not self.is_connected:
            return Rect()
        node: Optional[Element] = self
        while node is not None:
            if document.get_computed_style(node).display == "none":
                return Rect()
            node = node.parent
        style = document.get_computed_style(self)
        return Rect(
            x=_px(style.left, 0.0),
            y=_px(style.top, 0.0),
            width=_px(style.width, DEFAULT_WIDTH),
            height=_px(style.height, DEFAULT_HEIGHT),
        )

    def _propagation_path(self) -> List[EventTarget]:
        path: List[EventTarget] = []
        node = self.parent
        while node is not None:
            path.append(node)
            node = node.parent
        path.reverse()
        document = self.owner_document
        if document is not None and self.is_connected:
            return [document.default_view, document] + path
        return path

    def __repr__(self) -> str:
        ident = f"#{self.id}" if self.id else ""
        return f"<{self.tag_name}{ident}>"


@dataclass(frozen=True)
class MutationRecord:
    type: str
    target: Element
    attribute_name: Optional[str] = None
    old_value: Optional[str] = None
    added_nodes: Tuple[Element, ...] = ()
    removed_nodes: Tuple[Element, ...] = ()


@dataclass
class _ObserverOptions:
    child_list: bool = False
    attributes: bool = False
    subtree: bool = False
    attribute_filter: Optional[frozenset] = None


class MutationObserver:
    """Queues mutation records for observed nodes and delivers them in batches."""

    def __init__(self, callback: Callable[[List[MutationRecord], "MutationObserver"], Any]) -> None:
        self._callback = callback
        self._targets: List[Tuple[Element, _ObserverOptions]] = []
        self._records: List[MutationRecord] = []
        self._documents: List[Document] = []
        self._scheduled = False

    def observe(
        self,
        target: Element,
        *,
        child_list: bool = False,
        attributes: bool = False,
        subtree: bool = False,
        attribute_filter: Optional[List[str]] = None,
    ) -> None:
        if not (child_list or attributes or attribute_filter):
            raise ValueError("observe() requires child_list, attributes or attribute_filter")
        document = target.owner_document
        if document is None:
            raise ValueError("Cannot observe an element without a document")
        options = _ObserverOptions(
            child_list=child_list,
            attributes=attributes or attribute_filter is not None,
            subtree=subtree,
            attribute_filter=frozenset(a.lower() for a in attribute_filter) if attribute_filter else None,
        )
        self._targets = [(t, o) for t, o in self._targets if t is not target]
        self._targets.append((target, options))
        if document not in self._documents:
            self._documents.append(document)
            document._observers.append(self)

    def disconnect(self) -> None:
        for document in self._documents:
            if self in document._observers:
                document._observers.remove(self)
        self._documents.clear()
        self._targets.clear()
        self._records.clear()

    def take_records(self) -> List[MutationRecord]:
        records, self._records = self._records, []
        return records

    @property
    def is_observing(self) -> bool:
        return bool(self._targets)

    def _wants(self, record: MutationRecord) -> bool:
        for target, options in self._targets:
            if record.target is not target and not (options.subtree and target.contains(record.target)):
                continue
            if record.type == "childList" and options.child_list:
                return True
            if record.type == "attributes" and options.attributes:
                if options.attribute_filter is None or record.attribute_name in options.attribute_filter:
                    return True
        return False

    def _enqueue(self, record: MutationRecord) -> None:
        if not self._wants(record):
            return
        self._records.append(record)
        if self._scheduled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deliver()
            return
        self._scheduled = True
        loop.call_soon(self._deliver)

    def _deliver(self) -> None:
        self._scheduled = False
        records = self.take_records()
        if not records or not self._targets:
            return
        try:
            self._callback(records, self)
        except Exception:
            logger.exception("Mutation observer callback raised")


class History:
    """Session history entries for one window."""

    def __init__(self, window: "Window") -> None:
        self._window = window
        self.entries: List[Tuple[Any, str]] = [(None, window.location_href)]
        self.index = 0

    @property
    def length(self) -> int:
        return len(self.entries)

    @property
    def state(self) -> Any:
        return self.entries[self.index][0]

    def push_state(self, state: Any, url: Optional[str] = None) -> None:
        href = self._window._resolve(url)
        del self.entries[self.index + 1:]
        self.entries.append((state, href))
        self.index = len(self.entries) - 1
        self._window.location_href = href

    def replace_state(self, state: Any, url: Optional[str] = None) -> None:
        href = self._window._resolve(url)
        self.entries[self.index] = (state, href)
        self._window.location_href = href

    def back(self) -> None:
        self.go(-1)

    def go(self, delta: int) -> None:
        target = self.index + delta
        if delta == 0 or not 0 <= target < len(self.entries):
            return
        self.index = target
        state, href = self.entries[target]
        self._window.location_href = href
        self._window.dispatch_event(Event("popstate", bubbles=False, detail=state))


class Window(EventTarget):
    """Browsing context: location, history and scroll position."""

    def __init__(self, document: "Document", url: str = "about:blank") -> None:
        super().__init__()
        self.document = document
        self.location_href = url
        self.history = History(self)
        self.scroll_x = 0.0
        self.scroll_y = 0.0

    def _resolve(self, url: Optional[str]) -> str:
        if not url:
            return self.location_href
        return urljoin(self.location_href, url)

    def scroll_to(self, x: Optional[float] = None, y: Optional[float] = None) -> None:
        if x is not None:
            self.scroll_x = max(0.0, float(x))
        if y is not None:
            self.scroll_y = max(0.0, float(y))

    def get_computed_style(self, element: Element) -> ComputedStyle:
        return self.document.get_computed_style(element)


class Document(EventTarget):
    """A page document with ``<html>`` and ``<body>`` roots."""

    def __init__(self, url: str = "about:blank") -> None:
        super().__init__()
        self.document_element = Element("html", owner_document=self)
        self.head = Element("head", owner_document=self)
        self.body = Element("body", owner_document=self)
        self.document_element.children = [self.head, self.body]
        self.head.parent = self.document_element
        self.body.parent = self.document_element
        self.default_view = Window(self, url)
        self.hidden = False
        self._active: Optional[Element] = None
        self._observers: List[MutationObserver] = []
        self._style_rules: List[Tuple[str, Dict[str, str]]] = []

    # -- construction --------------------------------------------------------

    def create_element(
        self,
        tag_name: str,
        attributes: Optional[Dict[str, Any]] = None,
        *children: Element,
        text: str = "",
        style: Optional[str] = None,
    ) -> Element:
        attrs = dict(attributes or {})
        if style is not None:
            attrs["style"] = style
        element = Element(tag_name, attrs, text=text, owner_document=self)
        for child in children:
            element.append_child(child)
        return element

    def add_style_rule(self, selector: str, declarations: Dict[str, Any]) -> None:
        """Add a stylesheet rule; later rules and inline style take precedence."""
        selectors.parse_selector(selector)
        self._style_rules.append(
            (selector, {k.replace("_", "-"): str(v) for k, v in declarations.items()})
        )

    # -- queries -------------------------------------------------------------

    @property
    def url(self) -> str:
        return self.default_view.location_href

    @property
    def active_element(self) -> Optional[Element]:
        if self._active is not None and self._active.is_connected:
            return self._active
        return self.body

    def iter_elements(self) -> Iterator[Element]:
        yield self.document_element
        yield from self.document_element.iter_descendants()

    def query_selector_all(self, selector: str) -> List[Element]:
        return selectors.select_all(self.iter_elements(), selector)

    def query_selector(self, selector: str) -> Optional[Element]:
        found = self.query_selector_all(selector)
        return found[0] if found else None

    def get_element_by_id(self, element_id: str) -> Optional[Element]:
        for element in self.iter_elements():
            if element.id == element_id:
                return element
        return None

    def document_position(self, element: Element) -> int:
        """Pre-order index of ``element``; -1 when it is not connected."""
        for index, candidate in enumerate(self.iter_elements()):
            if candidate is element:
                return index
        return -1

    def get_computed_style(self, element: Element) -> ComputedStyle:
        declared: Dict[str, str] = {}
        for selector, declarations in self._style_rules:
            if element.matches(selector):
                declared.update(declarations)
        declared.update(element.inline_style)

        display = declared.get("display", "block")
        if element.has_attribute("hidden") and "display" not in element.inline_style:
            display = "none"

        visibility = declared.get("visibility")
        if visibility in (None, "inherit"):
            visibility = "visible"
            if element.parent is not None:
                visibility = self.get_computed_style(element.parent).visibility

        return ComputedStyle(
            display=display,
            visibility=visibility,
            opacity=declared.get("opacity", "1"),
            z_index=declared.get("z-index", "auto"),
            width=declared.get("width"),
            height=declared.get("height"),
            top=declared.get("top"),
            left=declared.get("left"),
        )

    @property
    def scroll_height(self) -> float:
        return sum(child.get_bounding_client_rect().height for child in self.body.children)

    # -- visibility ----------------------------------------------------------

    def set_hidden(self, hidden: bool) -> None:
        """Change the tab visibility state and fire ``visibilitychange``."""
        if self.hidden == hidden:
            return
        self.hidden = hidden
        self.dispatch_event(Event("visibilitychange"))

    # -- internals -----------------------------------------------------------

    def _propagation_path(self) -> List[EventTarget]:
        return [self.default_view]

    def _queue_mutation(self, record: MutationRecord) -> None:
        for observer in list(self._observers):
            observer._enqueue(record)

    def _node_removed(self, node: Element) -> None:
        if self._active is not None and node.contains(self._active):
            self._active = None

    def _set_focus(self, element: Optional[Element]) -> None:
        previous = self._active if self._active is not None and self._active.is_connected else None
        if previous is element:
            return
        self._active = element
        if previous is not None:
            previous.dispatch_event(Event("blur", bubbles=False, related_target=element))
            previous.dispatch_event(Event("focusout", related_target=element))
        if element is not None:
            element.dispatch_event(Event("focus", bubbles=False, related_target=previous))
            element.dispatch_event(Event("focusin", related_target=previous))
