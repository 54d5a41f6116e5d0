"""Page object model observed and driven by the shim."""

from agentui.page.dom import (
    ComputedStyle,
    Document,
    Element,
    Event,
    EventTarget,
    History,
    MutationObserver,
    MutationRecord,
    Rect,
    Window,
)
from agentui.page.html import load_html
from agentui.page.selectors import SelectorSyntaxError

__all__ = [
    "ComputedStyle",
    "Document",
    "Element",
    "Event",
    "EventTarget",
    "History",
    "MutationObserver",
    "MutationRecord",
    "Rect",
    "SelectorSyntaxError",
    "Window",
    "load_html",
]
