"""Identity Domain Services.

The RegionResolver turns a live page into exactly one ActiveContext.

Ordering rule: an active modal strictly dominates the view, which
strictly dominates focus outside any region. Among overlapping
candidates of the same kind the topmost wins: highest computed
``z-index``, ties broken by later document position. Nested stacking
contexts are not modelled; this is a known simplification.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from agentui.domains.identity.value_objects import ActiveContext, FocusLocator
from agentui.domains.shared import RegionKind, RegionRef, random_token
from agentui.page.dom import Document, Element

logger = logging.getLogger(__name__)

INSTANCE_ID_LENGTH = 10

_SIMPLE_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


class RegionResolver:
    """Discovers annotated regions and computes the active context.

    Examples:
        >>> resolver = RegionResolver(document)
        >>> context = resolver.compute_active_context()
        >>> context.modal.type_id
        'modal:login'
    """

    def __init__(
        self,
        document: Document,
        reserved_view_prefixes: Sequence[str] = ("view:agent:",),
    ) -> None:
        self.document = document
        self.reserved_view_prefixes = tuple(reserved_view_prefixes)

    # ------------------------------------------------------------------
    # Visibility and stacking
    # ------------------------------------------------------------------

    def is_visible(self, element: Optional[Element]) -> bool:
        """Connected, rendered, not hidden, non-zero area, not aria-hidden."""
        if element is None or not element.is_connected:
            return False
        if element.has_attribute("hidden"):
            return False
        if element.get_attribute("aria-hidden") == "true":
            return False
        style = self.document.get_computed_style(element)
        if style.display == "none" or style.visibility == "hidden":
            return False
        if style.opacity.strip() in ("0", "0.0"):
            return False
        return not element.get_bounding_client_rect().is_empty

    def stack_order(self, element: Element) -> int:
        raw = self.document.get_computed_style(element).z_index
        try:
            return int(raw)
        except (TypeError, ValueError):
            return 0

    def topmost(self, elements: Iterable[Element]) -> Optional[Element]:
        """Highest stack order wins; equal order goes to the later element."""
        best: Optional[Element] = None
        best_key: Tuple[int, int] = (0, -1)
        for element in elements:
            key = (self.stack_order(element), self.document.document_position(element))
            if best is None or key > best_key:
                best, best_key = element, key
        return best

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def ensure_instance_id(self, element: Element, kind: RegionKind) -> str:
        """Return the element's instance id, assigning one on first sight."""
        instance_id = element.get_attribute(kind.instance_attribute)
        if not instance_id:
            instance_id = kind.instance_prefix + random_token(INSTANCE_ID_LENGTH)
            element.set_attribute(kind.instance_attribute, instance_id)
            logger.debug(
                "Assigned %s instance %s to %s",
                kind.value, instance_id, element.get_attribute(kind.attribute),
            )
        return instance_id

    def region_ref(self, element: Element, kind: RegionKind) -> RegionRef:
        return RegionRef(
            type_id=element.get_attribute(kind.attribute) or "",
            instance_id=self.ensure_instance_id(element, kind),
        )

    def regions(self, kind: RegionKind) -> List[Element]:
        """All nodes annotated as ``kind``, in document order."""
        return self.document.query_selector_all(f"[{kind.attribute}]")

    def register_all(self) -> int:
        """Assign instance ids to every annotated node; returns the count."""
        count = 0
        for kind in RegionKind:
            for element in self.regions(kind):
                self.ensure_instance_id(element, kind)
                count += 1
        return count

    def is_reserved_view(self, element: Element) -> bool:
        type_id = element.get_attribute(RegionKind.VIEW.attribute) or ""
        return any(type_id.startswith(prefix) for prefix in self.reserved_view_prefixes)

    def find_region(
        self,
        kind: RegionKind,
        type_id: Optional[str] = None,
        instance_id: Optional[str] = None,
    ) -> Optional[Element]:
        """Resolve a region by instance id, else by type id.

        An explicit instance id is honoured whether or not the node is
        visible. A type id resolves to the topmost visible node of that
        type.
        """
        candidates = self.regions(kind)
        if instance_id:
            for element in candidates:
                if element.get_attribute(kind.instance_attribute) == instance_id:
                    return element
            return None
        if type_id:
            candidates = [e for e in candidates if e.get_attribute(kind.attribute) == type_id]
        return self.topmost(e for e in candidates if self.is_visible(e))

    def observed_type_ids(self) -> Dict[str, List[str]]:
        """Distinct type ids present on the page, grouped by region kind."""
        result: Dict[str, List[str]] = {}
        for kind in RegionKind:
            seen: List[str] = []
            for element in self.regions(kind):
                type_id = element.get_attribute(kind.attribute)
                if type_id and type_id not in seen:
                    seen.append(type_id)
            result[kind.value] = seen
        return result

    # ------------------------------------------------------------------
    # Active context
    # ------------------------------------------------------------------

    def active_modal(self) -> Optional[Element]:
        return self.topmost(e for e in self.regions(RegionKind.MODAL) if self.is_visible(e))

    def active_route(self) -> Optional[Element]:
        for element in self.regions(RegionKind.ROUTE):
            if self.is_visible(element):
                return element
        return None

    def active_view(self, modal: Optional[Element] = None) -> Optional[Element]:
        if modal is not None:
            return None
        views = [
            e for e in self.regions(RegionKind.VIEW)
            if self.is_visible(e) and not self.is_reserved_view(e)
        ]
        return self.topmost(views)

    def compute_active_context(self) -> ActiveContext:
        """Compute the active context from the current page state."""
        modal = self.active_modal()
        route = self.active_route()
        view = self.active_view(modal)

        focus: Optional[FocusLocator] = None
        focused = self.document.active_element
        scope = modal if modal is not None else view
        if focused is not None and scope is not None and scope.contains(focused):
            focus = FocusLocator(self.selector_for(focused))

        panels = tuple(
            self.region_ref(p, RegionKind.PANEL)
            for p in self.regions(RegionKind.PANEL)
            if self.is_visible(p)
        )

        return ActiveContext(
            route=self.region_ref(route, RegionKind.ROUTE) if route is not None else None,
            view=self.region_ref(view, RegionKind.VIEW) if view is not None else None,
            modal=self.region_ref(modal, RegionKind.MODAL) if modal is not None else None,
            focus=focus,
            panels=panels,
        )

    # ------------------------------------------------------------------
    # Locators
    # ------------------------------------------------------------------

    @staticmethod
    def selector_for(element: Element) -> str:
        """A CSS locator for ``element`` that the page model can resolve."""
        element_id = element.id
        if element_id:
            if _SIMPLE_IDENT.match(element_id):
                return f"#{element_id}"
            if '"' not in element_id:
                return f'[id="{element_id}"]'
        field_id = element.get_attribute("data-assist-field")
        if field_id and '"' not in field_id:
            return f'[data-assist-field="{field_id}"]'
        name = element.get_attribute("name")
        if name and '"' not in name:
            return f'{element.tag_name}[name="{name}"]'
        classes = [c for c in element.class_list if _SIMPLE_IDENT.match(c)]
        candidate = (
            f"{element.tag_name}." + ".".join(classes) if classes else element.tag_name
        )
        document = element.owner_document
        if document is None or document.query_selector(candidate) is element:
            return candidate
        return RegionResolver._positional_selector(element)

    @staticmethod
    def _positional_selector(element: Element) -> str:
        """``>``-joined ``:nth-child`` path up to an ancestor with a unique id."""
        document = element.owner_document
        parts: List[str] = []
        node: Optional[Element] = element
        while node is not None:
            parent = node.parent
            if node is not element and node.id and _SIMPLE_IDENT.match(node.id):
                if document is not None and document.query_selector(f"#{node.id}") is node:
                    parts.append(f"#{node.id}")
                    break
            if parent is None:
                parts.append(node.tag_name)
                break
            index = parent.children.index(node) + 1
            parts.append(f"{node.tag_name}:nth-child({index})")
            node = parent
        return " > ".join(reversed(parts))
