"""Value Objects for the Identity Context.

The ActiveContext is never stored: it is recomputed from the page on
demand and compared by value, so two computations over an unchanged
page are equal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from agentui.domains.shared import RegionKind, RegionRef


@dataclass(frozen=True)
class FocusLocator:
    """CSS-addressable locator of the focused element."""
    selector: str

    def __post_init__(self) -> None:
        if not self.selector or not self.selector.strip():
            raise ValueError("FocusLocator selector cannot be empty")

    def __str__(self) -> str:
        return self.selector


@dataclass(frozen=True)
class ActiveContext:
    """The single answer to "where is the user".

    Invariants:
    - ``modal`` set implies ``view`` is None
    - ``focus`` is None unless the focused element lies inside the
      active modal (or, with no modal, inside the active view)
    """
    route: Optional[RegionRef] = None
    view: Optional[RegionRef] = None
    modal: Optional[RegionRef] = None
    focus: Optional[FocusLocator] = None
    panels: Tuple[RegionRef, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.modal is not None and self.view is not None:
            raise ValueError("An active modal suppresses the active view")

    @classmethod
    def empty(cls) -> "ActiveContext":
        return cls()

    @property
    def is_empty(self) -> bool:
        return (
            self.route is None
            and self.view is None
            and self.modal is None
            and self.focus is None
            and not self.panels
        )

    def region(self, kind: RegionKind) -> Optional[RegionRef]:
        """The active region of ``kind`` (panels are not singular)."""
        if kind is RegionKind.ROUTE:
            return self.route
        if kind is RegionKind.VIEW:
            return self.view
        if kind is RegionKind.MODAL:
            return self.modal
        raise ValueError("Panels are reported as a list, use .panels")

    def to_dict(self) -> Dict[str, Any]:
        def ref(value: Optional[RegionRef]) -> Optional[Dict[str, str]]:
            return value.to_dict() if value is not None else None

        panels: List[Dict[str, str]] = [p.to_dict() for p in self.panels]
        return {
            "route": ref(self.route),
            "view": ref(self.view),
            "modal": ref(self.modal),
            "focus": self.focus.selector if self.focus else None,
            "panels": panels,
        }
