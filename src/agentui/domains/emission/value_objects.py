"""Value Objects for the Emission Context.

Each class is one outbound protocol message type. Messages are frozen;
``to_message`` renders the wire form that always carries ``contextRef``,
``type`` and ``timestamp`` (epoch milliseconds).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional, Tuple

from agentui.domains.identity.value_objects import ActiveContext
from agentui.domains.shared import ContextRef, RegionRef, now_millis


def _ref(value: Optional[RegionRef]) -> Optional[Dict[str, str]]:
    return value.to_dict() if value is not None else None


def _type_id(value: Optional[RegionRef]) -> Optional[str]:
    return value.type_id if value is not None else None


class UIEventMessage:
    """Mixin giving every message its wire envelope."""

    TYPE: ClassVar[str] = ""
    timestamp: int

    def payload(self) -> Dict[str, Any]:
        raise NotImplementedError

    def to_message(self, context_ref: ContextRef) -> Dict[str, Any]:
        message: Dict[str, Any] = {
            "contextRef": str(context_ref),
            "type": self.TYPE,
            "timestamp": self.timestamp,
        }
        message.update(self.payload())
        return message


@dataclass(frozen=True)
class StateSnapshot(UIEventMessage):
    """Immutable, versioned record of the active context.

    Versions increase by exactly one per emitted snapshot.
    """
    TYPE: ClassVar[str] = "state.snapshot"

    version: int
    url: str
    route: Optional[RegionRef] = None
    view: Optional[RegionRef] = None
    modal: Optional[RegionRef] = None
    focus: Optional[str] = None
    panels: Tuple[RegionRef, ...] = ()
    timestamp: int = field(default_factory=now_millis)

    def __post_init__(self) -> None:
        if self.version < 1:
            raise ValueError(f"Snapshot version must be >= 1, got {self.version}")

    @classmethod
    def from_context(cls, version: int, url: str, context: ActiveContext) -> "StateSnapshot":
        return cls(
            version=version,
            url=url,
            route=context.route,
            view=context.view,
            modal=context.modal,
            focus=context.focus.selector if context.focus else None,
            panels=context.panels,
        )

    def same_state(self, other: Optional["StateSnapshot"]) -> bool:
        """True when ``other`` shows the same page state (version ignored)."""
        if other is None:
            return False
        return (
            self.url == other.url
            and self.route == other.route
            and self.view == other.view
            and self.modal == other.modal
            and self.focus == other.focus
            and self.panels == other.panels
        )

    def payload(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "url": self.url,
            "route": _ref(self.route),
            "view": _ref(self.view),
            "modal": _ref(self.modal),
            "focus": self.focus,
            "panels": [p.to_dict() for p in self.panels],
        }


@dataclass(frozen=True)
class FocusChanged(UIEventMessage):
    TYPE: ClassVar[str] = "focus.changed"

    focus: Optional[str]
    modal: Optional[RegionRef] = None
    view: Optional[RegionRef] = None
    timestamp: int = field(default_factory=now_millis)

    def payload(self) -> Dict[str, Any]:
        return {
            "focus": self.focus,
            "modal": _type_id(self.modal),
            "view": _type_id(self.view),
        }


@dataclass(frozen=True)
class FieldChanged(UIEventMessage):
    TYPE: ClassVar[str] = "field.changed"

    field_id: str
    field_type: str
    field_label: Optional[str]
    old_value: Optional[str]
    new_value: Optional[str]
    view: Optional[RegionRef] = None
    modal: Optional[RegionRef] = None
    timestamp: int = field(default_factory=now_millis)

    def payload(self) -> Dict[str, Any]:
        return {
            "fieldId": self.field_id,
            "fieldType": self.field_type,
            "fieldLabel": self.field_label,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "view": _type_id(self.view),
            "modal": _type_id(self.modal),
        }


@dataclass(frozen=True)
class SemanticClick(UIEventMessage):
    """A click on an element carrying a field, action or item annotation."""
    TYPE: ClassVar[str] = "click"

    selector: str
    field_id: Optional[str] = None
    action_id: Optional[str] = None
    item_id: Optional[str] = None
    button_text: Optional[str] = None
    item_metadata: Optional[Dict[str, str]] = None
    view: Optional[RegionRef] = None
    modal: Optional[RegionRef] = None
    timestamp: int = field(default_factory=now_millis)

    def payload(self) -> Dict[str, Any]:
        return {
            "fieldId": self.field_id,
            "actionId": self.action_id,
            "itemId": self.item_id,
            "buttonText": self.button_text,
            "itemMetadata": dict(self.item_metadata) if self.item_metadata else None,
            "selector": self.selector,
            "view": _type_id(self.view),
            "modal": _type_id(self.modal),
        }


@dataclass(frozen=True)
class RouteChanged(UIEventMessage):
    TYPE: ClassVar[str] = "route.changed"

    url: str
    route: Optional[RegionRef] = None
    timestamp: int = field(default_factory=now_millis)

    def payload(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "routeId": _type_id(self.route),
            "route": _ref(self.route),
        }


@dataclass(frozen=True)
class ModalOpened(UIEventMessage):
    TYPE: ClassVar[str] = "modal.opened"

    modal: RegionRef
    timestamp: int = field(default_factory=now_millis)

    def payload(self) -> Dict[str, Any]:
        return {"modalId": self.modal.type_id, "instanceId": self.modal.instance_id}


@dataclass(frozen=True)
class ModalClosed(UIEventMessage):
    TYPE: ClassVar[str] = "modal.closed"

    modal: RegionRef
    timestamp: int = field(default_factory=now_millis)

    def payload(self) -> Dict[str, Any]:
        return {"modalId": self.modal.type_id, "instanceId": self.modal.instance_id}


@dataclass(frozen=True)
class TabVisibility(UIEventMessage):
    TYPE: ClassVar[str] = "tab.visibility"

    hidden: bool
    timestamp: int = field(default_factory=now_millis)

    def payload(self) -> Dict[str, Any]:
        return {"hidden": self.hidden}
