"""Shared Kernel - Core domain types shared across bounded contexts.

These types are intentionally minimal and shared between:
- Identity Context (produces RegionRef, RegionKind)
- Emission Context (serializes them into event messages)
- Command Context (resolves command targets by them)
- Relay Context (stores them per ContextRef)
"""

from __future__ import annotations

import re
import secrets
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional

from pydantic import BeforeValidator


class RegionKind(Enum):
    """The four kinds of annotated page regions.

    Each kind maps to a ``data-assist-<kind>`` attribute carrying the
    region's type identifier, and a ``data-assist-<kind>-instance``
    attribute carrying its instance identifier.
    """
    ROUTE = "route"
    VIEW = "view"
    PANEL = "panel"
    MODAL = "modal"

    @property
    def attribute(self) -> str:
        """Attribute holding the type identifier, e.g. ``data-assist-modal``."""
        return f"data-assist-{self.value}"

    @property
    def instance_attribute(self) -> str:
        """Attribute holding the instance identifier."""
        return f"data-assist-{self.value}-instance"

    @property
    def instance_prefix(self) -> str:
        return {
            RegionKind.ROUTE: "ri_",
            RegionKind.VIEW: "vi_",
            RegionKind.PANEL: "pi_",
            RegionKind.MODAL: "mi_",
        }[self]

    @classmethod
    def from_string(cls, value: str) -> "RegionKind":
        """Create a RegionKind from a string value.

        Raises:
            ValueError: If the kind is not recognized
        """
        normalized = value.lower().strip()
        for kind in cls:
            if kind.value == normalized:
                return kind
        raise ValueError(
            f"Unknown region kind: '{value}'. "
            f"Valid kinds: {[k.value for k in cls]}"
        )


@dataclass(frozen=True)
class RegionRef:
    """A (type identifier, instance identifier) pair for one region."""
    type_id: str
    instance_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"typeId": self.type_id, "instanceId": self.instance_id}

    def __str__(self) -> str:
        return f"{self.type_id}#{self.instance_id}"


@dataclass(frozen=True)
class ContextRef:
    """Per-tab isolation key for all relay-side state.

    Format: 1-128 characters from ``[A-Za-z0-9_.:-]``.

    Security: the format is validated so a context reference can be
    used as a dictionary key and in log lines without escaping.
    """
    value: str

    REF_PATTERN: str = field(
        default=r"^[A-Za-z0-9_.:-]{1,128}$", init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or not re.match(self.REF_PATTERN, self.value):
            raise ValueError(
                f"Invalid ContextRef format: {self.value!r}. "
                "Must be 1-128 characters of letters, digits, '_', '.', ':' or '-'"
            )

    @classmethod
    def generate(cls) -> "ContextRef":
        """Create a new context reference for a freshly booted shim."""
        millis = int(time.time() * 1000)
        return cls(value=f"ctx_{millis}_{random_token(8).lower()}")

    def __str__(self) -> str:
        return self.value

    def __hash__(self) -> int:
        return hash(self.value)


_TOKEN_ALPHABET = string.ascii_letters + string.digits


def random_token(length: int) -> str:
    """Return a random alphanumeric token of ``length`` characters."""
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def now_millis() -> int:
    """Wall-clock timestamp in epoch milliseconds, as carried in messages."""
    return int(time.time() * 1000)


# ============================================================
# Protocol vocabularies
# ============================================================
#
# Literal type aliases with BeforeValidator for lenient input
# normalization.  Produces flat {"enum": [...]} in JSON Schema
# while accepting wrong-case input at runtime.
# ============================================================


COMMAND_NAMES = (
    "navigate",
    "focus",
    "modal.open",
    "modal.close",
    "panel.toggle",
    "click",
    "type",
    "scroll",
    "waitFor",
)

EVENT_TYPES = (
    "state.snapshot",
    "focus.changed",
    "field.changed",
    "click",
    "route.changed",
    "modal.opened",
    "modal.closed",
    "tab.visibility",
    "cmd.result",
)

_COMMANDS_BY_LOWER = {name.lower(): name for name in COMMAND_NAMES}


def _normalize_str(v: Any) -> Any:
    """Normalize string input: strip whitespace, lowercase."""
    return v.strip().lower() if isinstance(v, str) else v


def _normalize_command(v: Any) -> Any:
    """Map case variants (``waitfor``, ``WAITFOR``) onto the canonical name."""
    if not isinstance(v, str):
        return v
    stripped = v.strip()
    return _COMMANDS_BY_LOWER.get(stripped.lower(), stripped)


CommandName = Annotated[
    Literal[
        "navigate", "focus", "modal.open", "modal.close",
        "panel.toggle", "click", "type", "scroll", "waitFor",
    ],
    BeforeValidator(_normalize_command),
]

EventType = Annotated[
    Literal[
        "state.snapshot", "focus.changed", "field.changed", "click",
        "route.changed", "modal.opened", "modal.closed",
        "tab.visibility", "cmd.result",
    ],
    BeforeValidator(_normalize_str),
]

RegionKindLiteral = Annotated[
    Literal["route", "view", "panel", "modal"],
    BeforeValidator(_normalize_str),
]


def canonical_command_name(name: Optional[str]) -> Optional[str]:
    """Return the canonical spelling of a known command, else None."""
    if not isinstance(name, str):
        return None
    return _COMMANDS_BY_LOWER.get(name.strip().lower())
