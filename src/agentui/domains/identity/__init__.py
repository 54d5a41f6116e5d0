"""Identity Bounded Context.

Turns a live, mutating page into a single deterministic ActiveContext:
which route, view, modal and panels are showing, and where focus is.

Key Components:
- RegionResolver: Domain service for visibility, stacking and identity
- ActiveContext: Value object computed from page state
- FocusLocator: CSS locator of the focused element
"""

from agentui.domains.identity.services import RegionResolver
from agentui.domains.identity.value_objects import ActiveContext, FocusLocator

__all__ = [
    "ActiveContext",
    "FocusLocator",
    "RegionResolver",
]
