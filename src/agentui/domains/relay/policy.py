"""Command policy for the Relay Context.

The allow-list is keyed by context reference and command name. The
``"*"`` entry is the default applied to every context without its own
entry.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, FrozenSet, Iterable, Optional

from agentui.domains.shared import COMMAND_NAMES, canonical_command_name

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "*"


class CommandPolicy:
    """Per-context command allow-list.

    Examples:
        >>> policy = CommandPolicy()
        >>> policy.is_allowed("ctx_1", "waitFor")
        True
        >>> policy.set_allowed(["focus"], context_ref="ctx_1")
        >>> policy.is_allowed("ctx_1", "click")
        False
    """

    def __init__(self, allowed_commands: Optional[Iterable[str]] = None) -> None:
        self._lock = threading.Lock()
        self._rules: Dict[str, FrozenSet[str]] = {
            DEFAULT_SCOPE: self._normalize(
                COMMAND_NAMES if allowed_commands is None else allowed_commands
            )
        }

    @staticmethod
    def _normalize(commands: Iterable[str]) -> FrozenSet[str]:
        names = set()
        for command in commands:
            name = canonical_command_name(command)
            if name is None:
                raise ValueError(f"Unknown command in policy: {command!r}")
            names.add(name)
        return frozenset(names)

    def set_allowed(self, commands: Iterable[str], context_ref: str = DEFAULT_SCOPE) -> None:
        """Replace the allow-list for ``context_ref`` (or the default)."""
        normalized = self._normalize(commands)
        with self._lock:
            self._rules[context_ref] = normalized
        logger.info("Command policy for %s: %s", context_ref, sorted(normalized))

    def clear(self, context_ref: str) -> None:
        """Drop a context-specific entry so the default applies again."""
        if context_ref == DEFAULT_SCOPE:
            return
        with self._lock:
            self._rules.pop(context_ref, None)

    def allowed_for(self, context_ref: str) -> FrozenSet[str]:
        with self._lock:
            return self._rules.get(context_ref, self._rules[DEFAULT_SCOPE])

    def is_allowed(self, context_ref: str, command: str) -> bool:
        name = canonical_command_name(command)
        return name is not None and name in self.allowed_for(context_ref)

    def to_dict(self) -> Dict[str, list]:
        with self._lock:
            return {scope: sorted(names) for scope, names in self._rules.items()}
