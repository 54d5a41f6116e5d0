"""
Repository Interface for the Relay bounded context.

The repository lock guards only the context map. Callers take the
session's own lock for anything that touches its state.
"""

import threading
from typing import Callable, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from .aggregates import ContextSession


@runtime_checkable
class ContextRepository(Protocol):
    """Repository interface for the ContextSession aggregate."""

    def get(self, context_ref: str) -> Optional[ContextSession]:
        """Return the session for ``context_ref`` or None."""
        ...

    def get_or_create(
        self, context_ref: str, factory: Callable[[], ContextSession]
    ) -> Tuple[ContextSession, bool]:
        """Return the session, creating it with ``factory`` if absent.

        Returns:
            (session, created)
        """
        ...

    def remove(self, context_ref: str) -> Optional[ContextSession]:
        """Remove and return a session."""
        ...

    def remove_if(self, context_ref: str, predicate: Callable[[ContextSession], bool]) -> bool:
        """Remove the session only if ``predicate`` holds at removal time."""
        ...

    def list_all(self) -> List[ContextSession]:
        ...

    def count(self) -> int:
        ...


class InMemoryContextRepository:
    """
    In-memory implementation of ContextRepository.

    Thread-safe: every map operation runs under one lock.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, ContextSession] = {}
        self._lock = threading.Lock()

    def get(self, context_ref: str) -> Optional[ContextSession]:
        with self._lock:
            return self._sessions.get(context_ref)

    def get_or_create(
        self, context_ref: str, factory: Callable[[], ContextSession]
    ) -> Tuple[ContextSession, bool]:
        with self._lock:
            session = self._sessions.get(context_ref)
            if session is not None:
                return session, False
            session = factory()
            self._sessions[context_ref] = session
            return session, True

    def remove(self, context_ref: str) -> Optional[ContextSession]:
        with self._lock:
            return self._sessions.pop(context_ref, None)

    def remove_if(self, context_ref: str, predicate: Callable[[ContextSession], bool]) -> bool:
        """Remove the session only if ``predicate`` still holds under the lock."""
        with self._lock:
            session = self._sessions.get(context_ref)
            if session is None or not predicate(session):
                return False
            del self._sessions[context_ref]
            return True

    def list_all(self) -> List[ContextSession]:
        with self._lock:
            return list(self._sessions.values())

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
