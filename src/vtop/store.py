"""Session persistence behind a small protocol.

The core never keeps sessions in module globals: whoever builds a
VtopService decides where sessions live by passing a SessionStore.
"""

from typing import Protocol

from src.vtop.models import Session


class SessionStore(Protocol):
    """Keyed storage for authenticated VTOP sessions."""

    def get(self, key: str) -> Session | None:
        """Return the session stored under key, or None."""
        ...

    def set(self, key: str, session: Session) -> None:
        """Store (or replace) the session under key."""
        ...

    def delete(self, key: str) -> None:
        """Forget the session under key. Unknown keys are ignored."""
        ...


class InMemorySessionStore:
    """Process-local SessionStore backed by a dict."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def get(self, key: str) -> Session | None:
        return self._sessions.get(key)

    def set(self, key: str, session: Session) -> None:
        self._sessions[key] = session

    def delete(self, key: str) -> None:
        self._sessions.pop(key, None)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: object) -> bool:
        return key in self._sessions
