"""Registry of live linking sessions."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from devlink.linking.session import LinkMode, LinkSession


class SessionRegistry:
    """Holds the LinkSession objects that have not been cleaned up yet.

    Keyed by session_id. A simple state container; business logic belongs
    to the flows and the cleanup scheduler.
    """

    def __init__(self):
        """Initialize empty registry."""
        self._sessions: dict[str, "LinkSession"] = {}

    def add(self, session: "LinkSession") -> None:
        """Add a session.

        Raises:
            ValueError: If a live session already uses the same ID.
        """
        if session.session_id in self._sessions:
            raise ValueError(f"Duplicate session ID: {session.session_id}")
        self._sessions[session.session_id] = session

    def get(self, session_id: str) -> Optional["LinkSession"]:
        """Get session by ID, or None."""
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional["LinkSession"]:
        """Remove and return session by ID, or None if absent."""
        return self._sessions.pop(session_id, None)

    def list_all(self) -> list["LinkSession"]:
        """Get list of all sessions."""
        return list(self._sessions.values())

    def count_by_mode(self, mode: "LinkMode") -> int:
        """Count live sessions of one mode."""
        return sum(1 for s in self._sessions.values() if s.mode == mode)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
