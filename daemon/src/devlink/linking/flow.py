"""Event handling shared by the pairing code and QR flows."""

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable

from devlink.errors import StorageError
from devlink.linking.session import LinkMode, LinkSession
from devlink.protocol import Closed, CredentialsUpdated, LinkEvent, Opened, QrIssued

if TYPE_CHECKING:
    from devlink.linking.manager import LinkManager

logger = logging.getLogger(__name__)

SEQUENCE_TIMER = "sequence"


class LinkFlow:
    """Base class for a linking flow.

    Routes each event type to one handler (dict keyed by event class).
    Subclasses provide the open/close behavior.
    """

    mode: LinkMode

    def __init__(self, manager: "LinkManager"):
        """Initialize flow.

        Args:
            manager: Owner of the session registry, stores and sockets.
        """
        self.manager = manager
        self._handlers: dict[type, Callable[[LinkSession, LinkEvent], Awaitable[None]]] = {
            Opened: self.on_opened,
            Closed: self.on_closed,
            QrIssued: self.on_qr_issued,
            CredentialsUpdated: self.on_credentials_updated,
        }

    async def handle_event(self, session: LinkSession, event: LinkEvent) -> None:
        """Dispatch one event to its handler."""
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning(f"No handler for event {type(event).__name__}")
            return
        await handler(session, event)

    async def on_opened(self, session: LinkSession, event: Opened) -> None:
        raise NotImplementedError

    async def on_closed(self, session: LinkSession, event: Closed) -> None:
        raise NotImplementedError

    async def on_qr_issued(self, session: LinkSession, event: QrIssued) -> None:
        logger.debug(f"Ignoring QR payload for {self.mode.value} session {session.session_id}")

    async def on_credentials_updated(
        self, session: LinkSession, event: CredentialsUpdated
    ) -> None:
        """Persist new credential state into the session's store."""
        try:
            await asyncio.to_thread(session.store.persist, event.state)
        except StorageError as e:
            logger.error(f"Failed to persist credentials for {session.session_id}: {e}")

    # ------------------------------------------------------------------
    # Best-effort socket commands
    # ------------------------------------------------------------------

    def welcome_text(self, session: LinkSession) -> str:
        return self.manager.config.welcome_text.format(
            session_id=session.session_id,
            mode=session.mode.value,
            connected_at=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        )

    async def send_welcome(self, session: LinkSession) -> bool:
        """Send the welcome notification once. Failures are logged only."""
        if session.welcomed:
            return False
        if session.socket is None or not session.user_id:
            logger.warning(f"No linked identity for {session.session_id}, welcome skipped")
            return False

        session.welcomed = True
        try:
            text = self.welcome_text(session)
            await session.socket.send_notification(session.user_id, text)
        except Exception as e:
            logger.warning(f"Welcome message not sent for {session.session_id}: {e}")
            return False

        logger.info(f"Welcome message sent for {session.session_id}")
        return True

    async def close_socket(self, session: LinkSession) -> bool:
        """Ask the socket to close. Failures are logged only."""
        if session.socket is None or session.socket_closed:
            return False

        session.socket_closed = True
        try:
            await session.socket.close()
        except Exception as e:
            logger.warning(f"Connection close error for {session.session_id}: {e}")
            return False

        logger.info(f"Session {session.session_id} closed gracefully")
        return True
