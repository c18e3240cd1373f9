"""QR code linking flow.

Returns the first QR payload the handshake produces. After the device
links, a session-info record is written into the credential store, the
socket is kept open for a dwell period and then closed. Credentials are
kept for a grace window after close so a quick reconnect can reuse them.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from devlink.errors import LinkTimeoutError, StorageError
from devlink.linking.cleanup import CLEANUP_TIMER
from devlink.linking.flow import SEQUENCE_TIMER, LinkFlow
from devlink.linking.session import LinkMode, LinkSession, LinkStatus
from devlink.protocol import Closed, Opened, QrIssued

logger = logging.getLogger(__name__)

TIMEOUT_TIMER = "timeout"


@dataclass(frozen=True)
class QrResult:
    """First QR payload issued for a session."""

    qr: str
    session_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"qr": self.qr, "sessionId": self.session_id}


class QrFlow(LinkFlow):
    """Orchestrates the QR code path, plus status and stale sweeps."""

    mode = LinkMode.QR

    @property
    def config(self):
        return self.manager.config.qr

    async def start(self) -> QrResult:
        """Start a QR session and wait for its first payload.

        Raises:
            LinkTimeoutError: No payload arrived in time; the session has
                already been cleaned up.
            ProvisioningError: Session setup failed.
        """
        session = await self.manager.open_session(self)
        session.schedule(TIMEOUT_TIMER, self._expire_if_silent(session))
        return await session.wait_result()

    async def _expire_if_silent(self, session: LinkSession) -> None:
        await asyncio.sleep(self.config.timeout)
        if session.responded:
            return

        logger.warning(f"QR generation timeout for session {session.session_id}")
        if session.status == LinkStatus.CREATED:
            session.transition_to(LinkStatus.EXPIRED)
        elif not session.is_terminal:
            session.transition_to(LinkStatus.FAILED)

        await self.manager.cleanup.cleanup_now(
            session, error=LinkTimeoutError("QR generation timeout. Please try again.")
        )

    async def on_qr_issued(self, session: LinkSession, event: QrIssued) -> None:
        if session.responded or session.status != LinkStatus.CREATED:
            logger.debug(f"Ignoring refreshed QR for session {session.session_id}")
            return

        session.cancel_timer(TIMEOUT_TIMER)
        session.respond(QrResult(qr=event.payload, session_id=session.session_id))
        session.transition_to(LinkStatus.QR_ISSUED)
        logger.info(f"QR code generated for session {session.session_id}")

    async def on_opened(self, session: LinkSession, event: Opened) -> None:
        if session.status == LinkStatus.CLOSED:
            # Reconnected inside the grace window: keep the credentials
            session.cancel_timer(CLEANUP_TIMER)
            logger.info(f"Session {session.session_id} reconnected, cleanup canceled")
        elif session.status in (LinkStatus.CONNECTING, LinkStatus.CONNECTED):
            logger.debug(f"Ignoring duplicate open for session {session.session_id}")
            return
        elif session.is_terminal:
            logger.debug(
                f"Ignoring open for session {session.session_id} in {session.status.name}"
            )
            return

        session.user_id = event.user_id or session.user_id
        session.socket_closed = False
        session.transition_to(LinkStatus.CONNECTING)
        logger.info(f"Session {session.session_id} connected successfully")
        session.schedule(SEQUENCE_TIMER, self._finish_link(session))

    async def _finish_link(self, session: LinkSession) -> None:
        """Welcome, record session info, dwell, then close."""
        await asyncio.sleep(self.config.welcome_delay)
        session.transition_to(LinkStatus.CONNECTED)
        await self.send_welcome(session)

        info = {
            "sessionId": session.session_id,
            "user": session.user_id,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "connectionType": "QR",
        }
        try:
            await asyncio.to_thread(session.store.write_session_info, info)
        except StorageError as e:
            logger.error(f"Failed to save session info for {session.session_id}: {e}")

        await asyncio.sleep(self.config.close_dwell)
        await self.close_socket(session)

    async def on_closed(self, session: LinkSession, event: Closed) -> None:
        logger.info(f"Session {session.session_id} connection closed")
        session.socket_closed = True
        if not session.is_terminal:
            session.transition_to(LinkStatus.CLOSED)
        session.cancel_timers(keep=(CLEANUP_TIMER, TIMEOUT_TIMER))
        if session.has_timer(TIMEOUT_TIMER):
            # Unanswered caller: the timeout responds and cleans up
            return
        self.manager.cleanup.schedule_cleanup(session, self.config.reconnect_grace)

    # ------------------------------------------------------------------
    # Filesystem queries
    # ------------------------------------------------------------------

    async def status(self, session_id: str) -> dict[str, Any]:
        """Report whether a session's store and session info exist.

        Reads the filesystem only; never waits on a live socket.
        """
        return await asyncio.to_thread(self.manager.root.status, session_id)

    async def sweep_stale(self, max_age: Optional[float] = None) -> int:
        """Remove every store older than ``max_age`` seconds.

        Age comes from the directory modification time. Live sessions whose
        store is swept are cleaned up through the scheduler so their timers
        are canceled as well.

        Returns:
            Number of stores removed.
        """
        if max_age is None:
            max_age = self.manager.config.cleanup.stale_after

        root = self.manager.root
        stale = await asyncio.to_thread(root.find_stale, max_age)
        cleaned = 0
        orphans = []

        for store in stale:
            session = self.manager.registry.get(store.path.name)
            if session is None or session.store.path != store.path:
                orphans.append(store)
            elif await self.manager.cleanup.cleanup_now(session):
                cleaned += 1

        cleaned += await asyncio.to_thread(root.remove_stores, orphans)

        if cleaned:
            logger.info(f"Cleaned {cleaned} old sessions")
        return cleaned
