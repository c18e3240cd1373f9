"""Deferred, idempotent teardown of linking sessions."""

import asyncio
import logging
from typing import Optional

from devlink.errors import ProvisioningError, StorageError
from devlink.linking.session import LinkSession
from devlink.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

CLEANUP_TIMER = "cleanup"


class CleanupScheduler:
    """Schedules and runs removal of a session's credential store.

    Cleanup is fire-and-forget for the caller: scheduling returns at once
    and the removal runs later on its own task. Running cleanup a second
    time for the same session does nothing.
    """

    def __init__(self, registry: SessionRegistry):
        """Initialize scheduler.

        Args:
            registry: Live sessions; cleaned sessions are removed from it.
        """
        self._registry = registry

    def schedule_cleanup(
        self, session: LinkSession, delay: float = 0.0
    ) -> Optional[asyncio.Task]:
        """Clean up ``session`` after ``delay`` seconds.

        Replaces any cleanup already scheduled for the session.

        Returns:
            The scheduled task, or None if the session is already cleaned.
        """
        if session.cleaned:
            return None
        logger.debug(f"Cleanup of {session.session_id} scheduled in {delay}s")
        return session.schedule(CLEANUP_TIMER, self._delayed_cleanup(session, delay))

    async def _delayed_cleanup(self, session: LinkSession, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        await self.cleanup_now(session)

    async def cleanup_now(
        self, session: LinkSession, error: Optional[BaseException] = None
    ) -> bool:
        """Tear the session down immediately.

        Cancels the session's timers and event handling, closes its socket
        if still open, then removes its credential store. A caller still
        waiting for the session's result receives ``error`` afterwards.

        Args:
            session: Session to tear down.
            error: Failure delivered to an unanswered caller.

        Returns:
            True if this call performed the cleanup, False if it had
            already been done.
        """
        if session.cleaned:
            return False
        session.cleaned = True

        session.cancel_timers()
        session.stop_pump()

        if session.socket is not None and not session.socket_closed:
            session.socket_closed = True
            try:
                await session.socket.close()
            except Exception as e:
                logger.warning(f"Socket close failed for {session.session_id}: {e}")

        try:
            removed = await asyncio.to_thread(session.store.delete_tree)
        except StorageError as e:
            logger.error(f"Credential cleanup failed for {session.session_id}: {e}")
            removed = False

        self._registry.remove(session.session_id)

        if not session.responded:
            session.fail(
                error
                or ProvisioningError("Linking session ended before a result was available")
            )

        logger.info(
            f"Session cleaned up: {session.session_id} "
            f"({session.status.name.lower()}, store {'removed' if removed else 'absent'})"
        )
        return True

    async def cleanup_all(self) -> int:
        """Clean up every live session. Used on shutdown."""
        count = 0
        for session in self._registry.list_all():
            if await self.cleanup_now(session):
                count += 1
        return count
