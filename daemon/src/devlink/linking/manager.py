"""Link manager allocates linking sessions and owns their shared pieces.

Holds the identifier generator, the credential root, the socket factory,
the registry of live sessions and the cleanup scheduler. Everything is
passed in or built per instance; there is no module-level state.

Usage:
    manager = LinkManager(socket_factory, config)
    await manager.start()

    result = await manager.pairing.start("+1 555-0100")
    result = await manager.qr.start()

    await manager.stop()
"""

import asyncio
import logging
from typing import Optional

from devlink.config import Config
from devlink.credentials import CredentialRoot
from devlink.errors import ProvisioningError
from devlink.ids import IdGenerator
from devlink.linking.cleanup import CleanupScheduler
from devlink.linking.flow import LinkFlow
from devlink.linking.pairing_flow import PairingFlow
from devlink.linking.qr_flow import QrFlow
from devlink.linking.session import LinkSession, LinkStatus
from devlink.protocol import SocketFactory
from devlink.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class LinkManager:
    """Creates linking sessions and wires them to a flow."""

    def __init__(
        self,
        socket_factory: SocketFactory,
        config: Optional[Config] = None,
        ids: Optional[IdGenerator] = None,
        root: Optional[CredentialRoot] = None,
    ):
        """Initialize manager.

        Args:
            socket_factory: Opens one protocol socket per session.
            config: Timing and storage configuration.
            ids: Session identifier generator.
            root: Directory holding all credential stores.
        """
        self.config = config or Config()
        self.socket_factory = socket_factory
        self.ids = ids or IdGenerator(
            prefix=self.config.ids.prefix, version=self.config.ids.version
        )
        self.root = root or CredentialRoot(self.config.sessions_dir)

        self.registry = SessionRegistry()
        self.cleanup = CleanupScheduler(self.registry)
        self.pairing = PairingFlow(self)
        self.qr = QrFlow(self)

        self._running = False
        self._sweep_task: Optional[asyncio.Task] = None

    async def open_session(self, flow: LinkFlow) -> LinkSession:
        """Allocate a session, its credential store and its socket.

        Anything created before a failure is torn down before raising.

        Raises:
            ProvisioningError: If the store or socket could not be set up.
        """
        session_id = self.ids.generate_session_id()
        session = LinkSession(
            session_id=session_id,
            mode=flow.mode,
            store=self.root.store_for(session_id),
        )
        self.registry.add(session)

        try:
            await asyncio.to_thread(session.store.create)
            credentials = await asyncio.to_thread(session.store.load)
            session.bind_socket(self.socket_factory.open(credentials, session.emit))
        except Exception as e:
            logger.error(f"Session error for {session_id}: {e}")
            session.transition_to(LinkStatus.FAILED)
            error = ProvisioningError("Internal server error. Please try again later.")
            await self.cleanup.cleanup_now(session, error=error)
            raise error from e

        session.start_pump(flow.handle_event)
        logger.debug(f"Session {session_id} opened ({flow.mode.value})")
        return session

    def get_session(self, session_id: str) -> Optional[LinkSession]:
        """Get a live session by ID."""
        return self.registry.get(session_id)

    def is_expired(self, session_id: str) -> bool:
        """Check a session ID against the configured session timeout."""
        return self.ids.is_session_expired(
            session_id, self.config.ids.session_timeout_ms
        )

    async def start(self) -> None:
        """Start the periodic stale sweep, if configured."""
        if self._running:
            return

        self._running = True
        interval = self.config.cleanup.sweep_interval
        if interval > 0:
            self._sweep_task = asyncio.create_task(self._sweep_loop(interval))
            logger.info(f"Stale session sweep every {interval}s")

    async def _sweep_loop(self, interval: float) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval)
                await self.qr.sweep_stale()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Stale sweep error: {e}")

    async def stop(self) -> None:
        """Stop sweeping and clean up every live session."""
        self._running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        count = await self.cleanup.cleanup_all()
        logger.info(f"Link manager stopped ({count} sessions cleaned up)")
