"""Pairing code linking flow.

The caller supplies a phone number and gets back a numeric pairing code
to type on the device. Once the device links, a single welcome message
is sent, the socket is closed and the credentials are discarded.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from devlink.errors import ProvisioningError, ValidationError
from devlink.linking.cleanup import CLEANUP_TIMER
from devlink.linking.flow import SEQUENCE_TIMER, LinkFlow
from devlink.linking.session import LinkMode, LinkSession, LinkStatus
from devlink.protocol import Closed, Opened

logger = logging.getLogger(__name__)

NON_DIGITS = re.compile(r"[^0-9]")


@dataclass(frozen=True)
class PairingResult:
    """Pairing code issued for a session."""

    code: str
    session_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "sessionId": self.session_id}


class PairingFlow(LinkFlow):
    """Orchestrates the numeric pairing code path."""

    mode = LinkMode.PAIRING

    @property
    def config(self):
        return self.manager.config.pairing

    def normalize_number(self, number: Optional[str]) -> str:
        """Strip everything but digits from a phone number.

        Raises:
            ValidationError: If the number is missing or too short.
        """
        if not number:
            raise ValidationError("Phone number is required")
        if not isinstance(number, str):
            number = str(number)

        digits = NON_DIGITS.sub("", number)
        if len(digits) < self.config.min_digits:
            raise ValidationError("Invalid phone number format")
        return digits

    async def start(self, number: Optional[str]) -> PairingResult:
        """Start a pairing session and request its code.

        Args:
            number: Destination phone number in any formatting.

        Returns:
            The issued code and the session ID.

        Raises:
            ValidationError: Bad number; nothing was created.
            ProvisioningError: Session setup or code request failed; the
                session has already been cleaned up.
        """
        clean_number = self.normalize_number(number)
        session = await self.manager.open_session(self)

        try:
            code = await session.socket.request_pairing_code(clean_number)
        except Exception as e:
            logger.error(f"Pairing error for {session.session_id}: {e}")
            if not session.is_terminal:
                session.transition_to(LinkStatus.FAILED)
            error = ProvisioningError("Failed to generate pairing code. Please try again.")
            await self.manager.cleanup.cleanup_now(session, error=error)
            raise error from e

        result = PairingResult(code=code, session_id=session.session_id)
        if session.status == LinkStatus.CREATED:
            session.transition_to(LinkStatus.AWAITING_CODE)
        if not session.respond(result):
            # Connection closed and the session was torn down meanwhile
            raise ProvisioningError("Failed to generate pairing code. Please try again.")

        logger.info(f"Pairing code generated for session {session.session_id}")
        return result

    async def on_opened(self, session: LinkSession, event: Opened) -> None:
        if session.status == LinkStatus.CREATED:
            # Code still pending: hold this and later events until it is issued
            try:
                await session.wait_result()
            except Exception as e:
                logger.debug(f"Dropping open for session {session.session_id}: {e}")
                return

        if session.status != LinkStatus.AWAITING_CODE:
            logger.debug(
                f"Ignoring open for session {session.session_id} in {session.status.name}"
            )
            return

        session.user_id = event.user_id or session.user_id
        session.transition_to(LinkStatus.CONNECTING)
        logger.info(f"Session {session.session_id} connected successfully")
        session.schedule(SEQUENCE_TIMER, self._finish_link(session))

    async def _finish_link(self, session: LinkSession) -> None:
        """Welcome, close, then clean up, one step after another."""
        await asyncio.sleep(self.config.welcome_delay)
        session.transition_to(LinkStatus.CONNECTED)
        await self.send_welcome(session)

        await asyncio.sleep(self.config.close_delay)
        await self.close_socket(session)

        await asyncio.sleep(self.config.cleanup_delay)
        self.manager.cleanup.schedule_cleanup(session, 0)

    async def on_closed(self, session: LinkSession, event: Closed) -> None:
        logger.info(f"Session {session.session_id} connection closed")
        session.socket_closed = True
        if not session.is_terminal:
            session.transition_to(LinkStatus.CLOSED)
        session.cancel_timers(keep=(CLEANUP_TIMER,))
        self.manager.cleanup.schedule_cleanup(session, 0)
