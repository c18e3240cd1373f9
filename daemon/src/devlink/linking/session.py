"""Linking session state machine.

Represents one in-flight attempt to link a device, with its state
transitions, its named timers and its event queue.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Coroutine, Optional

from devlink.credentials import CredentialStore
from devlink.protocol import LinkEvent, ProtocolSocket

logger = logging.getLogger(__name__)

EventHandler = Callable[["LinkSession", LinkEvent], Awaitable[None]]


class LinkMode(Enum):
    """How the device is being linked."""

    PAIRING = "pairing"
    QR = "qr"


class LinkStatus(Enum):
    """Linking session states."""

    CREATED = auto()
    AWAITING_CODE = auto()
    QR_ISSUED = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    CLOSED = auto()
    EXPIRED = auto()
    FAILED = auto()


TERMINAL_STATUSES = frozenset(
    {LinkStatus.CLOSED, LinkStatus.EXPIRED, LinkStatus.FAILED}
)

VALID_TRANSITIONS = {
    LinkStatus.CREATED: {
        LinkStatus.AWAITING_CODE,
        LinkStatus.QR_ISSUED,
        LinkStatus.CONNECTING,
        LinkStatus.CLOSED,
        LinkStatus.EXPIRED,
        LinkStatus.FAILED,
    },
    LinkStatus.AWAITING_CODE: {
        LinkStatus.CONNECTING,
        LinkStatus.CLOSED,
        LinkStatus.FAILED,
    },
    LinkStatus.QR_ISSUED: {
        LinkStatus.CONNECTING,
        LinkStatus.CLOSED,
        LinkStatus.FAILED,
    },
    LinkStatus.CONNECTING: {
        LinkStatus.CONNECTED,
        LinkStatus.CLOSED,
        LinkStatus.FAILED,
    },
    LinkStatus.CONNECTED: {LinkStatus.CLOSED, LinkStatus.FAILED},
    # Reopen during the QR reconnect grace window
    LinkStatus.CLOSED: {LinkStatus.CONNECTING},
    LinkStatus.EXPIRED: set(),
    LinkStatus.FAILED: set(),
}


@dataclass
class LinkSession:
    """Represents one linking attempt.

    Attributes:
        session_id: Unique session identifier.
        mode: Pairing code or QR flow.
        store: Credential store owned by this session until cleanup.
        created_at: Unix timestamp when session was created.
        status: Current state.
        socket: The protocol socket bound to this session (set once).
        user_id: Linked identity reported when the connection opened.
        responded: True once the caller received the primary result.
        cleaned: True once cleanup has started.
        socket_closed: True once the socket closed or close was requested.
        welcomed: True once the welcome notification was attempted.
        timers: Named pending deferred actions.
    """

    session_id: str
    mode: LinkMode
    store: CredentialStore
    created_at: float = field(default_factory=time.time)
    status: LinkStatus = LinkStatus.CREATED

    socket: Optional[ProtocolSocket] = None
    user_id: Optional[str] = None
    responded: bool = False
    cleaned: bool = False
    socket_closed: bool = False
    welcomed: bool = False
    timers: dict[str, asyncio.Task] = field(default_factory=dict, repr=False)

    _events: asyncio.Queue = field(default_factory=asyncio.Queue, repr=False)
    _pump_task: Optional[asyncio.Task] = field(default=None, repr=False)
    _result: Optional[asyncio.Future] = field(default=None, repr=False)
    _value: Any = field(default=None, repr=False)
    _error: Optional[BaseException] = field(default=None, repr=False)

    @property
    def credential_path(self):
        return self.store.path

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition_to(self, new_state: LinkStatus) -> None:
        """Transition to a new state with validation.

        Args:
            new_state: Target state.

        Raises:
            ValueError: If transition is not valid from current state.
        """
        if new_state not in VALID_TRANSITIONS.get(self.status, set()):
            raise ValueError(f"Invalid transition: {self.status} -> {new_state}")

        logger.debug(f"Session {self.session_id}: {self.status.name} -> {new_state.name}")
        self.status = new_state

    def bind_socket(self, socket: ProtocolSocket) -> None:
        """Bind the session's one and only protocol socket."""
        if self.socket is not None:
            raise ValueError(f"Session {self.session_id} already has a socket")
        self.socket = socket

    # ------------------------------------------------------------------
    # Primary result (delivered at most once)
    # ------------------------------------------------------------------

    def _settle(self) -> None:
        future = self._result
        if future is None or future.done() or not self.responded:
            return
        if self._error is not None:
            future.set_exception(self._error)
        else:
            future.set_result(self._value)

    def respond(self, result: Any) -> bool:
        """Deliver the primary result to the caller.

        Returns:
            True if delivered, False if a result was already delivered.
        """
        if self.responded:
            return False
        self.responded = True
        self._value = result
        self._settle()
        return True

    def fail(self, error: BaseException) -> bool:
        """Deliver a failure as the primary result.

        Returns:
            True if delivered, False if a result was already delivered.
        """
        if self.responded:
            return False
        self.responded = True
        self._error = error
        self._settle()
        return True

    async def wait_result(self) -> Any:
        """Wait for the primary result (raises if it was a failure)."""
        if self._result is None:
            self._result = asyncio.get_running_loop().create_future()
            self._settle()
        return await asyncio.shield(self._result)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def schedule(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run ``coro`` as the session's timer called ``name``.

        Any pending timer with the same name is canceled first.
        """
        self.cancel_timer(name)
        task = asyncio.create_task(coro, name=f"{self.session_id}:{name}")
        self.timers[name] = task

        def _forget(done: asyncio.Task) -> None:
            if self.timers.get(name) is done:
                del self.timers[name]

        task.add_done_callback(_forget)
        return task

    def cancel_timer(self, name: str) -> bool:
        """Cancel one named timer.

        Returns:
            True if a pending timer was canceled.
        """
        task = self.timers.get(name)
        if task is None or task is asyncio.current_task():
            return False
        del self.timers[name]
        if task.done():
            return False
        task.cancel()
        return True

    def cancel_timers(self, keep: tuple[str, ...] = ()) -> None:
        """Cancel every pending timer except those named in ``keep``.

        The calling task is never canceled.
        """
        for name in list(self.timers):
            if name not in keep:
                self.cancel_timer(name)

    def has_timer(self, name: str) -> bool:
        task = self.timers.get(name)
        return task is not None and not task.done()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def emit(self, event: LinkEvent) -> None:
        """Queue an event from the socket. Dropped once cleanup started."""
        if self.cleaned:
            logger.debug(
                f"Dropping {type(event).__name__} for cleaned session {self.session_id}"
            )
            return
        self._events.put_nowait(event)

    def start_pump(self, handler: EventHandler) -> None:
        """Start consuming queued events with ``handler``, one at a time."""
        if self._pump_task is not None:
            raise RuntimeError(f"Session {self.session_id} is already running")
        self._pump_task = asyncio.create_task(
            self._pump(handler), name=f"{self.session_id}:events"
        )

    def stop_pump(self) -> None:
        """Stop consuming events (never cancels the calling task)."""
        task = self._pump_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

        # Unhandled events would keep wait_idle() blocked forever
        while not self._events.empty():
            self._events.get_nowait()
            self._events.task_done()

    async def wait_idle(self) -> None:
        """Wait until every queued event has been handled."""
        await self._events.join()

    async def _pump(self, handler: EventHandler) -> None:
        while True:
            event = await self._events.get()
            try:
                if not self.cleaned:
                    await handler(self, event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Session {self.session_id}: error handling "
                    f"{type(event).__name__}: {e}"
                )
            finally:
                self._events.task_done()
