"""Protocol socket interface and the events it reports.

The messaging network's handshake lives outside devlink. A socket factory
opens one socket per linking session, bound to that session's credential
state, and the socket reports what happens through a closed set of typed
events passed to ``emit``.
"""

import importlib
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Union

from devlink.errors import SocketFactoryError


@dataclass(frozen=True)
class Opened:
    """Connection to the network is open; the device is linked."""

    user_id: Optional[str] = None


@dataclass(frozen=True)
class Closed:
    """Connection closed, by either side."""

    reason: Optional[str] = None


@dataclass(frozen=True)
class QrIssued:
    """Handshake produced a (possibly refreshed) QR payload."""

    payload: str


@dataclass(frozen=True)
class CredentialsUpdated:
    """Credential state changed and should be persisted."""

    state: dict[str, Any] = field(default_factory=dict)


LinkEvent = Union[Opened, Closed, QrIssued, CredentialsUpdated]

# Sink the socket calls for every event. Must not block.
EventSink = Callable[[LinkEvent], None]


class ProtocolSocket(Protocol):
    """Commands accepted by a protocol socket."""

    async def request_pairing_code(self, number: str) -> str:
        """Ask the network for a pairing code for ``number``."""
        ...

    async def send_notification(self, recipient: str, text: str) -> None:
        """Send a text message to ``recipient``."""
        ...

    async def close(self) -> None:
        """Close the connection."""
        ...


class SocketFactory(Protocol):
    """Protocol for constructing sockets."""

    def open(self, credentials: dict[str, Any], emit: EventSink) -> ProtocolSocket:
        """Open a socket bound to ``credentials`` that reports through ``emit``."""
        ...


def load_socket_factory(import_path: str) -> SocketFactory:
    """Load a socket factory from a ``module:attribute`` import path.

    If the attribute is a class it is instantiated with no arguments.

    Raises:
        SocketFactoryError: If the path is malformed or cannot be imported.
    """
    module_name, sep, attr = import_path.partition(":")
    if not sep or not module_name or not attr:
        raise SocketFactoryError(
            f"Socket factory must look like 'module:attribute', got {import_path!r}"
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise SocketFactoryError(f"Cannot import {module_name}: {e}") from e

    try:
        target = getattr(module, attr)
    except AttributeError as e:
        raise SocketFactoryError(f"{module_name} has no attribute {attr}") from e

    factory = target() if isinstance(target, type) else target
    if not callable(getattr(factory, "open", None)):
        raise SocketFactoryError(f"{import_path} does not provide an open() method")
    return factory
