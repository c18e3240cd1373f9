"""Linking module for devlink.

Provides device linking functionality including:
- Linking session state machine
- Pairing code and QR code flows
- Deferred credential cleanup
"""

from .cleanup import CleanupScheduler
from .manager import LinkManager
from .pairing_flow import PairingFlow, PairingResult
from .qr_flow import QrFlow, QrResult
from .session import LinkMode, LinkSession, LinkStatus

__all__ = [
    "CleanupScheduler",
    "LinkManager",
    "LinkMode",
    "LinkSession",
    "LinkStatus",
    "PairingFlow",
    "PairingResult",
    "QrFlow",
    "QrResult",
]
