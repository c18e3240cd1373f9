"""Session identifier and short code generation.

Session IDs have the form::

    DEVLINK_V1_<unix ms>_<8 alphanumerics>_<3 digit sequence>

The sequence counter restarts on every new millisecond and wraps modulo
1000, so IDs generated within the same millisecond stay distinct even if
the random part collides. All randomness comes from ``secrets``.
"""

import re
import secrets
import string
import time
from typing import Callable, Optional

ALPHANUMERIC = string.ascii_uppercase + string.ascii_lowercase + string.digits

DEFAULT_PREFIX = "DEVLINK"
DEFAULT_VERSION = "V1"
DEFAULT_SESSION_TIMEOUT_MS = 1_800_000  # 30 minutes
RANDOM_PART_LENGTH = 8
SEQUENCE_MODULUS = 1000


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class IdGenerator:
    """Generate and validate session identifiers.

    Stateless apart from the per-millisecond sequence counter. Construct one
    per process (or per test) and pass it to whoever needs IDs.
    """

    def __init__(
        self,
        prefix: str = DEFAULT_PREFIX,
        version: str = DEFAULT_VERSION,
        clock: Optional[Callable[[], int]] = None,
    ):
        """Initialize generator.

        Args:
            prefix: Leading ID component.
            version: Format version component.
            clock: Returns the current time in milliseconds. Injectable for tests.
        """
        if not re.fullmatch(r"[A-Za-z0-9]+", prefix) or not re.fullmatch(
            r"[A-Za-z0-9]+", version
        ):
            raise ValueError("prefix and version must be alphanumeric")

        self.prefix = prefix
        self.version = version
        self._clock = clock or _now_ms
        self._seq = 0
        self._last_timestamp = 0
        self._pattern = re.compile(
            rf"{re.escape(prefix)}_{re.escape(version)}_(\d+)_"
            rf"[A-Za-z0-9]{{{RANDOM_PART_LENGTH}}}_\d{{3}}"
        )

    def generate_session_id(self) -> str:
        """Generate a unique session ID."""
        timestamp = self._clock()
        random_part = self.generate_random_string(RANDOM_PART_LENGTH)

        if timestamp != self._last_timestamp:
            self._seq = 0
            self._last_timestamp = timestamp

        self._seq = (self._seq + 1) % SEQUENCE_MODULUS

        return (
            f"{self.prefix}_{self.version}_{timestamp}_{random_part}_{self._seq:03d}"
        )

    def generate_short_id(self, length: int = 8) -> str:
        """Generate a short alphanumeric ID for temporary use."""
        return self.generate_random_string(length)

    def generate_random_string(self, length: int = 12) -> str:
        """Generate a random alphanumeric string."""
        return "".join(secrets.choice(ALPHANUMERIC) for _ in range(length))

    def generate_numeric_code(self, length: int = 6) -> str:
        """Generate a numeric code (leading zeros allowed)."""
        return "".join(secrets.choice(string.digits) for _ in range(length))

    def generate_secure_token(self, nbytes: int = 32) -> str:
        """Generate a hex authentication token of ``2 * nbytes`` characters."""
        return secrets.token_hex(nbytes)

    def generate_batch(self, count: int = 3) -> list[str]:
        """Generate several session IDs at once."""
        return [self.generate_session_id() for _ in range(count)]

    def validate_session_id(self, session_id: str) -> bool:
        """Check whether a string matches the session ID format."""
        if not isinstance(session_id, str):
            return False
        return self._pattern.fullmatch(session_id) is not None

    def get_timestamp(self, session_id: str) -> Optional[int]:
        """Extract the embedded millisecond timestamp.

        Returns:
            Timestamp in ms, or None if the ID is malformed.
        """
        match = self._pattern.fullmatch(session_id) if isinstance(session_id, str) else None
        if match is None:
            return None
        return int(match.group(1))

    def is_session_expired(
        self, session_id: str, timeout_ms: int = DEFAULT_SESSION_TIMEOUT_MS
    ) -> bool:
        """Check whether more than ``timeout_ms`` passed since the ID was made.

        Malformed IDs are always treated as expired.
        """
        timestamp = self.get_timestamp(session_id)
        if not timestamp:
            return True
        return (self._clock() - timestamp) > timeout_ms
