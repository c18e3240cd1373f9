"""Base exceptions for devlink."""


class DevlinkError(Exception):
    """Base exception for all devlink errors."""

    pass


class ValidationError(DevlinkError):
    """Request input rejected before any session was created."""

    pass


class ProvisioningError(DevlinkError):
    """Session resources could not be set up (store, socket, pairing code)."""

    pass


class LinkTimeoutError(DevlinkError):
    """No QR payload arrived within the issuance window."""

    pass


class StorageError(DevlinkError):
    """Credential store operation error."""

    pass


class SocketFactoryError(DevlinkError):
    """Configured socket factory could not be loaded."""

    pass
