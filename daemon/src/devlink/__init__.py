"""devlink - link devices to a messaging account by pairing code or QR."""

__version__ = "1.0.0"
