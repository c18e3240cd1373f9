"""Render a QR payload for the command line.

The HTTP API hands out the raw payload string; this is only used by the
``devlink qr`` command to show it in a terminal or save it as a PNG.
"""

import io

import qrcode
from qrcode.main import QRCode


class QrRenderer:
    """Render a linking QR payload."""

    def __init__(self, payload: str):
        """Initialize renderer.

        Args:
            payload: Opaque QR payload issued by the protocol handshake.
        """
        if not payload:
            raise ValueError("QR payload is empty")
        self.payload = payload

    def _create_qr(self) -> QRCode:
        qr = qrcode.QRCode(
            version=None,  # Auto-size
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=10,
            border=4,
        )
        qr.add_data(self.payload)
        qr.make(fit=True)
        return qr

    def to_terminal(self) -> str:
        """Generate ASCII art for terminal display."""
        qr = self._create_qr()

        output = io.StringIO()
        qr.print_ascii(out=output, invert=True)
        return output.getvalue()

    def to_png(self, path: str) -> None:
        """Save QR code as PNG file."""
        qr = self._create_qr()
        img = qr.make_image(fill_color="black", back_color="white")
        img.save(path)
