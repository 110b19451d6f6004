"""
qrlogin/imaging.py -- Renders a QR login payload into a PNG data URI.

The browser drops the returned string straight into an <img src="...">.
"""

from __future__ import annotations

import base64
import io

import qrcode
from qrcode.exceptions import DataOverflowError

from core.errors import InternalError

_DATA_URI_PREFIX = "data:image/png;base64,"


def render_qr_data_uri(payload: str, box_size: int = 8, border: int = 4) -> str:
    """Encode `payload` as a QR code and return it as a base64 PNG data URI.

    Raises InternalError if the payload cannot be encoded or the image cannot
    be written.
    """
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    try:
        qr.add_data(payload)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")
        buffered = io.BytesIO()
        img.save(buffered, format="PNG")
    except (DataOverflowError, OSError, ValueError) as exc:
        raise InternalError("Failed to generate QR code.") from exc
    return _DATA_URI_PREFIX + base64.b64encode(buffered.getvalue()).decode("ascii")
