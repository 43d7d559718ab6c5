"""
QR code generation for payment requests.

Payment requests are rendered as a ``kaspa:`` URI carrying the amount and
the request nonce, so a wallet scanning the code pays with a value the
merchant can match back to one request.
"""

from __future__ import annotations

import base64
import logging
from io import BytesIO
from typing import Optional
from urllib.parse import urlencode

import qrcode
from qrcode.image.pure import PyPNGImage

from ksynchrony.utils.formatting import format_kas

logger = logging.getLogger(__name__)


def build_payment_uri(address: str, amount_sompi: Optional[int] = None, nonce: Optional[str] = None) -> str:
    """Build a BIP21-style payment URI (the address already carries its scheme)."""
    params = {}
    if amount_sompi is not None:
        params["amount"] = format_kas(amount_sompi).rstrip("0").rstrip(".")
    if nonce:
        params["nonce"] = nonce
    if params:
        return f"{address}?{urlencode(params)}"
    return address


def generate_qr_code(data: str) -> str:
    """Render data as a PNG QR code and return it base64-encoded."""
    qr = qrcode.QRCode(
        version=None,  # Auto-size
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=4,
        image_factory=PyPNGImage,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image()
    buffer = BytesIO()
    img.save(buffer)
    return base64.b64encode(buffer.getvalue()).decode("ascii")
