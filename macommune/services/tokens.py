"""
Verification token issuance.

A verification token is an opaque random identifier minted once per
demande. It is encoded into a public verification URL, and that URL is
encoded into a QR code printed on every rendered document.

Design guarantees:
- Tokens are uuid4 values (122 random bits), never derived from content
- The URL is a pure function of (configured base URL, token)
- The QR image is a pure function of the URL: same URL, same PNG bytes
"""

import base64
import io
import uuid
from urllib.parse import urlencode

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from macommune.core.config import Settings
from macommune.core.errors import TokenIssuanceError


class TokenIssuer:
    """Mints verification tokens and derives their URL and QR code."""

    def __init__(self, settings: Settings) -> None:
        self._base_url = str(settings.verification_base_url).rstrip("/")

    @staticmethod
    def mint_token() -> str:
        return str(uuid.uuid4())

    def verification_url(self, token: str) -> str:
        if not token:
            raise TokenIssuanceError("Cannot build a verification URL without a token.")
        return f"{self._base_url}?{urlencode({'token': token})}"

    @staticmethod
    def qr_code_data_uri(url: str) -> str:
        """
        Encode the URL as a PNG QR code and return it as a data URI.

        Raises:
            TokenIssuanceError:
                If the URL cannot be encoded. Callers must abort the whole
                operation rather than render a document with a broken code.
        """
        try:
            qr = qrcode.QRCode(
                version=None,
                error_correction=ERROR_CORRECT_M,
                box_size=8,
                border=2,
            )
            qr.add_data(url)
            qr.make(fit=True)
            img = qr.make_image(fill_color="black", back_color="white")

            buffer = io.BytesIO()
            img.save(buffer, format="PNG")
        except Exception as exc:
            raise TokenIssuanceError(
                f"Failed to encode verification QR code: {exc}"
            ) from exc

        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        return f"data:image/png;base64,{encoded}"
