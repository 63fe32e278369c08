"""
auth/mfa.py -- TOTP multi-factor authentication helpers.

Secrets are base32 strings generated by pyotp. The authenticator app is
enrolled by scanning a QR code of the otpauth:// provisioning URI; the QR
PNG is returned to the browser as a data URL so no file is written.

verify_code() accepts one 30-second step of clock drift either side.
"""

from __future__ import annotations

import base64
import io

import pyotp
import qrcode

MFA_ISSUER = "pcvisor"


def generate_secret() -> str:
    return pyotp.random_base32()


def provisioning_uri(secret: str, account_name: str, issuer: str = MFA_ISSUER) -> str:
    return pyotp.totp.TOTP(secret).provisioning_uri(name=account_name, issuer_name=issuer)


def qr_code_data_url(uri: str) -> str:
    """Render uri as a PNG QR code and return it as a data: URL."""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(uri)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


def verify_code(secret: str | None, code: str) -> bool:
    if not secret or not code:
        return False
    return pyotp.TOTP(secret).verify(code.strip(), valid_window=1)
