"""Signing tokens and signature image payloads."""

import base64
import binascii
import secrets
from typing import Optional

from ..contracts.exceptions import ValidationError

# 32 random bytes, i.e. 256 bits of entropy.
TOKEN_BYTES = 32

MAX_SIGNATURE_BYTES = 2 * 1024 * 1024


def generate_token() -> str:
    """Create a URL-safe bearer token for one signing session."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def token_hint(token: Optional[str]) -> str:
    """Loggable prefix of a token."""
    if not token:
        return "-"
    return f"{token[:6]}..."


def signing_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/contracts/{token}"


def normalize_signature_data(signature_data: Optional[str]) -> str:
    """Validate a base64 signature image and strip any ``data:`` URL prefix."""
    if not signature_data or not signature_data.strip():
        raise ValidationError("signature_data is required", field="signature_data")

    data = signature_data.strip()
    if data.startswith("data:"):
        header, _, data = data.partition(",")
        if ";base64" not in header:
            raise ValidationError("signature_data must be base64 encoded", field="signature_data")

    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("signature_data is not valid base64", field="signature_data")

    if not raw:
        raise ValidationError("signature_data is empty", field="signature_data")
    if len(raw) > MAX_SIGNATURE_BYTES:
        raise ValidationError("signature_data is too large", field="signature_data")
    return data
