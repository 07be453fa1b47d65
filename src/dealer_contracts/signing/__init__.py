"""Remote and in-person signature collection."""

from .manager import SignatureRequestManager, SigningInvitation, expire_signature
from .tokens import generate_token, signing_url, token_hint

__all__ = [
    'SignatureRequestManager',
    'SigningInvitation',
    'expire_signature',
    'generate_token',
    'signing_url',
    'token_hint',
]
