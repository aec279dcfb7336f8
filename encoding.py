"""
base64url helpers for the wire format.

All binary values exchanged with the browser are base64url without padding,
the same encoding the browser uses for ``clientDataJSON.challenge``.
"""
import binascii

from webauthn.helpers import base64url_to_bytes, bytes_to_base64url

from errors import InvalidInputError


def urlsafe_b64encode_no_padding(b: bytes) -> str:
    """Convert bytes to base64-url-safe string without padding"""
    return bytes_to_base64url(b)


def decode_field(value, name, error=InvalidInputError) -> bytes:
    """Decode a required base64url field, raising ``error`` when it is absent or invalid"""
    if not isinstance(value, str) or not value:
        raise error(f'Missing {name}')
    try:
        return base64url_to_bytes(value)
    except (binascii.Error, ValueError) as e:
        raise error(f'Invalid base64url in {name}') from e
