"""Base64 helpers used for every value the vault persists."""
import base64
import binascii

from .exceptions import DecodeError


def encode_base64(data: bytes) -> str:
    """Encode raw bytes as a standard base64 ASCII string."""
    return base64.b64encode(data).decode("ascii")


def decode_base64(value: str) -> bytes:
    """Decode a standard base64 string.

    Raises:
        DecodeError: If ``value`` is not well-formed base64.
    """
    if not isinstance(value, (str, bytes)):
        raise DecodeError(f"Expected base64 text, got {type(value).__name__}")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as err:
        raise DecodeError(f"Malformed base64 input: {err}") from err
