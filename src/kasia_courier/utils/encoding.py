"""Byte-string conversions shared by every protocol layer."""

from __future__ import annotations

import base64
import binascii
import re

_HEX_RE = re.compile(r"^(?:[0-9a-fA-F]{2})+$")


def is_hex(value: str) -> bool:
    """Return True if ``value`` is a non-empty, even-length hex string."""
    return bool(_HEX_RE.match(value))


def string_to_hex(text: str) -> str:
    """Hex-encode the UTF-8 bytes of ``text``."""
    return text.encode("utf-8").hex()


def hex_to_string(hex_text: str) -> str:
    """Decode hex into UTF-8 text, returning an empty string for invalid input.

    Invalid UTF-8 sequences are replaced rather than rejected, matching how the
    indexer's own clients render payloads.
    """
    if not hex_text or not is_hex(hex_text):
        return ""
    return bytes.fromhex(hex_text).decode("utf-8", errors="replace")


def hex_to_bytes(hex_text: str) -> bytes:
    """Strictly decode a hex string.

    Raises:
        ValueError: If ``hex_text`` is not valid hex.
    """
    try:
        return bytes.fromhex(hex_text)
    except ValueError as err:
        raise ValueError(f"Invalid hex encoding: {err}") from err


def bytes_to_hex(data: bytes) -> str:
    """Return the lowercase hex encoding of ``data``."""
    return data.hex()


def b64_encode(data: bytes) -> str:
    """Encode bytes as URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def b64_decode(data: str) -> bytes:
    """Decode a URL-safe base64 string, accepting omitted padding."""
    padding = "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(data + padding)
    except (binascii.Error, ValueError) as err:
        raise ValueError(f"Invalid base64 encoding: {err}") from err


def utf8(value: str | bytes) -> bytes:
    """Return ``value`` as bytes, UTF-8 encoding text."""
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")
