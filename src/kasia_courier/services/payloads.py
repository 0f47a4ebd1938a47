"""Builders and parsers for Kasia handshake and contextual-message payloads.

Handshakes reach us in several historical encodings, depending on the sender
and on how the indexer passed the bytes through:

- canonical: ``ciph_msg:<hex(json)>`` or bare JSON text
- the same, hex-encoded once or twice by the indexer
- legacy compact: ``ciph_msg:1:{handshake|handshake_r|hs|hr}:convId:recipient:alias:ts36``

Parsing tries an ordered list of decoders and keeps the first success.
Malformed payloads yield ``None``; they never raise.
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from cryptography.hazmat.primitives.asymmetric import ec

from kasia_courier.db.time import from_epoch_ms, to_epoch_ms, utcnow
from kasia_courier.services.cipher import DecryptionError, open_sealed, seal_to_public_key
from kasia_courier.utils.address import public_key_from_address, short_address
from kasia_courier.utils.encoding import hex_to_string, is_hex, string_to_hex

logger = logging.getLogger(__name__)

KASIA_PREFIX = "ciph_msg"
KASIA_VERSION = "1"
KASIA_DELIM = ":"
HANDSHAKE_VERSION = 1

HANDSHAKE_TAGS = {"handshake": False, "handshake_r": True, "hs": False, "hr": True}
COMM_TAG = "comm"
COMM_HEADER = f"{KASIA_PREFIX}{KASIA_DELIM}{KASIA_VERSION}{KASIA_DELIM}{COMM_TAG}{KASIA_DELIM}"

MAX_HANDSHAKE_BYTES = 2048
MAX_COMM_BYTES = 4096

SHORT_CONVERSATION_ID_LENGTH = 8
SHORT_ALIAS_LENGTH = 6
_ALIAS_SANITIZER = re.compile(r"[^a-zA-Z0-9_-]")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_MAX_HEX_LAYERS = 2


class PayloadTooLargeError(ValueError):
    """Raised when a payload exceeds its message-class byte ceiling."""

    def __init__(self, kind: str, size: int, limit: int) -> None:
        super().__init__(f"{kind} payload is {size} bytes, exceeding the {limit}-byte limit")
        self.kind = kind
        self.size = size
        self.limit = limit


@dataclass(frozen=True)
class HandshakePayload:
    """Decoded handshake metadata.

    ``recipient_address`` is the logical recipient named by the sender and is
    authoritative over the ledger-level receiver. ``timestamp`` is epoch ms.
    """

    conversation_id: str | None
    recipient_address: str | None
    alias: str | None
    timestamp: int | None
    is_response: bool


@dataclass(frozen=True)
class CommPayload:
    """Decoded contextual message: routing alias plus the still-encrypted token."""

    alias: str
    content: str


HandshakeDecoder = Callable[[str], HandshakePayload | None]


def ensure_size(kind: str, payload: str, limit: int) -> str:
    """Return ``payload`` unchanged if its UTF-8 size is within ``limit``.

    Raises:
        PayloadTooLargeError: If the payload is over the ceiling.
    """
    size = len(payload.encode("utf-8"))
    if size > limit:
        raise PayloadTooLargeError(kind, size, limit)
    return payload


def to_base36(value: int) -> str:
    """Encode a non-negative integer in lowercase base 36."""
    if value < 0:
        raise ValueError("Base-36 timestamps must be non-negative")
    digits = []
    while True:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
        if value == 0:
            return "".join(reversed(digits))


def _parse_timestamp(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        # JSON admits Infinity and NaN.
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str) and value:
        try:
            return to_epoch_ms(datetime.fromisoformat(value))
        except (ValueError, OverflowError):
            return None
    return None


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


def _from_json_object(text: str) -> HandshakePayload | None:
    try:
        data = json.loads(text)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    if not any(key in data for key in ("conversation_id", "alias", "recipient_address")):
        return None
    return HandshakePayload(
        conversation_id=_optional_str(data.get("conversation_id")),
        recipient_address=_optional_str(data.get("recipient_address")),
        alias=_optional_str(data.get("alias")),
        timestamp=_parse_timestamp(data.get("timestamp")),
        is_response=data.get("is_response") is True,
    )


def decode_json_handshake(text: str) -> HandshakePayload | None:
    """Decode bare JSON text or the ``ciph_msg:<hex(json)>`` envelope."""
    text = text.strip()
    if text.startswith("{"):
        return _from_json_object(text)
    prefix = f"{KASIA_PREFIX}{KASIA_DELIM}"
    if text.startswith(prefix):
        body = text[len(prefix) :]
        if KASIA_DELIM not in body and is_hex(body):
            inner = hex_to_string(body)
            if inner.startswith("{"):
                return _from_json_object(inner)
    return None


def decode_compact_handshake(text: str) -> HandshakePayload | None:
    """Decode the legacy colon-delimited handshake.

    The recipient may itself contain the delimiter (``kaspa:...``), so the
    alias and timestamp are read from the end.
    """
    parts = text.strip().split(KASIA_DELIM)
    if len(parts) < 6 or parts[0] != KASIA_PREFIX or parts[2] not in HANDSHAKE_TAGS:
        return None

    if len(parts) == 6:
        recipient, alias, encoded_ts = parts[4], parts[5], ""
    else:
        recipient = KASIA_DELIM.join(parts[4:-2])
        alias, encoded_ts = parts[-2], parts[-1]

    timestamp: int | None = None
    if encoded_ts:
        try:
            timestamp = int(encoded_ts, 36)
        except (ValueError, OverflowError):
            timestamp = None

    return HandshakePayload(
        conversation_id=parts[3] or None,
        recipient_address=recipient or None,
        alias=alias or None,
        timestamp=timestamp,
        is_response=HANDSHAKE_TAGS[parts[2]],
    )


def _hex_layers(payload: str) -> list[str]:
    layers = [payload.strip()]
    for _ in range(_MAX_HEX_LAYERS):
        current = layers[-1]
        if not is_hex(current):
            break
        decoded = hex_to_string(current)
        if not decoded:
            break
        layers.append(decoded)
    return layers


HANDSHAKE_DECODERS: tuple[HandshakeDecoder, ...] = (
    decode_json_handshake,
    decode_compact_handshake,
)


def parse_handshake_payload(payload: str | None) -> HandshakePayload | None:
    """Parse a handshake payload in any accepted encoding.

    Each decoder is tried against the raw text, then against one and two
    hex-decoded layers, before moving on to the next decoder.
    """
    if not payload:
        return None
    layers = _hex_layers(payload)
    for decoder in HANDSHAKE_DECODERS:
        for layer in layers:
            parsed = decoder(layer)
            if parsed is not None:
                return parsed
    logger.debug("Unrecognized handshake payload (%d chars)", len(payload))
    return None


def handshake_document(
    alias: str,
    recipient_address: str,
    conversation_id: str,
    *,
    is_response: bool = False,
    timestamp: datetime | None = None,
) -> dict[str, object]:
    """Return the canonical handshake JSON document."""
    moment = timestamp or utcnow()
    return {
        "alias": alias,
        "timestamp": from_epoch_ms(to_epoch_ms(moment)).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
        "conversation_id": conversation_id,
        "version": HANDSHAKE_VERSION,
        "recipient_address": recipient_address,
        "send_to_recipient": True,
        "is_response": True if is_response else None,
    }


def build_handshake_payload(
    alias: str,
    recipient_address: str,
    conversation_id: str,
    *,
    is_response: bool = False,
    timestamp: datetime | None = None,
) -> str:
    """Build the canonical ``ciph_msg:<hex(json)>`` handshake.

    Raises:
        PayloadTooLargeError: If the payload exceeds the handshake ceiling.
    """
    document = handshake_document(
        alias,
        recipient_address,
        conversation_id,
        is_response=is_response,
        timestamp=timestamp,
    )
    body = string_to_hex(json.dumps(document, separators=(",", ":")))
    return ensure_size("handshake", f"{KASIA_PREFIX}{KASIA_DELIM}{body}", MAX_HANDSHAKE_BYTES)


def build_compact_handshake(
    alias: str,
    recipient_address: str,
    conversation_id: str,
    *,
    is_response: bool = False,
    timestamp: datetime | None = None,
) -> str:
    """Build the compact ``hs``/``hr`` handshake for size-constrained senders.

    The conversation id, recipient and alias are shortened; receivers match the
    short forms against full values by prefix.
    """
    safe_alias = _ALIAS_SANITIZER.sub("", alias[:SHORT_ALIAS_LENGTH])
    fields = [
        KASIA_PREFIX,
        KASIA_VERSION,
        "hr" if is_response else "hs",
        conversation_id[:SHORT_CONVERSATION_ID_LENGTH],
        short_address(recipient_address),
        safe_alias,
        to_base36(to_epoch_ms(timestamp or utcnow())),
    ]
    return ensure_size("handshake", KASIA_DELIM.join(fields), MAX_HANDSHAKE_BYTES)


def build_comm_payload(alias: str, sealed_content: str) -> str:
    """Build ``ciph_msg:1:comm:{alias}:{sealed_content}``.

    Raises:
        ValueError: If the alias is empty or contains the delimiter.
        PayloadTooLargeError: If the payload exceeds the message ceiling.
    """
    if not alias or KASIA_DELIM in alias:
        raise ValueError("Conversation alias must be non-empty and contain no ':'")
    return ensure_size("comm", f"{COMM_HEADER}{alias}{KASIA_DELIM}{sealed_content}", MAX_COMM_BYTES)


def parse_comm_payload(payload: str | None) -> CommPayload | None:
    """Parse a contextual-message payload, raw or hex-encoded."""
    if not payload:
        return None
    for layer in _hex_layers(payload):
        if not layer.startswith(COMM_HEADER):
            continue
        alias, sep, content = layer[len(COMM_HEADER) :].partition(KASIA_DELIM)
        if sep and alias:
            return CommPayload(alias=alias, content=content)
    return None


def build_sealed_handshake(
    alias: str,
    recipient_address: str,
    conversation_id: str,
    *,
    is_response: bool = False,
    timestamp: datetime | None = None,
) -> str:
    """Build a handshake sealed to the recipient's address key: ``ciph_msg:<hex>``.

    Raises:
        InvalidAddressError: If no public key can be recovered from the address.
        PayloadTooLargeError: If the payload exceeds the handshake ceiling.
    """
    document = handshake_document(
        alias,
        recipient_address,
        conversation_id,
        is_response=is_response,
        timestamp=timestamp,
    )
    sealed = seal_to_public_key(
        public_key_from_address(recipient_address),
        json.dumps(document, separators=(",", ":")),
    )
    return ensure_size("handshake", f"{KASIA_PREFIX}{KASIA_DELIM}{sealed.hex()}", MAX_HANDSHAKE_BYTES)


def open_sealed_handshake(payload: str, private_key: ec.EllipticCurvePrivateKey) -> HandshakePayload | None:
    """Decrypt a sealed ``ciph_msg:<hex>`` handshake; ``None`` if it cannot be opened."""
    prefix = f"{KASIA_PREFIX}{KASIA_DELIM}"
    body = payload.strip()
    if body.startswith(prefix):
        body = body[len(prefix) :]
    if KASIA_DELIM in body or not is_hex(body):
        return None
    try:
        plaintext = open_sealed(private_key, bytes.fromhex(body))
    except DecryptionError as exc:
        logger.debug("Sealed handshake could not be opened: %s", exc)
        return None
    return _from_json_object(plaintext.decode("utf-8", errors="replace"))
