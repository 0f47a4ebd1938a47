"""Authenticated encryption for conversation content.

Kasia-native ciphertexts are ChaCha20-Poly1305 under a fresh 12-byte nonce.
Tokens are hex-encoded and carry a scheme prefix so decoders can route them:

- ``sym:<hex>``: ``nonce || ciphertext+tag`` under a shared conversation key.
- ``ecies:<hex>``: an eciesjs-compatible ECIES message produced by ``eciespy``
  (uncompressed ephemeral key, AES-256-GCM), as written by existing Kasia clients.
- bare hex: ``nonce || ephemeral_pubkey || ciphertext+tag``, ChaCha20-Poly1305
  keyed by ECDH between the ephemeral key and the recipient's static key
  (sealed payloads and handshakes).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum

import ecies
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from kasia_courier.services.key_derivation import (
    KEY_LENGTH,
    compressed_public_key,
    ecdh_key,
    generate_ephemeral_key,
)
from kasia_courier.utils.address import load_public_key
from kasia_courier.utils.encoding import hex_to_bytes, is_hex, utf8

logger = logging.getLogger(__name__)

NONCE_LENGTH = 12
TAG_LENGTH = 16
COMPRESSED_KEY_LENGTH = 33
XONLY_KEY_LENGTH = 32

SHARED_PREFIX = "sym:"
EPHEMERAL_PREFIX = "ecies:"
LEGACY_PREFIX = "ciph_msg:"

_MIN_SEALED_LENGTH = NONCE_LENGTH + XONLY_KEY_LENGTH + TAG_LENGTH


class EncryptionError(ValueError):
    """Raised when plaintext cannot be encrypted (bad key or recipient)."""


class DecryptionError(ValueError):
    """Raised when a token cannot be decrypted or fails authentication."""


class CipherScheme(str, Enum):
    """Wire scheme of a message body, detected from its prefix."""

    SHARED = "sym"
    EPHEMERAL = "ecies"
    RAW_ECDH = "raw"
    LEGACY = "legacy"
    PLAINTEXT = "plaintext"


@dataclass(frozen=True)
class EncryptedMessage:
    """Decoded wire form of a ciphertext."""

    nonce: bytes
    ciphertext: bytes
    ephemeral_public_key: bytes | None = None

    def to_bytes(self) -> bytes:
        return self.nonce + (self.ephemeral_public_key or b"") + self.ciphertext

    @classmethod
    def from_bytes(cls, data: bytes, *, ephemeral: bool) -> EncryptedMessage:
        """Split raw bytes into their components.

        For ephemeral layouts the key size is inferred from the byte after the
        nonce: a SEC1 parity byte means a 33-byte compressed key, anything else a
        32-byte x-only key.

        Raises:
            DecryptionError: If ``data`` is too short to hold the layout.
        """
        if not ephemeral:
            if len(data) < NONCE_LENGTH + TAG_LENGTH:
                raise DecryptionError("Ciphertext is too short")
            return cls(nonce=data[:NONCE_LENGTH], ciphertext=data[NONCE_LENGTH:])

        if len(data) < _MIN_SEALED_LENGTH:
            raise DecryptionError("Sealed ciphertext is too short")
        key_size = COMPRESSED_KEY_LENGTH if data[NONCE_LENGTH] in (2, 3) else XONLY_KEY_LENGTH
        key_end = NONCE_LENGTH + key_size
        return cls(
            nonce=data[:NONCE_LENGTH],
            ephemeral_public_key=data[NONCE_LENGTH:key_end],
            ciphertext=data[key_end:],
        )


def _aead(key: bytes) -> ChaCha20Poly1305:
    if len(key) != KEY_LENGTH:
        raise ValueError(f"Key must be {KEY_LENGTH} bytes, got {len(key)}")
    return ChaCha20Poly1305(key)


def seal(key: bytes, plaintext: str | bytes) -> EncryptedMessage:
    """Encrypt ``plaintext`` under ``key`` with a fresh random nonce.

    Raises:
        EncryptionError: If ``key`` is not a 32-byte key.
    """
    try:
        aead = _aead(key)
    except ValueError as err:
        raise EncryptionError(str(err)) from err
    nonce = os.urandom(NONCE_LENGTH)
    return EncryptedMessage(nonce=nonce, ciphertext=aead.encrypt(nonce, utf8(plaintext), None))


def unseal(key: bytes, message: EncryptedMessage) -> bytes:
    """Decrypt and authenticate ``message`` under ``key``.

    Raises:
        DecryptionError: On a bad key or an authentication-tag mismatch.
    """
    try:
        return _aead(key).decrypt(message.nonce, message.ciphertext, None)
    except InvalidTag as err:
        raise DecryptionError("Authentication failed") from err
    except ValueError as err:
        raise DecryptionError(str(err)) from err


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as err:
        raise DecryptionError("Decrypted content is not valid UTF-8") from err


def _strip(token: str, prefix: str) -> bytes:
    body = token[len(prefix) :] if token.startswith(prefix) else token
    try:
        return hex_to_bytes(body)
    except ValueError as err:
        raise DecryptionError(str(err)) from err


def encrypt_shared(key: bytes, plaintext: str) -> str:
    """Encrypt under a shared conversation key, returning a ``sym:`` token."""
    return SHARED_PREFIX + seal(key, plaintext).to_bytes().hex()


def decrypt_shared(key: bytes, token: str) -> str:
    """Decrypt a ``sym:`` token (the prefix is optional)."""
    message = EncryptedMessage.from_bytes(_strip(token, SHARED_PREFIX), ephemeral=False)
    return _decode_text(unseal(key, message))


def seal_to_public_key(recipient_public_key: ec.EllipticCurvePublicKey, plaintext: str | bytes) -> bytes:
    """Encrypt to a static public key with a one-shot ephemeral key.

    Returns:
        ``nonce || compressed_ephemeral_pubkey || ciphertext+tag``.
    """
    ephemeral = generate_ephemeral_key()
    key = ecdh_key(ephemeral, recipient_public_key)
    sealed = seal(key, plaintext)
    return EncryptedMessage(
        nonce=sealed.nonce,
        ephemeral_public_key=compressed_public_key(ephemeral.public_key()),
        ciphertext=sealed.ciphertext,
    ).to_bytes()


def open_sealed(private_key: ec.EllipticCurvePrivateKey, data: bytes) -> bytes:
    """Decrypt bytes produced by :func:`seal_to_public_key`.

    Raises:
        DecryptionError: If the layout, ephemeral key or tag is invalid.
    """
    message = EncryptedMessage.from_bytes(data, ephemeral=True)
    try:
        peer = load_public_key(message.ephemeral_public_key or b"")
    except ValueError as err:
        raise DecryptionError(f"Invalid ephemeral public key: {err}") from err
    return unseal(ecdh_key(private_key, peer), message)


def _private_key_bytes(private_key: ec.EllipticCurvePrivateKey) -> bytes:
    return private_key.private_numbers().private_value.to_bytes(KEY_LENGTH, "big")


def encrypt_ephemeral(recipient_public_key: ec.EllipticCurvePublicKey, plaintext: str) -> str:
    """Encrypt to a recipient's static key, returning an eciesjs-compatible ``ecies:`` token."""
    sealed = ecies.encrypt(compressed_public_key(recipient_public_key), utf8(plaintext))
    return EPHEMERAL_PREFIX + sealed.hex()


def decrypt_ephemeral(private_key: ec.EllipticCurvePrivateKey, token: str) -> str:
    """Decrypt an ``ecies:`` token (the prefix is optional) with the static private key.

    Raises:
        DecryptionError: If the token is malformed or fails authentication.
    """
    data = _strip(token, EPHEMERAL_PREFIX)
    try:
        plaintext = ecies.decrypt(_private_key_bytes(private_key), data)
    except (InvalidTag, ValueError, TypeError) as err:
        raise DecryptionError(f"ECIES decryption failed: {err}") from err
    return _decode_text(plaintext)


def encrypt_raw(recipient_public_key: ec.EllipticCurvePublicKey, plaintext: str) -> str:
    """Encrypt to a static key, returning bare hex with no scheme prefix."""
    return seal_to_public_key(recipient_public_key, plaintext).hex()


def decrypt_raw(private_key: ec.EllipticCurvePrivateKey, token: str) -> str:
    """Decrypt a bare-hex sealed token."""
    return _decode_text(open_sealed(private_key, _strip(token, "")))


def detect_scheme(content: str) -> CipherScheme:
    """Classify a message body by its wire prefix."""
    if content.startswith(SHARED_PREFIX):
        return CipherScheme.SHARED
    if content.startswith(EPHEMERAL_PREFIX):
        return CipherScheme.EPHEMERAL
    if content.startswith(LEGACY_PREFIX):
        return CipherScheme.LEGACY
    if len(content) >= _MIN_SEALED_LENGTH * 2 and is_hex(content):
        return CipherScheme.RAW_ECDH
    return CipherScheme.PLAINTEXT
