"""Kaspa address helpers.

Kaspa addresses are bech32-style strings (``kaspa:`` / ``kaspatest:`` prefix)
whose payload is a version byte followed by the owner's public key:

- version 0: 32-byte x-only Schnorr key
- version 1: 33-byte SEC1-compressed ECDSA key

The ephemeral-key encryption scheme encrypts to this key, so a recipient's
static public key is always recoverable from their ledger address alone.
"""

from __future__ import annotations

from cryptography.hazmat.primitives.asymmetric import ec

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
MAINNET_PREFIX = "kaspa"
TESTNET_PREFIX = "kaspatest"
NETWORK_PREFIXES = (MAINNET_PREFIX, TESTNET_PREFIX)
CHECKSUM_LENGTH = 8
SCHNORR_VERSION = 0
ECDSA_VERSION = 1
SHORT_ADDRESS_LENGTH = 20

_GENERATORS = (
    0x98F2BC8E61,
    0x79B76D99E2,
    0xF33E5FB3C4,
    0xAE2EABE2A8,
    0x1E4F43E470,
)


class InvalidAddressError(ValueError):
    """Raised when a ledger address cannot be decoded."""


def _polymod(values: list[int]) -> int:
    checksum = 1
    for value in values:
        top = checksum >> 35
        checksum = ((checksum & 0x07FFFFFFFF) << 5) ^ value
        for bit, generator in enumerate(_GENERATORS):
            if (top >> bit) & 1:
                checksum ^= generator
    return checksum ^ 1


def _convert_bits(data: list[int] | bytes, from_bits: int, to_bits: int, *, pad: bool) -> list[int]:
    acc = 0
    bits = 0
    result: list[int] = []
    max_value = (1 << to_bits) - 1
    for value in data:
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            result.append((acc >> bits) & max_value)
    if pad and bits:
        result.append((acc << (to_bits - bits)) & max_value)
    return result


def _split_prefix(address: str) -> tuple[str, str]:
    prefix, sep, body = address.strip().lower().partition(":")
    if not sep or prefix not in NETWORK_PREFIXES or not body:
        raise InvalidAddressError(f"Unsupported address prefix: {address[:16]!r}")
    return prefix, body


def network_of(address: str) -> str:
    """Return ``"testnet"`` for ``kaspatest:`` addresses and ``"mainnet"`` otherwise."""
    if address.strip().lower().startswith(f"{TESTNET_PREFIX}:"):
        return "testnet"
    return "mainnet"


def strip_prefix(address: str) -> str:
    """Return the address body without its network prefix."""
    lowered = address.strip()
    for prefix in (TESTNET_PREFIX, MAINNET_PREFIX):
        if lowered.lower().startswith(f"{prefix}:"):
            return lowered[len(prefix) + 1 :]
    return lowered


def short_address(address: str, length: int = SHORT_ADDRESS_LENGTH) -> str:
    """Return the first ``length`` characters of the address body."""
    return strip_prefix(address)[:length]


def same_address(first: str | None, second: str | None) -> bool:
    """Compare two addresses ignoring case, whitespace and network prefix.

    Shortened addresses (at least ``SHORT_ADDRESS_LENGTH`` body characters, as
    written by compact handshakes) match any address they are a prefix of.
    """
    if not first or not second:
        return False
    first_body = strip_prefix(first).lower()
    second_body = strip_prefix(second).lower()
    if first_body == second_body:
        return True
    overlap = min(len(first_body), len(second_body), 50)
    return overlap >= SHORT_ADDRESS_LENGTH and first_body[:overlap] == second_body[:overlap]


def decode_address(address: str) -> tuple[str, int, bytes]:
    """Decode an address into ``(prefix, version, public_key_bytes)``.

    The checksum is not verified; the indexer only returns addresses that the
    ledger already accepted.

    Raises:
        InvalidAddressError: If the address is not a well-formed Kaspa address.
    """
    prefix, body = _split_prefix(address)
    try:
        values = [CHARSET.index(char) for char in body]
    except ValueError as err:
        raise InvalidAddressError(f"Invalid bech32 character in address: {err}") from err
    if len(values) <= CHECKSUM_LENGTH:
        raise InvalidAddressError("Address is too short")

    payload = bytes(_convert_bits(values[:-CHECKSUM_LENGTH], 5, 8, pad=False))
    if not payload:
        raise InvalidAddressError("Address carries no payload")
    return prefix, payload[0], payload[1:]


def encode_address(public_key: bytes, prefix: str = MAINNET_PREFIX) -> str:
    """Encode a public key as a checksummed Kaspa address.

    Args:
        public_key: 32-byte x-only key (Schnorr) or 33-byte compressed key (ECDSA).
        prefix: Network prefix, ``kaspa`` or ``kaspatest``.
    """
    if prefix not in NETWORK_PREFIXES:
        raise InvalidAddressError(f"Unsupported address prefix: {prefix!r}")
    if len(public_key) == 32:
        version = SCHNORR_VERSION
    elif len(public_key) == 33:
        version = ECDSA_VERSION
    else:
        raise InvalidAddressError("Public key must be 32 or 33 bytes")

    data = _convert_bits(bytes([version]) + public_key, 8, 5, pad=True)
    prefix_values = [ord(char) & 0x1F for char in prefix]
    checksum = _polymod(prefix_values + [0] + data + [0] * CHECKSUM_LENGTH)
    checksum_values = [(checksum >> 5 * (CHECKSUM_LENGTH - 1 - i)) & 0x1F for i in range(CHECKSUM_LENGTH)]
    return f"{prefix}:" + "".join(CHARSET[value] for value in data + checksum_values)


def load_public_key(encoded: bytes) -> ec.EllipticCurvePublicKey:
    """Load a secp256k1 public key from compressed, uncompressed or x-only bytes.

    X-only keys are tried with an even y first and an odd y second; compressed keys
    whose parity byte does not yield a valid point are retried with the other parity.

    Raises:
        ValueError: If no interpretation produces a point on the curve.
    """
    candidates: list[bytes]
    if len(encoded) == 32:
        candidates = [b"\x02" + encoded, b"\x03" + encoded]
    elif len(encoded) == 33 and encoded[0] in (2, 3):
        flipped = bytes([5 - encoded[0]]) + encoded[1:]
        candidates = [encoded, flipped]
    else:
        candidates = [encoded]

    for candidate in candidates:
        try:
            return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), candidate)
        except ValueError:
            continue
    raise ValueError("Invalid secp256k1 public key")


def public_key_from_address(address: str) -> ec.EllipticCurvePublicKey:
    """Recover the owner's static secp256k1 public key from a ledger address.

    Raises:
        InvalidAddressError: If the address cannot be decoded to a valid key.
    """
    _, version, key_bytes = decode_address(address)
    expected_length = {SCHNORR_VERSION: 32, ECDSA_VERSION: 33}.get(version)
    if expected_length != len(key_bytes):
        raise InvalidAddressError(f"Unsupported address version {version} ({len(key_bytes)} key bytes)")
    try:
        return load_public_key(key_bytes)
    except ValueError as err:
        raise InvalidAddressError(str(err)) from err
