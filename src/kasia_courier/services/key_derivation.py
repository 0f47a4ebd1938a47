"""Key derivation for Kasia conversations.

Three derivation paths are supported:

- **Shared-secret** (``sym:`` ciphertexts): both participants sign a
  conversation message; HKDF over the two signatures and the canonical
  address pair yields an identical 32-byte key on both sides.
- **Ephemeral-key** (``ecies:`` and raw-ECDH ciphertexts): secp256k1 ECDH
  between a one-shot ephemeral key and the recipient's static key.
- **Identity keypair**: a wallet signature is stretched into the static
  secp256k1 keypair that ephemeral-key messages are encrypted to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from kasia_courier.db.time import utcnow
from kasia_courier.utils.address import same_address
from kasia_courier.utils.encoding import utf8

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
SHARED_SALT_PREFIX = "kasia:shared:v2:"
SHARED_INFO = b"kasia-e2ee-symmetric"
IDENTITY_SALT_PREFIX = "kasia:ecies:v1:"
IDENTITY_INFO = b"kasia-ecies-keypair"
EPHEMERAL_INFO = b""

Signature = str | bytes


@dataclass(frozen=True)
class ConversationKey:
    """Symmetric key material for one conversation.

    The participant addresses are kept for auditing only; they play no part in
    cryptography once the key has been derived.
    """

    conversation_id: str
    key_bytes: bytes
    my_address: str
    other_address: str
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class IdentityKeypair:
    """Static secp256k1 keypair bound to a wallet address."""

    wallet_address: str
    private_key_hex: str
    public_key_hex: str

    @property
    def private_key(self) -> ec.EllipticCurvePrivateKey:
        return ec.derive_private_key(int(self.private_key_hex, 16), ec.SECP256K1())

    @property
    def public_key_bytes(self) -> bytes:
        return bytes.fromhex(self.public_key_hex)


def _hkdf(ikm: bytes, *, salt: bytes | None, info: bytes, length: int = KEY_LENGTH) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info).derive(ikm)


def compressed_public_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
    """Return the 33-byte SEC1 compressed encoding of ``public_key``."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.CompressedPoint,
    )


def shared_signing_message(initiator_address: str, recipient_address: str, conversation_id: str) -> str:
    """Return the text each participant signs to seed the shared-secret scheme."""
    return f"{SHARED_SALT_PREFIX}{initiator_address}:{recipient_address}:{conversation_id}"


def identity_signing_message(wallet_address: str) -> str:
    """Return the text a wallet signs to (re)create its identity keypair."""
    return f"{IDENTITY_SALT_PREFIX}{wallet_address}"


def shared_key_material(
    my_address: str,
    my_signature: Signature,
    other_address: str,
    other_signature: Signature,
) -> bytes:
    """Build the role-independent HKDF input for the shared-secret scheme.

    Addresses are ordered lexicographically and signatures follow the same
    ordering, so both participants produce identical bytes:
    ``sig_low || sig_high || "addr_low:addr_high"``.

    Raises:
        ValueError: If both addresses refer to the same wallet.
    """
    if same_address(my_address, other_address):
        raise ValueError("Shared-secret derivation requires two distinct participants")

    mine = (my_address.strip(), utf8(my_signature))
    theirs = (other_address.strip(), utf8(other_signature))
    low, high = sorted((mine, theirs), key=lambda item: item[0])
    return low[1] + high[1] + f"{low[0]}:{high[0]}".encode("utf-8")


def derive_shared_key(
    conversation_id: str,
    my_address: str,
    my_signature: Signature | None,
    other_address: str,
    other_signature: Signature | None,
) -> bytes | None:
    """Derive the 32-byte conversation key from both participants' signatures.

    Returns:
        The key bytes, or ``None`` while either signature is still missing. A
        missing counterpart signature means "not ready yet" and is not an error.
    """
    if not my_signature or not other_signature:
        return None

    ikm = shared_key_material(my_address, my_signature, other_address, other_signature)
    salt = f"{SHARED_SALT_PREFIX}{conversation_id}".encode("utf-8")
    return _hkdf(ikm, salt=salt, info=SHARED_INFO)


def derive_conversation_key(
    conversation_id: str,
    my_address: str,
    my_signature: Signature | None,
    other_address: str,
    other_signature: Signature | None,
) -> ConversationKey | None:
    """Wrap :func:`derive_shared_key` with the conversation metadata."""
    key_bytes = derive_shared_key(
        conversation_id, my_address, my_signature, other_address, other_signature
    )
    if key_bytes is None:
        logger.debug("Conversation %s is waiting for the counterpart signature", conversation_id)
        return None
    return ConversationKey(
        conversation_id=conversation_id,
        key_bytes=key_bytes,
        my_address=my_address,
        other_address=other_address,
    )


def ecdh_key(private_key: ec.EllipticCurvePrivateKey, peer_public_key: ec.EllipticCurvePublicKey) -> bytes:
    """Derive a 32-byte symmetric key from a secp256k1 ECDH exchange.

    The shared point's x-coordinate is the HKDF input keying material, with an
    empty salt and empty info.
    """
    shared_x = private_key.exchange(ec.ECDH(), peer_public_key)
    return _hkdf(shared_x, salt=None, info=EPHEMERAL_INFO)


def generate_ephemeral_key() -> ec.EllipticCurvePrivateKey:
    """Return a fresh one-shot secp256k1 private key."""
    return ec.generate_private_key(ec.SECP256K1())


def derive_identity_keypair(signature: Signature, wallet_address: str) -> IdentityKeypair:
    """Derive the wallet's static keypair from a signature.

    The derivation is deterministic, so reproducing the signature on a new
    device restores the same identity.

    Raises:
        ValueError: If ``signature`` is empty.
    """
    if not signature:
        raise ValueError("A wallet signature is required to derive the identity keypair")

    salt = f"{IDENTITY_SALT_PREFIX}{wallet_address}".encode("utf-8")
    private_bytes = _hkdf(utf8(signature), salt=salt, info=IDENTITY_INFO)
    private_key = ec.derive_private_key(int.from_bytes(private_bytes, "big"), ec.SECP256K1())
    return IdentityKeypair(
        wallet_address=wallet_address,
        private_key_hex=private_bytes.hex(),
        public_key_hex=compressed_public_key(private_key.public_key()).hex(),
    )
