"""Client-side keyring: identity, conversation keys and message decryption.

The keyring is embedded by wallet front-ends and tools; the HTTP service never
holds private keys. It owns an explicit :class:`KeyCache` over the durable
per-wallet :class:`KeyStore` and resets both whenever the local identity
changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from kasia_courier.services.cipher import (
    CipherScheme,
    DecryptionError,
    EncryptionError,
    decrypt_ephemeral,
    decrypt_raw,
    decrypt_shared,
    detect_scheme,
    encrypt_ephemeral,
    encrypt_shared,
)
from kasia_courier.services.key_derivation import (
    ConversationKey,
    IdentityKeypair,
    Signature,
    derive_conversation_key,
    derive_identity_keypair,
)
from kasia_courier.services.key_store import KeyCache, KeyStore
from kasia_courier.services.payloads import HandshakePayload, open_sealed_handshake
from kasia_courier.utils.address import load_public_key, public_key_from_address

logger = logging.getLogger(__name__)

SHARED_KEY_REQUIRED = "[Encrypted - Key Required]"
EPHEMERAL_KEY_REQUIRED = "[ECIES Encrypted - Key Required]"
LEGACY_CANNOT_DECRYPT = "[Legacy E2EE - Cannot Decrypt]"


class KeyringError(RuntimeError):
    """Raised when an operation needs a wallet identity that is not loaded."""


@dataclass(frozen=True)
class DecryptResult:
    """Outcome of rendering one message body.

    When ``decrypted`` is False, ``content`` is either a sentinel placeholder or
    the original body (for content that was never encrypted).
    """

    decrypted: bool
    content: str
    scheme: CipherScheme


class Keyring:
    """Keys and identity for the currently selected local wallet."""

    def __init__(self, key_store_dir: Path | None = None) -> None:
        self._directory = key_store_dir
        self._wallet_address: str | None = None
        self._store: KeyStore | None = None
        self._identity: IdentityKeypair | None = None
        self.cache = KeyCache()

    @property
    def wallet_address(self) -> str | None:
        return self._wallet_address

    @property
    def identity(self) -> IdentityKeypair | None:
        return self._identity

    def switch_identity(self, wallet_address: str | None) -> None:
        """Select the local wallet whose keys are in use.

        Cached keys and the loaded identity of the previous wallet are dropped
        before the new wallet's store is opened.
        """
        if self._store is not None:
            self._store.close()
        self._store = None
        self._identity = None
        self._wallet_address = wallet_address
        self.cache.invalidate()
        if not wallet_address:
            return

        self._store = KeyStore(wallet_address, self._directory)
        self.cache.invalidate(self._store)
        loaded = self.cache.load()
        self._identity = self._store.get_identity()
        logger.info(
            "Loaded %d conversation keys for %s (identity %s)",
            loaded,
            wallet_address[:20],
            "present" if self._identity else "missing",
        )

    def close(self) -> None:
        self.switch_identity(None)

    def _require_store(self) -> KeyStore:
        if self._store is None or self._wallet_address is None:
            raise KeyringError("No wallet identity is selected")
        return self._store

    def initialize_identity(self, signature: Signature) -> IdentityKeypair:
        """Derive the wallet's static keypair from ``signature`` and persist it."""
        store = self._require_store()
        keypair = derive_identity_keypair(signature, store.wallet_address)
        store.set_identity(keypair)
        self._identity = keypair
        return keypair

    def establish_key(
        self,
        conversation_id: str,
        my_signature: Signature | None,
        other_address: str,
        other_signature: Signature | None,
    ) -> ConversationKey | None:
        """Derive and store the shared key for a conversation.

        An existing key is returned unchanged; keys are never rotated. Returns
        ``None`` while the counterpart signature is missing.
        """
        store = self._require_store()
        existing = self.cache.get(conversation_id)
        if existing is not None:
            return existing

        key = derive_conversation_key(
            conversation_id, store.wallet_address, my_signature, other_address, other_signature
        )
        if key is None:
            return None
        self.cache.set(key)
        logger.info("Derived key for conversation %s", conversation_id)
        return key

    def has_key(self, conversation_id: str) -> bool:
        return self.cache.has(conversation_id)

    def encrypt_content(self, conversation_id: str, plaintext: str) -> str:
        """Encrypt under the conversation's shared key, returning a ``sym:`` token.

        Raises:
            EncryptionError: If no key exists for the conversation.
        """
        key = self.cache.get(conversation_id)
        if key is None:
            raise EncryptionError(f"No key for conversation {conversation_id}")
        return encrypt_shared(key.key_bytes, plaintext)

    def encrypt_for_identity(self, recipient_public_key_hex: str, plaintext: str) -> str:
        """Encrypt to another wallet's identity public key, returning an ``ecies:`` token.

        Raises:
            EncryptionError: If the public key is malformed.
        """
        try:
            public_key = load_public_key(bytes.fromhex(recipient_public_key_hex))
        except ValueError as err:
            raise EncryptionError(f"Invalid recipient public key: {err}") from err
        return encrypt_ephemeral(public_key, plaintext)

    def encrypt_for_address(self, recipient_address: str, plaintext: str) -> str:
        """Encrypt to the static key embedded in a ledger address (``ecies:`` token)."""
        try:
            public_key = public_key_from_address(recipient_address)
        except ValueError as err:
            raise EncryptionError(str(err)) from err
        return encrypt_ephemeral(public_key, plaintext)

    def try_decrypt_message(self, conversation_id: str, content: str) -> DecryptResult:
        """Render a message body, never raising.

        ``sym:`` tokens use the conversation key, ``ecies:`` and bare-hex sealed
        tokens use the identity key, legacy ``ciph_msg:`` bodies cannot be
        decrypted, and anything else is returned as plaintext.
        """
        scheme = detect_scheme(content)
        if scheme is CipherScheme.SHARED:
            key = self.cache.get(conversation_id)
            if key is not None:
                try:
                    return DecryptResult(True, decrypt_shared(key.key_bytes, content), scheme)
                except DecryptionError as exc:
                    logger.warning("Decryption failed for conversation %s: %s", conversation_id, exc)
            return DecryptResult(False, SHARED_KEY_REQUIRED, scheme)

        if scheme is CipherScheme.EPHEMERAL:
            if self._identity is not None:
                try:
                    return DecryptResult(True, decrypt_ephemeral(self._identity.private_key, content), scheme)
                except DecryptionError as exc:
                    logger.warning("Ephemeral-key decryption failed: %s", exc)
            return DecryptResult(False, EPHEMERAL_KEY_REQUIRED, scheme)

        if scheme is CipherScheme.RAW_ECDH and self._identity is not None:
            try:
                return DecryptResult(True, decrypt_raw(self._identity.private_key, content), scheme)
            except DecryptionError:
                logger.debug("Hex body in conversation %s is not sealed to this identity", conversation_id)

        if scheme is CipherScheme.LEGACY:
            return DecryptResult(False, LEGACY_CANNOT_DECRYPT, scheme)
        return DecryptResult(False, content, scheme)

    def open_sealed_handshake(self, payload: str) -> HandshakePayload | None:
        """Open a handshake sealed to this wallet's identity key."""
        if self._identity is None:
            return None
        return open_sealed_handshake(payload, self._identity.private_key)
