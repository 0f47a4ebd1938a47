"""Durable, per-wallet storage for conversation keys and the identity keypair."""

from __future__ import annotations

import logging
from pathlib import Path

from kasia_courier.db.session import (
    create_session_factory,
    create_tables,
    create_wallet_engine,
    key_store_path,
)
from kasia_courier.db.time import as_utc
from kasia_courier.models import ConversationKeyRecord, IdentityKeypairRecord
from kasia_courier.services.key_derivation import ConversationKey, IdentityKeypair

logger = logging.getLogger(__name__)


class KeyStore:
    """SQLite-backed key-value store scoped to a single wallet identity.

    Opening a store that has never been written to yields an empty store; the
    file and tables are created on first use.
    """

    def __init__(self, wallet_address: str, directory: Path | None = None) -> None:
        self.wallet_address = wallet_address
        self.path = key_store_path(wallet_address, directory)
        self._engine = create_wallet_engine(self.path)
        create_tables(self._engine)
        self._session_factory = create_session_factory(self._engine)

    def get(self, conversation_id: str) -> ConversationKey | None:
        """Return the stored key for ``conversation_id`` or ``None``."""
        with self._session_factory() as db:
            record = db.get(ConversationKeyRecord, conversation_id)
            if record is None:
                return None
            return _to_conversation_key(record)

    def set(self, key: ConversationKey) -> None:
        """Persist ``key``, replacing any previous key for the same conversation."""
        with self._session_factory() as db:
            db.merge(
                ConversationKeyRecord(
                    conversation_id=key.conversation_id,
                    key_bytes=key.key_bytes,
                    my_address=key.my_address,
                    other_address=key.other_address,
                    created_at=key.created_at,
                )
            )
            db.commit()
        logger.debug("Stored key for conversation %s", key.conversation_id)

    def has(self, conversation_id: str) -> bool:
        """Return True if a key is stored for ``conversation_id``."""
        with self._session_factory() as db:
            return db.get(ConversationKeyRecord, conversation_id) is not None

    def all(self) -> list[ConversationKey]:
        """Return every stored conversation key."""
        with self._session_factory() as db:
            records = db.query(ConversationKeyRecord).order_by(ConversationKeyRecord.created_at).all()
            return [_to_conversation_key(record) for record in records]

    def clear_all(self) -> None:
        """Delete every conversation key and the identity keypair."""
        with self._session_factory() as db:
            db.query(ConversationKeyRecord).delete()
            db.query(IdentityKeypairRecord).delete()
            db.commit()
        logger.info("Cleared key store %s", self.path.name)

    def get_identity(self) -> IdentityKeypair | None:
        """Return the persisted identity keypair for this wallet, if any."""
        with self._session_factory() as db:
            record = db.get(IdentityKeypairRecord, self.wallet_address)
            if record is None:
                return None
            return IdentityKeypair(
                wallet_address=record.wallet_address,
                private_key_hex=record.private_key_hex,
                public_key_hex=record.public_key_hex,
            )

    def set_identity(self, keypair: IdentityKeypair) -> None:
        """Persist the identity keypair for this wallet.

        Raises:
            ValueError: If ``keypair`` belongs to a different wallet.
        """
        if keypair.wallet_address != self.wallet_address:
            raise ValueError("Identity keypair belongs to a different wallet")
        with self._session_factory() as db:
            db.merge(
                IdentityKeypairRecord(
                    wallet_address=keypair.wallet_address,
                    private_key_hex=keypair.private_key_hex,
                    public_key_hex=keypair.public_key_hex,
                )
            )
            db.commit()

    def close(self) -> None:
        """Release the underlying database connections."""
        self._engine.dispose()


class KeyCache:
    """In-memory shadow of a :class:`KeyStore` for hot-path reads.

    The durable store stays authoritative: writes go through to it, and misses
    fall back to it. The cache is owned by its caller and must be invalidated
    whenever the local identity changes.
    """

    def __init__(self, store: KeyStore | None = None) -> None:
        self._store = store
        self._keys: dict[str, ConversationKey] = {}

    @property
    def store(self) -> KeyStore | None:
        return self._store

    def load(self) -> int:
        """Warm the cache from the durable store; returns the number of keys loaded."""
        if self._store is None:
            return 0
        for key in self._store.all():
            self._keys[key.conversation_id] = key
        return len(self._keys)

    def get(self, conversation_id: str) -> ConversationKey | None:
        key = self._keys.get(conversation_id)
        if key is None and self._store is not None:
            key = self._store.get(conversation_id)
            if key is not None:
                self._keys[conversation_id] = key
        return key

    def set(self, key: ConversationKey) -> None:
        if self._store is not None:
            self._store.set(key)
        self._keys[key.conversation_id] = key

    def has(self, conversation_id: str) -> bool:
        return self.get(conversation_id) is not None

    def invalidate(self, store: KeyStore | None = None) -> None:
        """Drop every cached key and rebind to ``store`` (possibly a new identity's)."""
        self._keys.clear()
        self._store = store

    def __len__(self) -> int:
        return len(self._keys)


def _to_conversation_key(record: ConversationKeyRecord) -> ConversationKey:
    return ConversationKey(
        conversation_id=record.conversation_id,
        key_bytes=bytes(record.key_bytes),
        my_address=record.my_address,
        other_address=record.other_address,
        created_at=as_utc(record.created_at),
    )
