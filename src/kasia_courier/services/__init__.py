# src/kasia_courier/services/__init__.py
"""Protocol, cryptography and reconciliation services for Kasia Courier."""

from .conversation_sync import ConversationSyncWorker
from .indexer import IndexerClient
from .key_store import KeyCache, KeyStore
from .keyring import DecryptResult, Keyring
from .reconciler import Conversation, ConversationStatus, reconcile_conversations

__all__ = [
    "ConversationSyncWorker",
    "IndexerClient",
    "KeyCache", "KeyStore",
    "DecryptResult", "Keyring",
    "Conversation", "ConversationStatus", "reconcile_conversations",
]
