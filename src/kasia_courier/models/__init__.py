# src/kasia_courier/models/__init__.py
"""SQLAlchemy models for the local key store."""

from .conversation_key import ConversationKeyRecord
from .identity_keypair import IdentityKeypairRecord

__all__ = [
    "ConversationKeyRecord",
    "IdentityKeypairRecord",
]
