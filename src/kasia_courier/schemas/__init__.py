# src/kasia_courier/schemas/__init__.py
"""
Pydantic schemas for ledger entries and API request/response models.
"""

from .conversation import (
    ContextualMessageResponse,
    ConversationListResponse,
    ConversationResponse,
    ConversationStatusResponse,
)
from .ledger import ContextualMessageEntry, HandshakeEntry, LedgerEntry
from .payloads import (
    AnswerCreate,
    BroadcastCreate,
    CommPayloadCreate,
    HandshakePayloadCreate,
    PayloadDecodeRequest,
    PayloadDecodeResponse,
    PayloadResponse,
    QuestionCreate,
)

__all__ = [
    "ContextualMessageResponse", "ConversationListResponse",
    "ConversationResponse", "ConversationStatusResponse",
    "ContextualMessageEntry", "HandshakeEntry", "LedgerEntry",
    "AnswerCreate", "BroadcastCreate", "CommPayloadCreate", "HandshakePayloadCreate",
    "PayloadDecodeRequest", "PayloadDecodeResponse", "PayloadResponse", "QuestionCreate",
]
