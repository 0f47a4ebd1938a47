"""Request and response schemas for payload building and decoding."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class HandshakePayloadCreate(BaseModel):
    """Parameters for a handshake payload."""

    alias: str = Field(..., min_length=1, max_length=64)
    recipient_address: str = Field(..., min_length=1)
    conversation_id: str = Field(..., min_length=1, max_length=128)
    is_response: bool = False
    compact: bool = Field(False, description="Emit the legacy compact hs/hr form")
    timestamp: datetime | None = None


class CommPayloadCreate(BaseModel):
    """Parameters for a contextual-message payload."""

    alias: str = Field(..., min_length=1, max_length=64)
    encrypted_content: str = Field(..., min_length=1, description="sym:/ecies: token")


class BroadcastCreate(BaseModel):
    """Parameters for a public broadcast."""

    content: str = Field(..., min_length=1)


class QuestionCreate(BaseModel):
    """Parameters for a Q&A question."""

    topic_id: str = Field(..., min_length=1)
    author_address: str = Field(..., min_length=1)
    timestamp: int = Field(..., ge=0, description="Epoch milliseconds")
    content: str = Field(..., min_length=1)


class AnswerCreate(BaseModel):
    """Parameters for a Q&A answer."""

    question_tx_id: str = Field(..., min_length=1)
    author_address: str = Field(..., min_length=1)
    timestamp: int = Field(..., ge=0, description="Epoch milliseconds")
    content: str = Field(..., min_length=1)


class PayloadResponse(BaseModel):
    """A built payload, as text and as hex."""

    kind: str
    payload: str
    payload_hex: str
    size_bytes: int


class PayloadDecodeRequest(BaseModel):
    """A raw payload to classify and decode."""

    payload: str = Field(..., min_length=1)


class PayloadDecodeResponse(BaseModel):
    """Result of decoding an arbitrary payload.

    ``kind`` is one of ``handshake``, ``comm``, ``broadcast``, ``question``,
    ``answer`` or ``unknown``; ``data`` holds the decoded fields.
    """

    kind: str
    data: dict[str, Any] | None = None
