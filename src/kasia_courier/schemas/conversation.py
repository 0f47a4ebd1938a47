"""Conversation-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ConversationResponse(BaseModel):
    """Reconstructed conversation returned by the API."""

    id: str
    initiator_address: str
    recipient_address: str
    status: str = Field(..., description="pending or active")
    initiator_alias: str | None = None
    handshake_ref: str | None = None
    response_ref: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationListResponse(BaseModel):
    """All conversations for one wallet."""

    address: str
    conversations: list[ConversationResponse]
    active_count: int
    pending_count: int


class ConversationStatusResponse(BaseModel):
    """Whether both parties have sent handshakes to each other."""

    initiator_address: str
    recipient_address: str
    active: bool


class ContextualMessageResponse(BaseModel):
    """A still-encrypted contextual message."""

    entry_id: str
    sender: str
    block_time: int
    alias: str
    encrypted_content: str
    scheme: str = Field(..., description="Detected ciphertext scheme")
