"""Ledger entry schemas as returned by the Kasia indexer.

The indexer has shipped both snake_case (``tx_id``, ``message_payload``) and
camelCase (``entryId``, ``rawPayload``) field names; both are accepted.
"""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from kasia_courier.db.time import MAX_EPOCH_MS


class LedgerEntry(BaseModel):
    """One payload-bearing ledger entry. Immutable once fetched."""

    entry_id: str = Field(
        ...,
        validation_alias=AliasChoices("tx_id", "entryId", "entry_id", "transaction_id"),
        description="Ledger transaction identifier",
    )
    sender: str = Field(default="", validation_alias=AliasChoices("sender", "sender_address"))
    receiver: str = Field(
        default="",
        validation_alias=AliasChoices("receiver", "receiver_address", "recipient"),
        description="Ledger-level destination; may differ from the logical recipient",
    )
    block_time: int = Field(
        default=0,
        ge=0,
        le=MAX_EPOCH_MS,
        validation_alias=AliasChoices("block_time", "blockTime", "accepting_block_time"),
        description="Block time in epoch milliseconds",
    )
    payload: str = Field(
        default="",
        validation_alias=AliasChoices("message_payload", "rawPayload", "raw_payload", "payload"),
        description="Raw payload, usually hex",
    )

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    @field_validator("sender", "receiver", "payload", mode="before")
    @classmethod
    def _none_as_empty(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("block_time", mode="before")
    @classmethod
    def _none_as_zero(cls, value: object) -> object:
        return 0 if value is None else value


class HandshakeEntry(LedgerEntry):
    """Ledger entry carrying handshake metadata."""


class ContextualMessageEntry(BaseModel):
    """Encrypted message body routed to a conversation by its alias."""

    entry_id: str
    sender: str
    block_time: int
    alias: str
    encrypted_content: str = Field(..., description="Ciphertext token, still wire-encoded")

    model_config = ConfigDict(frozen=True)
