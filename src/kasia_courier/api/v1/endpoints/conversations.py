# src/kasia_courier/api/v1/endpoints/conversations.py
"""Conversation endpoints for the Kasia Courier API."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from kasia_courier.schemas.conversation import (
    ContextualMessageResponse,
    ConversationListResponse,
    ConversationResponse,
    ConversationStatusResponse,
)
from kasia_courier.services.cipher import detect_scheme
from kasia_courier.services.conversation_sync import (
    ConversationSyncWorker,
    get_conversation_sync_worker,
)
from kasia_courier.services.indexer import IndexerClient, get_indexer_client
from kasia_courier.services.reconciler import Conversation
from kasia_courier.utils.address import NETWORK_PREFIXES, same_address

router = APIRouter(prefix="/conversations", tags=["conversations"])


def get_indexer_client_dep() -> IndexerClient:
    """Return the shared indexer client."""
    return get_indexer_client()


def get_sync_worker_dep() -> ConversationSyncWorker:
    """Return the shared conversation sync worker."""
    return get_conversation_sync_worker()


IndexerDep = Annotated[IndexerClient, Depends(get_indexer_client_dep)]
SyncWorkerDep = Annotated[ConversationSyncWorker, Depends(get_sync_worker_dep)]
AddressQuery = Annotated[str, Query(min_length=1, description="Local wallet address")]


def _require_address(address: str) -> str:
    address = address.strip()
    prefix, sep, body = address.partition(":")
    if not sep or prefix.lower() not in NETWORK_PREFIXES or not body:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Address must start with kaspa: or kaspatest:",
        )
    return address


def _serialize_conversation(conversation: Conversation) -> ConversationResponse:
    return ConversationResponse(
        id=conversation.id,
        initiator_address=conversation.initiator_address,
        recipient_address=conversation.recipient_address,
        status=conversation.status.value,
        initiator_alias=conversation.initiator_alias,
        handshake_ref=conversation.handshake_ref,
        response_ref=conversation.response_ref,
        created_at=conversation.created_at,
    )


async def _find_conversation(
    worker: ConversationSyncWorker, address: str, conversation_id: str
) -> Conversation:
    snapshot = await worker.refresh(address)
    conversation = snapshot.conversations.get(conversation_id)
    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )
    return conversation


@router.get("", response_model=ConversationListResponse)
async def list_conversations(address: AddressQuery, worker: SyncWorkerDep) -> ConversationListResponse:
    """Reconcile and return every conversation of ``address``."""
    snapshot = await worker.refresh(_require_address(address))
    conversations = sorted(snapshot.conversations.values(), key=lambda item: (item.created_at, item.id))
    return ConversationListResponse(
        address=snapshot.address,
        conversations=[_serialize_conversation(conversation) for conversation in conversations],
        active_count=snapshot.active_count,
        pending_count=snapshot.pending_count,
    )


@router.get("/status", response_model=ConversationStatusResponse)
async def get_conversation_status(
    initiator: Annotated[str, Query(min_length=1)],
    recipient: Annotated[str, Query(min_length=1)],
    client: IndexerDep,
) -> ConversationStatusResponse:
    """Report whether both parties have sent handshakes to each other."""
    initiator = _require_address(initiator)
    recipient = _require_address(recipient)
    active = await client.is_conversation_active(initiator, recipient)
    return ConversationStatusResponse(
        initiator_address=initiator,
        recipient_address=recipient,
        active=active,
    )


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str, address: AddressQuery, worker: SyncWorkerDep
) -> ConversationResponse:
    """Return one reconciled conversation of ``address``."""
    conversation = await _find_conversation(worker, _require_address(address), conversation_id)
    return _serialize_conversation(conversation)


@router.get("/{conversation_id}/messages", response_model=list[ContextualMessageResponse])
async def list_conversation_messages(
    conversation_id: str,
    address: AddressQuery,
    worker: SyncWorkerDep,
    client: IndexerDep,
    sender: Annotated[str | None, Query(description="Defaults to the initiator")] = None,
    alias: Annotated[str | None, Query(description="Defaults to the initiator's alias")] = None,
) -> list[ContextualMessageResponse]:
    """Return the still-encrypted contextual messages one participant sent.

    Messages are fetched by sender and alias; decryption happens client-side.
    """
    conversation = await _find_conversation(worker, _require_address(address), conversation_id)
    if not sender or same_address(sender, conversation.initiator_address):
        message_sender = conversation.initiator_address
    elif same_address(sender, conversation.recipient_address):
        message_sender = conversation.recipient_address
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Sender is not a participant of this conversation",
        )
    message_alias = alias or (
        conversation.initiator_alias if message_sender == conversation.initiator_address else None
    )
    if not message_alias:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Conversation alias is not known yet",
        )

    messages = await client.contextual_messages_by_sender(message_sender, message_alias)
    return [
        ContextualMessageResponse(
            entry_id=message.entry_id,
            sender=message.sender,
            block_time=message.block_time,
            alias=message.alias,
            encrypted_content=message.encrypted_content,
            scheme=detect_scheme(message.encrypted_content).value,
        )
        for message in messages
    ]
