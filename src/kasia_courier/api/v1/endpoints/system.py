# src/kasia_courier/api/v1/endpoints/system.py
"""System and configuration endpoints for the Kasia Courier API."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from kasia_courier.core.settings import settings
from kasia_courier.services.broadcast import MAX_BROADCAST_BYTES, MAX_CONTENT_LENGTH, MAX_QA_BYTES
from kasia_courier.services.conversation_sync import (
    ConversationSyncWorker,
    get_conversation_sync_worker,
)
from kasia_courier.services.payloads import MAX_COMM_BYTES, MAX_HANDSHAKE_BYTES

router = APIRouter(prefix="/system", tags=["system"])


def get_sync_worker_dep() -> ConversationSyncWorker:
    """Return the shared conversation sync worker."""
    return get_conversation_sync_worker()


SyncWorkerDep = Annotated[ConversationSyncWorker, Depends(get_sync_worker_dep)]


@router.get("/config")
async def get_public_config() -> dict[str, object]:
    """Return a sanitized snapshot of public runtime configuration.

    Returns:
        Dictionary with app metadata, indexer endpoints and payload ceilings
    """
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "debug": settings.debug,
        },
        "indexer": {
            "mainnet_url": settings.indexer_mainnet_url,
            "testnet_url": settings.indexer_testnet_url,
            "timeout_seconds": settings.indexer_timeout_seconds,
            "query_limit": settings.indexer_query_limit,
        },
        "payload_limits": {
            "handshake_bytes": MAX_HANDSHAKE_BYTES,
            "comm_bytes": MAX_COMM_BYTES,
            "broadcast_bytes": MAX_BROADCAST_BYTES,
            "qa_bytes": MAX_QA_BYTES,
            "content_chars": MAX_CONTENT_LENGTH,
        },
    }


@router.get("/sync")
async def get_sync_status(worker: SyncWorkerDep) -> dict[str, object]:
    """Report the background sync worker state and per-wallet snapshot summaries.

    Returns:
        Dictionary with the worker state and one entry per tracked address
    """
    wallets = []
    for address in worker.tracked:
        snapshot = worker.snapshot(address)
        wallets.append(
            {
                "address": address,
                "refreshed_at": snapshot.refreshed_at.isoformat() if snapshot else None,
                "active": snapshot.active_count if snapshot else 0,
                "pending": snapshot.pending_count if snapshot else 0,
            }
        )
    return {
        "enabled": settings.sync_enabled,
        "running": worker.running,
        "interval_seconds": settings.sync_interval_seconds,
        "wallets": wallets,
    }
