"""Background re-reconciliation of tracked wallets.

Reconciliation is idempotent, so the worker simply re-runs it on an interval
for every tracked address and keeps the latest snapshot. Passes for the same
address are serialized; different addresses proceed independently.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from kasia_courier.core.settings import settings
from kasia_courier.db.time import utcnow
from kasia_courier.services.indexer import IndexerClient, get_indexer_client
from kasia_courier.services.reconciler import Conversation, ConversationStatus, reconcile_conversations

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationSnapshot:
    """Result of the latest reconciliation pass for one address."""

    address: str
    conversations: dict[str, Conversation]
    refreshed_at: datetime = field(default_factory=utcnow)

    @property
    def active_count(self) -> int:
        return sum(1 for conversation in self.conversations.values() if conversation.is_active)

    @property
    def pending_count(self) -> int:
        return len(self.conversations) - self.active_count


class ConversationSyncWorker:
    """Periodically reconciles conversations for the tracked wallet addresses."""

    def __init__(self, client: IndexerClient | None = None, addresses: Iterable[str] = ()) -> None:
        """Initialize the sync worker.

        Args:
            client: Optional indexer client. If None, uses the global client.
            addresses: Wallet addresses to track from the start.
        """
        self.client = client or get_indexer_client()
        self._addresses: set[str] = set(addresses)
        self._snapshots: dict[str, ConversationSnapshot] = {}
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def tracked(self) -> list[str]:
        return sorted(self._addresses)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def track(self, address: str) -> None:
        self._addresses.add(address)

    def untrack(self, address: str) -> None:
        self._addresses.discard(address)
        self._snapshots.pop(address, None)

    def snapshot(self, address: str) -> ConversationSnapshot | None:
        return self._snapshots.get(address)

    def _lock_for(self, address: str) -> asyncio.Lock:
        lock = self._locks.get(address)
        if lock is None:
            lock = self._locks[address] = asyncio.Lock()
        return lock

    async def refresh(self, address: str) -> ConversationSnapshot:
        """Fetch handshakes for ``address`` and rebuild its conversations.

        Only tracked addresses keep their snapshot. Passes for any address are
        serialized while they run; a lock lives only as long as a pass holds it.
        """
        lock = self._lock_for(address)
        async with lock:
            handshakes = await self.client.fetch_handshakes(address)
            conversations = reconcile_conversations(address, handshakes.sent, handshakes.received)
            snapshot = ConversationSnapshot(address=address, conversations=conversations)
            if address in self._addresses:
                self._log_transitions(address, self._snapshots.get(address), conversations)
                self._snapshots[address] = snapshot
            return snapshot

    async def refresh_all(self) -> list[ConversationSnapshot]:
        """Refresh every tracked address concurrently."""
        return list(await asyncio.gather(*(self.refresh(address) for address in self.tracked)))

    @staticmethod
    def _log_transitions(
        address: str,
        previous: ConversationSnapshot | None,
        conversations: dict[str, Conversation],
    ) -> None:
        before = previous.conversations if previous else {}
        for conversation_id, conversation in conversations.items():
            old = before.get(conversation_id)
            if old is None:
                logger.info(
                    "New %s conversation %s for %s",
                    conversation.status.value,
                    conversation_id,
                    address[:20],
                )
            elif old.status is ConversationStatus.PENDING and conversation.is_active:
                logger.info("Conversation %s for %s became active", conversation_id, address[:20])

    async def start(self) -> None:
        """Start the background synchronization loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background synchronization loop."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        interval = max(0.1, float(settings.sync_interval_seconds))

        while not self._stopping.is_set():
            try:
                await self.refresh_all()
            except Exception:
                logger.exception("ConversationSyncWorker pass failed")

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except TimeoutError:
                continue


class _ConversationSyncWorkerSingleton:
    """Singleton wrapper for ConversationSyncWorker."""

    _instance: ConversationSyncWorker | None = None

    @classmethod
    def get_instance(cls) -> ConversationSyncWorker:
        """Get or create the singleton worker instance."""
        if cls._instance is None:
            cls._instance = ConversationSyncWorker()
        return cls._instance


def get_conversation_sync_worker() -> ConversationSyncWorker:
    """Return a singleton conversation sync worker."""
    return _ConversationSyncWorkerSingleton.get_instance()
