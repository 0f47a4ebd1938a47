"""Client for the external Kasia indexer.

The indexer answers coarse queries ("entries sent by X", "entries received by
Y"). This module is a pure network boundary: it keeps no local state and never
raises past its public methods. Any transport or decoding failure degrades to
an empty result and a warning, so reconciliation runs on whatever succeeded.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError

from kasia_courier.core.settings import settings
from kasia_courier.schemas.ledger import ContextualMessageEntry, HandshakeEntry, LedgerEntry
from kasia_courier.services.payloads import parse_comm_payload
from kasia_courier.services.reconciler import is_handshake_complete
from kasia_courier.utils.address import TESTNET_PREFIX

logger = logging.getLogger(__name__)

HTTP_OK = 200

HANDSHAKES_BY_SENDER = "/handshakes/by-sender"
HANDSHAKES_BY_RECEIVER = "/handshakes/by-receiver"
CONTEXTUAL_BY_SENDER = "/contextual-messages/by-sender"


class IndexerError(RuntimeError):
    """Raised for indexer transport or response failures.

    Only raised internally; public query methods convert it to an empty result.
    """


@dataclass(frozen=True)
class IndexerConfig:
    """Immutable configuration for indexer queries."""

    mainnet_url: str
    testnet_url: str
    timeout_seconds: float
    query_limit: int


@dataclass(frozen=True)
class HandshakeSets:
    """Sent and received handshakes for one address."""

    sent: list[HandshakeEntry]
    received: list[HandshakeEntry]


def load_indexer_config() -> IndexerConfig:
    """Build configuration object from global settings."""
    return IndexerConfig(
        mainnet_url=settings.indexer_mainnet_url.rstrip("/"),
        testnet_url=settings.indexer_testnet_url.rstrip("/"),
        timeout_seconds=float(settings.indexer_timeout_seconds),
        query_limit=settings.indexer_query_limit,
    )


class IndexerClient:
    """HTTP client wrapper for Kasia indexer queries."""

    def __init__(
        self,
        config: IndexerConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_indexer_config()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    def base_url_for(self, address: str) -> str:
        """Return the indexer serving the network of ``address``."""
        if address.strip().lower().startswith(f"{TESTNET_PREFIX}:"):
            return self.config.testnet_url
        return self.config.mainnet_url

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    async def _get_entries(self, address: str, path: str, params: Mapping[str, Any]) -> list[dict[str, Any]]:
        client = await self._ensure_client()
        url = f"{self.base_url_for(address)}{path}"
        try:
            response = await client.get(url, params=dict(params))
        except httpx.HTTPError as exc:
            raise IndexerError(f"Indexer request failed: {exc}") from exc

        if response.status_code != HTTP_OK:
            raise IndexerError(f"Indexer responded with {response.status_code} for {path}")
        try:
            body = response.json()
        except ValueError as exc:
            raise IndexerError(f"Indexer returned invalid JSON for {path}") from exc
        if not isinstance(body, list):
            raise IndexerError(f"Indexer returned {type(body).__name__} instead of a list for {path}")
        return [item for item in body if isinstance(item, dict)]

    async def _query(self, address: str, path: str, params: Mapping[str, Any]) -> list[dict[str, Any]]:
        try:
            return await self._get_entries(address, path, params)
        except IndexerError as exc:
            logger.warning("Indexer query %s for %s failed: %s", path, address[:20], exc)
            return []

    @staticmethod
    def _to_entries(raw: list[dict[str, Any]], model: type[LedgerEntry]) -> list[Any]:
        entries = []
        for item in raw:
            try:
                entries.append(model.model_validate(item))
            except ValidationError as exc:
                logger.debug("Skipping malformed indexer entry: %s", exc.errors()[:1])
        return entries

    async def handshakes_by_sender(self, address: str, limit: int | None = None) -> list[HandshakeEntry]:
        """Return handshake entries sent by ``address``; ``[]`` on any failure."""
        raw = await self._query(
            address,
            HANDSHAKES_BY_SENDER,
            {"address": address, "limit": limit or self.config.query_limit},
        )
        entries = self._to_entries(raw, HandshakeEntry)
        logger.debug("Found %d handshakes sent by %s", len(entries), address[:20])
        return entries

    async def handshakes_by_receiver(self, address: str, limit: int | None = None) -> list[HandshakeEntry]:
        """Return handshake entries received by ``address``; ``[]`` on any failure."""
        raw = await self._query(
            address,
            HANDSHAKES_BY_RECEIVER,
            {"address": address, "limit": limit or self.config.query_limit},
        )
        entries = self._to_entries(raw, HandshakeEntry)
        logger.debug("Found %d handshakes received by %s", len(entries), address[:20])
        return entries

    async def fetch_handshakes(self, address: str) -> HandshakeSets:
        """Query sent and received handshakes concurrently."""
        sent, received = await asyncio.gather(
            self.handshakes_by_sender(address),
            self.handshakes_by_receiver(address),
        )
        return HandshakeSets(sent=sent, received=received)

    async def contextual_messages_by_sender(
        self,
        address: str,
        alias: str,
        limit: int | None = None,
    ) -> list[ContextualMessageEntry]:
        """Return contextual messages sent by ``address`` under ``alias``.

        Payloads in the ``ciph_msg:1:comm:`` envelope are unwrapped; messages
        whose envelope names a different alias do not belong to the conversation
        and are dropped. Bare payloads are attributed to the queried alias.
        """
        raw = await self._query(
            address,
            CONTEXTUAL_BY_SENDER,
            {"address": address, "alias": alias, "limit": limit or self.config.query_limit},
        )
        messages: list[ContextualMessageEntry] = []
        for entry in self._to_entries(raw, LedgerEntry):
            comm = parse_comm_payload(entry.payload)
            if comm is not None and comm.alias != alias:
                continue
            messages.append(
                ContextualMessageEntry(
                    entry_id=entry.entry_id,
                    sender=entry.sender,
                    block_time=entry.block_time,
                    alias=alias,
                    encrypted_content=comm.content if comm is not None else entry.payload,
                )
            )
        messages.sort(key=lambda message: (message.block_time, message.entry_id))
        return messages

    async def is_conversation_active(self, initiator_address: str, recipient_address: str) -> bool:
        """Return True if both parties have sent a handshake to each other."""
        sent_by_initiator, sent_by_recipient = await asyncio.gather(
            self.handshakes_by_sender(initiator_address),
            self.handshakes_by_sender(recipient_address),
        )
        return is_handshake_complete(
            initiator_address, recipient_address, sent_by_initiator, sent_by_recipient
        )

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


class _IndexerClientSingleton:
    """Singleton wrapper for IndexerClient."""

    _instance: IndexerClient | None = None

    @classmethod
    def get_instance(cls) -> IndexerClient:
        """Get or create the singleton IndexerClient instance."""
        if cls._instance is None:
            cls._instance = IndexerClient()
        return cls._instance


def get_indexer_client() -> IndexerClient:
    """Return a singleton indexer client instance."""
    return _IndexerClientSingleton.get_instance()
