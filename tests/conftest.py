# tests/conftest.py
from __future__ import annotations

import hashlib
from collections import defaultdict
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi import FastAPI
from fastapi.testclient import TestClient

from kasia_courier.api.v1.endpoints import conversations as conversations_endpoints
from kasia_courier.api.v1.endpoints import system as system_endpoints
from kasia_courier.main import app as fastapi_app
from kasia_courier.schemas.ledger import HandshakeEntry
from kasia_courier.services.conversation_sync import ConversationSyncWorker
from kasia_courier.services.indexer import IndexerClient, IndexerConfig
from kasia_courier.services.key_derivation import compressed_public_key
from kasia_courier.utils.address import encode_address
from kasia_courier.utils.encoding import string_to_hex

TEST_INDEXER_CONFIG = IndexerConfig(
    mainnet_url="https://indexer.test",
    testnet_url="https://testnet-indexer.test",
    timeout_seconds=1.0,
    query_limit=50,
)


@dataclass(frozen=True)
class Wallet:
    """Test wallet: a secp256k1 key and its Schnorr-style ledger address."""

    name: str
    private_key: ec.EllipticCurvePrivateKey
    address: str


def make_wallet(name: str, prefix: str = "kaspa") -> Wallet:
    secret = int(hashlib.sha256(name.encode()).hexdigest(), 16)
    private_key = ec.derive_private_key(secret, ec.SECP256K1())
    x_only = compressed_public_key(private_key.public_key())[1:]
    return Wallet(name=name, private_key=private_key, address=encode_address(x_only, prefix))


def make_entry(
    entry_id: str,
    sender: str,
    receiver: str,
    payload: str,
    block_time: int = 1_700_000_000_000,
    *,
    hex_wrap: bool = True,
) -> HandshakeEntry:
    """Build a handshake entry the way the indexer returns it (payload hex-encoded)."""
    return HandshakeEntry.model_validate(
        {
            "tx_id": entry_id,
            "sender": sender,
            "receiver": receiver,
            "block_time": block_time,
            "message_payload": string_to_hex(payload) if hex_wrap else payload,
        }
    )


@pytest.fixture()
def alice() -> Wallet:
    return make_wallet("alice")


@pytest.fixture()
def bob() -> Wallet:
    return make_wallet("bob")


@pytest.fixture()
def carol() -> Wallet:
    return make_wallet("carol")


class FakeIndexer:
    """In-memory indexer served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.by_sender: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.by_receiver: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.contextual: dict[tuple[str, str], list[dict[str, Any]]] = defaultdict(list)
        self.requests: list[httpx.Request] = []
        self.failing_paths: set[str] = set()

    def add_handshake(self, entry: HandshakeEntry) -> None:
        raw = {
            "tx_id": entry.entry_id,
            "sender": entry.sender,
            "receiver": entry.receiver,
            "block_time": entry.block_time,
            "message_payload": entry.payload,
        }
        self.by_sender[entry.sender].append(raw)
        self.by_receiver[entry.receiver].append(raw)

    def add_contextual(self, sender: str, alias: str, raw: dict[str, Any]) -> None:
        self.contextual[(sender, alias)].append(raw)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.failing_paths:
            return httpx.Response(503, json={"error": "unavailable"})
        address = request.url.params.get("address", "")
        if path == "/handshakes/by-sender":
            return httpx.Response(200, json=self.by_sender.get(address, []))
        if path == "/handshakes/by-receiver":
            return httpx.Response(200, json=self.by_receiver.get(address, []))
        if path == "/contextual-messages/by-sender":
            alias = request.url.params.get("alias", "")
            return httpx.Response(200, json=self.contextual.get((address, alias), []))
        return httpx.Response(404)

    def client(self) -> IndexerClient:
        return IndexerClient(TEST_INDEXER_CONFIG, transport=httpx.MockTransport(self.handler))


@pytest.fixture()
def fake_indexer() -> FakeIndexer:
    return FakeIndexer()


@pytest.fixture()
def indexer_client(fake_indexer: FakeIndexer) -> IndexerClient:
    return fake_indexer.client()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def sync_worker(indexer_client: IndexerClient) -> ConversationSyncWorker:
    return ConversationSyncWorker(client=indexer_client)


@pytest.fixture()
def client(
    app: FastAPI, indexer_client: IndexerClient, sync_worker: ConversationSyncWorker
) -> Iterator[TestClient]:
    overrides: dict[Callable[..., Any], Callable[..., Any]] = {
        conversations_endpoints.get_indexer_client_dep: lambda: indexer_client,
        conversations_endpoints.get_sync_worker_dep: lambda: sync_worker,
        system_endpoints.get_sync_worker_dep: lambda: sync_worker,
    }
    app.dependency_overrides.update(overrides)
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        for dependency in overrides:
            app.dependency_overrides.pop(dependency, None)


@pytest.fixture()
def handshake_entry() -> Callable[..., HandshakeEntry]:
    return make_entry


@pytest.fixture()
def wallet_factory() -> Callable[..., Wallet]:
    return make_wallet
