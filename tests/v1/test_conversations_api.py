# tests/v1/test_conversations_api.py
import pytest
from fastapi import status

from kasia_courier.services.payloads import build_comm_payload, build_handshake_payload

T0 = 1_700_000_000_000


@pytest.fixture()
def handshake_pair(alice, bob, fake_indexer, handshake_entry):
    initial = handshake_entry("tx-initial", alice.address, bob.address, build_handshake_payload("alice", bob.address, "c1"), T0)
    response = handshake_entry(
        "tx-response",
        bob.address,
        alice.address,
        build_handshake_payload("bob", alice.address, "c1", is_response=True),
        T0 + 1,
    )
    fake_indexer.add_handshake(initial)
    fake_indexer.add_handshake(response)
    return initial, response


def test_list_conversations(client, alice, bob, handshake_pair):
    response = client.get("/api/v1/conversations", params={"address": alice.address})

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["address"] == alice.address
    assert body["active_count"] == 1
    assert body["pending_count"] == 0
    [conversation] = body["conversations"]
    assert conversation["id"] == "c1"
    assert conversation["status"] == "active"
    assert conversation["initiator_address"] == alice.address
    assert conversation["recipient_address"] == bob.address
    assert conversation["initiator_alias"] == "alice"


def test_list_conversations_for_new_wallet(client, carol):
    response = client.get("/api/v1/conversations", params={"address": carol.address})

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["conversations"] == []


@pytest.mark.parametrize("address", ["bitcoin:abc", "kaspa:", "plain"])
def test_invalid_address_is_rejected(client, address):
    response = client.get("/api/v1/conversations", params={"address": address})
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_missing_address_is_unprocessable(client):
    response = client.get("/api/v1/conversations")
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_get_conversation(client, bob, handshake_pair):
    response = client.get("/api/v1/conversations/c1", params={"address": bob.address})

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["response_ref"] == "tx-response"


def test_get_unknown_conversation(client, alice, handshake_pair):
    response = client.get("/api/v1/conversations/missing", params={"address": alice.address})
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_conversation_status(client, alice, bob, handshake_pair):
    response = client.get(
        "/api/v1/conversations/status",
        params={"initiator": alice.address, "recipient": bob.address},
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["active"] is True


class TestConversationMessages:
    def test_messages_default_to_initiator(self, client, alice, fake_indexer, handshake_pair):
        fake_indexer.add_contextual(
            alice.address,
            "alice",
            {"tx_id": "tx-msg", "sender": alice.address, "block_time": T0 + 5, "message_payload": build_comm_payload("alice", "sym:00ff")},
        )

        response = client.get("/api/v1/conversations/c1/messages", params={"address": alice.address})

        assert response.status_code == status.HTTP_200_OK
        [message] = response.json()
        assert message["entry_id"] == "tx-msg"
        assert message["encrypted_content"] == "sym:00ff"
        assert message["scheme"] == "sym"

    def test_recipient_messages_need_alias(self, client, alice, bob, handshake_pair):
        response = client.get(
            "/api/v1/conversations/c1/messages",
            params={"address": alice.address, "sender": bob.address},
        )
        assert response.status_code == status.HTTP_409_CONFLICT

        response = client.get(
            "/api/v1/conversations/c1/messages",
            params={"address": alice.address, "sender": bob.address, "alias": "bob"},
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == []

    def test_sender_matches_participant_in_any_case(self, client, alice, bob, fake_indexer, handshake_pair):
        params = {"address": alice.address, "sender": bob.address.upper()}
        response = client.get("/api/v1/conversations/c1/messages", params=params)
        assert response.status_code == status.HTTP_409_CONFLICT

        response = client.get("/api/v1/conversations/c1/messages", params={**params, "alias": "bob"})
        assert response.status_code == status.HTTP_200_OK
        request = fake_indexer.requests[-1]
        assert request.url.path == "/contextual-messages/by-sender"
        assert request.url.params["address"] == bob.address

    def test_non_participant_sender(self, client, alice, carol, handshake_pair):
        response = client.get(
            "/api/v1/conversations/c1/messages",
            params={"address": alice.address, "sender": carol.address},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
