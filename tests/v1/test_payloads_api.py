# tests/v1/test_payloads_api.py
from fastapi import status

from kasia_courier.utils.encoding import string_to_hex


def test_build_and_decode_handshake(client, bob):
    built = client.post(
        "/api/v1/payloads/handshake",
        json={
            "alias": "alice",
            "recipient_address": bob.address,
            "conversation_id": "c1",
            "timestamp": "2024-01-02T03:04:05.678Z",
        },
    )

    assert built.status_code == status.HTTP_200_OK
    body = built.json()
    assert body["kind"] == "handshake"
    assert body["payload"].startswith("ciph_msg:")
    assert body["payload_hex"] == string_to_hex(body["payload"])
    assert body["size_bytes"] == len(body["payload"])

    decoded = client.post("/api/v1/payloads/decode", json={"payload": body["payload_hex"]})
    assert decoded.status_code == status.HTTP_200_OK
    assert decoded.json()["kind"] == "handshake"
    assert decoded.json()["data"]["conversation_id"] == "c1"
    assert decoded.json()["data"]["recipient_address"] == bob.address


def test_compact_handshake(client, bob):
    response = client.post(
        "/api/v1/payloads/handshake",
        json={
            "alias": "alice",
            "recipient_address": bob.address,
            "conversation_id": "0123456789abcdef",
            "is_response": True,
            "compact": True,
        },
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["payload"].startswith("ciph_msg:1:hr:01234567:")


def test_oversized_handshake(client, bob):
    response = client.post(
        "/api/v1/payloads/handshake",
        json={"alias": "a" * 64, "recipient_address": "kaspa:" + "q" * 2000, "conversation_id": "c1"},
    )
    assert response.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


def test_comm_payload(client):
    response = client.post("/api/v1/payloads/comm", json={"alias": "a1b2", "encrypted_content": "sym:00ff"})

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["payload"] == "ciph_msg:1:comm:a1b2:sym:00ff"

    decoded = client.post("/api/v1/payloads/decode", json={"payload": response.json()["payload"]})
    assert decoded.json() == {"kind": "comm", "data": {"alias": "a1b2", "content": "sym:00ff"}}


def test_comm_alias_with_delimiter(client):
    response = client.post("/api/v1/payloads/comm", json={"alias": "a:b", "encrypted_content": "sym:00"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_broadcast_payload(client):
    response = client.post("/api/v1/payloads/broadcast", json={"content": "hello: everyone"})

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["payload"] == "1:bcast:hello: everyone"
    assert body["payload_hex"] == string_to_hex(body["payload"])

    decoded = client.post("/api/v1/payloads/decode", json={"payload": body["payload_hex"]})
    assert decoded.json()["kind"] == "broadcast"
    assert decoded.json()["data"]["content"] == "hello: everyone"


def test_question_and_answer(client, alice, bob):
    question = client.post(
        "/api/v1/payloads/question",
        json={"topic_id": "lesson-1", "author_address": alice.address, "timestamp": 1700000000000, "content": "why?"},
    )
    answer = client.post(
        "/api/v1/payloads/answer",
        json={"question_tx_id": "tx-q", "author_address": bob.address, "timestamp": 1700000000001, "content": "because"},
    )

    assert question.status_code == status.HTTP_200_OK
    assert answer.status_code == status.HTTP_200_OK

    decoded = client.post("/api/v1/payloads/decode", json={"payload": question.json()["payload_hex"]})
    data = decoded.json()["data"]
    assert decoded.json()["kind"] == "question"
    assert data["author_address"] == alice.address
    assert data["verified"] is True

    decoded = client.post("/api/v1/payloads/decode", json={"payload": answer.json()["payload"]})
    assert decoded.json()["kind"] == "answer"
    assert decoded.json()["data"]["reference"] == "tx-q"


def test_question_topic_with_delimiter(client, alice):
    response = client.post(
        "/api/v1/payloads/question",
        json={"topic_id": "a:b", "author_address": alice.address, "timestamp": 1, "content": "x"},
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_decode_unknown_payload(client):
    response = client.post("/api/v1/payloads/decode", json={"payload": "hello there"})

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"kind": "unknown", "data": None}
