# src/kasia_courier/api/v1/endpoints/payloads.py
"""Payload building and decoding endpoints for the Kasia Courier API."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, HTTPException, status

from kasia_courier.schemas.payloads import (
    AnswerCreate,
    BroadcastCreate,
    CommPayloadCreate,
    HandshakePayloadCreate,
    PayloadDecodeRequest,
    PayloadDecodeResponse,
    PayloadResponse,
    QuestionCreate,
)
from kasia_courier.services.broadcast import (
    build_answer,
    build_broadcast,
    build_question,
    parse_broadcast,
    parse_qa,
)
from kasia_courier.services.payloads import (
    PayloadTooLargeError,
    build_comm_payload,
    build_compact_handshake,
    build_handshake_payload,
    parse_comm_payload,
    parse_handshake_payload,
)
from kasia_courier.utils.encoding import hex_to_string, string_to_hex

router = APIRouter(prefix="/payloads", tags=["payloads"])


def _build(kind: str, builder: Callable[[], str], *, hex_encoded: bool = False) -> PayloadResponse:
    """Run a payload builder, mapping builder errors onto HTTP errors."""
    try:
        built = builder()
    except PayloadTooLargeError as exc:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(exc),
        ) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    text = hex_to_string(built) if hex_encoded else built
    return PayloadResponse(
        kind=kind,
        payload=text,
        payload_hex=built if hex_encoded else string_to_hex(built),
        size_bytes=len(text.encode("utf-8")),
    )


@router.post("/handshake", response_model=PayloadResponse)
async def create_handshake_payload(data: HandshakePayloadCreate) -> PayloadResponse:
    """Build a canonical or compact handshake payload."""
    builder = build_compact_handshake if data.compact else build_handshake_payload
    return _build(
        "handshake",
        lambda: builder(
            data.alias,
            data.recipient_address,
            data.conversation_id,
            is_response=data.is_response,
            timestamp=data.timestamp,
        ),
    )


@router.post("/comm", response_model=PayloadResponse)
async def create_comm_payload(data: CommPayloadCreate) -> PayloadResponse:
    """Wrap an already-encrypted token in a contextual-message payload."""
    return _build("comm", lambda: build_comm_payload(data.alias, data.encrypted_content))


@router.post("/broadcast", response_model=PayloadResponse)
async def create_broadcast_payload(data: BroadcastCreate) -> PayloadResponse:
    """Build a public broadcast payload."""
    return _build("broadcast", lambda: build_broadcast(data.content), hex_encoded=True)


@router.post("/question", response_model=PayloadResponse)
async def create_question_payload(data: QuestionCreate) -> PayloadResponse:
    """Build a Q&A question payload."""
    return _build(
        "question",
        lambda: build_question(data.topic_id, data.author_address, data.timestamp, data.content),
        hex_encoded=True,
    )


@router.post("/answer", response_model=PayloadResponse)
async def create_answer_payload(data: AnswerCreate) -> PayloadResponse:
    """Build a Q&A answer payload."""
    return _build(
        "answer",
        lambda: build_answer(data.question_tx_id, data.author_address, data.timestamp, data.content),
        hex_encoded=True,
    )


@router.post("/decode", response_model=PayloadDecodeResponse)
async def decode_payload(data: PayloadDecodeRequest) -> PayloadDecodeResponse:
    """Classify a raw payload and return its decoded fields."""
    comm = parse_comm_payload(data.payload)
    if comm is not None:
        return PayloadDecodeResponse(kind="comm", data=asdict(comm))

    handshake = parse_handshake_payload(data.payload)
    if handshake is not None:
        return PayloadDecodeResponse(kind="handshake", data=asdict(handshake))

    broadcast = parse_broadcast(data.payload)
    if broadcast is not None:
        return PayloadDecodeResponse(kind="broadcast", data=asdict(broadcast))

    post = parse_qa(data.payload)
    if post is not None:
        decoded: dict[str, Any] = asdict(post)
        decoded["verified"] = post.verify()
        return PayloadDecodeResponse(kind="question" if post.is_question else "answer", data=decoded)

    return PayloadDecodeResponse(kind="unknown")
