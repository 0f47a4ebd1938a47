"""Conversation reconciliation.

There is no conversation record on the ledger. Conversations are rebuilt on
every pass by folding the handshakes a wallet sent and received into a map of
conversation id to :class:`Conversation`. The fold performs no I/O and its
result does not depend on the order of the input lists.

Rules, applied in phase order:

1. Sent initial handshakes create Pending conversations initiated by the wallet.
2. Sent responses activate known conversations, or create a provisional Active
   record initiated by the response's target.
3. Received initial handshakes create Pending conversations initiated by their
   sender, or complete a provisional record.
4. Received responses activate known conversations, or create a provisional
   Active record initiated by the wallet.
5. Sent responses are re-checked for conversations still lacking a response.

A non-response handshake always determines the initiator; responses never
override an initiator established by one.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from kasia_courier.db.time import MAX_EPOCH_MS, from_epoch_ms
from kasia_courier.schemas.ledger import HandshakeEntry
from kasia_courier.services.payloads import (
    SHORT_CONVERSATION_ID_LENGTH,
    HandshakePayload,
    parse_handshake_payload,
)
from kasia_courier.utils.address import same_address, strip_prefix

logger = logging.getLogger(__name__)

FALLBACK_ID_LENGTH = 16


class ConversationStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"


@dataclass(frozen=True)
class Conversation:
    """Reconstructed relationship between two addresses."""

    id: str
    initiator_address: str
    recipient_address: str
    status: ConversationStatus
    initiator_alias: str | None
    handshake_ref: str | None
    response_ref: str | None
    created_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status is ConversationStatus.ACTIVE

    def counterpart(self, address: str) -> str:
        """Return the participant that is not ``address``."""
        if same_address(self.initiator_address, address):
            return self.recipient_address
        return self.initiator_address


@dataclass(frozen=True)
class ParsedHandshake:
    """A handshake entry together with its decoded payload."""

    entry: HandshakeEntry
    payload: HandshakePayload

    @property
    def conversation_id(self) -> str:
        return self.payload.conversation_id or self.entry.entry_id[:FALLBACK_ID_LENGTH]

    @property
    def logical_recipient(self) -> str | None:
        """The recipient named in the payload, expanded to the ledger receiver when it is a short form."""
        named = self.payload.recipient_address
        receiver = self.entry.receiver or None
        if not named:
            return receiver
        if receiver and same_address(named, receiver) and len(strip_prefix(receiver)) > len(strip_prefix(named)):
            return receiver
        return named


@dataclass
class _Draft:
    id: str
    initiator_address: str
    recipient_address: str
    status: ConversationStatus
    initiator_alias: str | None
    handshake_ref: str | None
    response_ref: str | None
    created_at_ms: int
    provisional: bool = False

    def activate(self, response_ref: str) -> None:
        self.status = ConversationStatus.ACTIVE
        if self.response_ref is None:
            self.response_ref = response_ref

    def freeze(self) -> Conversation:
        return Conversation(
            id=self.id,
            initiator_address=self.initiator_address,
            recipient_address=self.recipient_address,
            status=self.status,
            initiator_alias=self.initiator_alias,
            handshake_ref=self.handshake_ref,
            response_ref=self.response_ref,
            created_at=from_epoch_ms(self.created_at_ms),
        )


class _ConversationBook:
    """Drafts keyed by conversation id, matching short ids by prefix."""

    def __init__(self) -> None:
        self._drafts: dict[str, _Draft] = {}

    def find(self, conversation_id: str) -> _Draft | None:
        draft = self._drafts.get(conversation_id)
        if draft is not None or len(conversation_id) < SHORT_CONVERSATION_ID_LENGTH:
            return draft
        for key in sorted(self._drafts):
            if len(key) < SHORT_CONVERSATION_ID_LENGTH:
                continue
            if key.startswith(conversation_id) or conversation_id.startswith(key):
                draft = self._drafts[key]
                self._adopt_id(draft, conversation_id)
                return draft
        return None

    def add(self, draft: _Draft) -> None:
        self._drafts[draft.id] = draft

    def _adopt_id(self, draft: _Draft, conversation_id: str) -> None:
        # Prefer the full id over a compact-handshake prefix.
        if len(conversation_id) > len(draft.id) and conversation_id.startswith(draft.id):
            del self._drafts[draft.id]
            draft.id = conversation_id
            self._drafts[conversation_id] = draft

    def drafts(self) -> list[_Draft]:
        return [self._drafts[key] for key in sorted(self._drafts)]


def _block_time_in_range(entry: HandshakeEntry) -> bool:
    if isinstance(entry.block_time, int) and 0 <= entry.block_time <= MAX_EPOCH_MS:
        return True
    logger.warning("Skipping handshake %s with block time %r", entry.entry_id, entry.block_time)
    return False


def prepare_handshakes(entries: Iterable[HandshakeEntry]) -> list[ParsedHandshake]:
    """Deduplicate by entry id, order by (block time, entry id) and parse.

    Entries whose payload cannot be parsed, or whose block time falls outside
    the representable range, are skipped.
    """
    entries = [entry for entry in entries if _block_time_in_range(entry)]
    ordered = sorted(entries, key=lambda entry: (entry.block_time, entry.entry_id, entry.payload))
    seen: set[str] = set()
    parsed: list[ParsedHandshake] = []
    for entry in ordered:
        if entry.entry_id in seen:
            continue
        seen.add(entry.entry_id)
        payload = parse_handshake_payload(entry.payload)
        if payload is None:
            logger.debug("Skipping unparseable handshake %s", entry.entry_id)
            continue
        parsed.append(ParsedHandshake(entry=entry, payload=payload))
    return parsed


def _apply_sent_initial(book: _ConversationBook, address: str, item: ParsedHandshake) -> None:
    recipient = item.logical_recipient
    if not recipient or same_address(recipient, address):
        # Relay quirk: the received pass picks these up with the right roles.
        return
    if book.find(item.conversation_id) is not None:
        return
    book.add(
        _Draft(
            id=item.conversation_id,
            initiator_address=address,
            recipient_address=recipient,
            status=ConversationStatus.PENDING,
            initiator_alias=item.payload.alias,
            handshake_ref=item.entry.entry_id,
            response_ref=None,
            created_at_ms=item.entry.block_time,
        )
    )


def _apply_sent_response(book: _ConversationBook, address: str, item: ParsedHandshake) -> None:
    target = item.logical_recipient
    draft = book.find(item.conversation_id)
    if draft is not None:
        if not same_address(draft.initiator_address, address):
            draft.activate(item.entry.entry_id)
        return

    if not target or same_address(target, address):
        return
    book.add(
        _Draft(
            id=item.conversation_id,
            initiator_address=target,
            recipient_address=address,
            status=ConversationStatus.ACTIVE,
            initiator_alias=None,
            handshake_ref=None,
            response_ref=item.entry.entry_id,
            created_at_ms=item.entry.block_time,
            provisional=True,
        )
    )


def _apply_received_initial(book: _ConversationBook, address: str, item: ParsedHandshake) -> None:
    sender = item.entry.sender
    if not sender or same_address(sender, address):
        return
    draft = book.find(item.conversation_id)
    if draft is None:
        book.add(
            _Draft(
                id=item.conversation_id,
                initiator_address=sender,
                recipient_address=address,
                status=ConversationStatus.PENDING,
                initiator_alias=item.payload.alias,
                handshake_ref=item.entry.entry_id,
                response_ref=None,
                created_at_ms=item.entry.block_time,
            )
        )
        return

    if draft.provisional:
        draft.initiator_address = sender
        draft.recipient_address = address
        draft.provisional = False
    if draft.initiator_alias is None:
        draft.initiator_alias = item.payload.alias
    if draft.handshake_ref is None:
        draft.handshake_ref = item.entry.entry_id
    draft.created_at_ms = min(draft.created_at_ms, item.entry.block_time)


def _apply_received_response(book: _ConversationBook, address: str, item: ParsedHandshake) -> None:
    responder = item.entry.sender
    if not responder or same_address(responder, address):
        return
    draft = book.find(item.conversation_id)
    if draft is not None:
        if not same_address(draft.initiator_address, responder):
            draft.activate(item.entry.entry_id)
        return

    book.add(
        _Draft(
            id=item.conversation_id,
            initiator_address=address,
            recipient_address=responder,
            status=ConversationStatus.ACTIVE,
            initiator_alias=None,
            handshake_ref=None,
            response_ref=item.entry.entry_id,
            created_at_ms=item.entry.block_time,
            provisional=True,
        )
    )


def fold_handshakes(
    address: str,
    sent: list[ParsedHandshake],
    received: list[ParsedHandshake],
) -> dict[str, Conversation]:
    """Fold already-parsed, ordered handshakes into conversations."""
    book = _ConversationBook()
    sent_initial = [item for item in sent if not item.payload.is_response]
    sent_responses = [item for item in sent if item.payload.is_response]
    received_initial = [item for item in received if not item.payload.is_response]
    received_responses = [item for item in received if item.payload.is_response]

    for item in sent_initial:
        _apply_sent_initial(book, address, item)
    for item in sent_responses:
        _apply_sent_response(book, address, item)
    for item in received_initial:
        _apply_received_initial(book, address, item)
    for item in received_responses:
        _apply_received_response(book, address, item)

    # Ids may only line up once every record exists.
    for item in sent_responses:
        if item.payload.conversation_id is None:
            continue
        draft = book.find(item.payload.conversation_id)
        if (
            draft is not None
            and draft.response_ref is None
            and not same_address(draft.initiator_address, address)
        ):
            draft.activate(item.entry.entry_id)

    conversations: dict[str, Conversation] = {}
    for draft in book.drafts():
        if same_address(draft.initiator_address, draft.recipient_address):
            logger.debug("Dropping self-addressed conversation %s", draft.id)
            continue
        conversations[draft.id] = draft.freeze()
    return conversations


def reconcile_conversations(
    address: str,
    sent: Iterable[HandshakeEntry],
    received: Iterable[HandshakeEntry],
) -> dict[str, Conversation]:
    """Rebuild the conversations of ``address`` from its sent and received handshakes.

    Args:
        address: The local wallet address.
        sent: Handshake entries sent by ``address``, in any order.
        received: Handshake entries received by ``address``, in any order.

    Returns:
        Mapping of conversation id to reconstructed conversation.
    """
    conversations = fold_handshakes(address, prepare_handshakes(sent), prepare_handshakes(received))
    active = sum(1 for conversation in conversations.values() if conversation.is_active)
    logger.debug(
        "Reconciled %d conversations (%d active) for %s",
        len(conversations),
        active,
        address[:20],
    )
    return conversations


def is_handshake_complete(
    initiator_address: str,
    recipient_address: str,
    sent_by_initiator: Iterable[HandshakeEntry],
    sent_by_recipient: Iterable[HandshakeEntry],
) -> bool:
    """Return True if each party has sent a handshake entry to the other."""
    initiator_reached = any(same_address(entry.receiver, recipient_address) for entry in sent_by_initiator)
    recipient_reached = any(same_address(entry.receiver, initiator_address) for entry in sent_by_recipient)
    return initiator_reached and recipient_reached
