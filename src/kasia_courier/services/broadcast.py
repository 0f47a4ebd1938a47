"""Public broadcast payloads.

Two namespaces share the colon-delimited layout of private payloads but carry
plaintext:

- Kasia broadcast: ``1:bcast:{content}``
- Q&A: ``ku:1:qa_q:{topicId}:{author}:{ts}:{hash16}:{content}`` and
  ``ku:1:qa_a:{questionTxId}:{author}:{ts}:{hash16}:{content}``

Content is truncated to ``MAX_CONTENT_LENGTH`` characters *before* hashing, so
the published hash always matches the stored body. Builders return hex ready
for a transaction payload; parsers accept hex or raw text.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass

from kasia_courier.services.payloads import ensure_size
from kasia_courier.utils.encoding import hex_to_string, is_hex, string_to_hex

logger = logging.getLogger(__name__)

DELIM = ":"
BROADCAST_VERSION = "1"
BROADCAST_TAG = "bcast"
BROADCAST_HEADER = f"{BROADCAST_VERSION}{DELIM}{BROADCAST_TAG}{DELIM}"

KU_PREFIX = "ku"
KU_VERSION = "1"
QUESTION_TAG = "qa_q"
ANSWER_TAG = "qa_a"

MAX_CONTENT_LENGTH = 500
MAX_BROADCAST_BYTES = 2048
MAX_QA_BYTES = 2048
CONTENT_HASH_LENGTH = 16

_HASH_FIELD = re.compile(r"^[0-9a-f]{16}$")
# ku:1:tag:ref:author... -- the hash can sit no earlier than index 6.
_FIRST_HASH_INDEX = 6


@dataclass(frozen=True)
class Broadcast:
    version: str
    content: str


@dataclass(frozen=True)
class QAPost:
    """A parsed Q&A question or answer.

    ``reference`` is the topic id for questions and the question's entry id for
    answers.
    """

    kind: str
    version: str
    reference: str
    author_address: str
    timestamp: int
    content_hash: str
    content: str

    @property
    def is_question(self) -> bool:
        return self.kind == QUESTION_TAG

    def verify(self) -> bool:
        """Return True if the stored hash matches the stored content."""
        return content_hash(self.content) == self.content_hash


def truncate_content(content: str) -> str:
    return content[:MAX_CONTENT_LENGTH]


def content_hash(content: str) -> str:
    """Return the 16-hex-char SHA-256 prefix of the truncated content."""
    digest = hashlib.sha256(truncate_content(content).encode("utf-8")).hexdigest()
    return digest[:CONTENT_HASH_LENGTH]


def _as_text(payload: str) -> str:
    if is_hex(payload):
        return hex_to_string(payload)
    return payload


def build_broadcast(content: str) -> str:
    """Build a hex-encoded ``1:bcast:{content}`` payload.

    Raises:
        PayloadTooLargeError: If the encoded payload exceeds the broadcast ceiling.
    """
    text = ensure_size("broadcast", BROADCAST_HEADER + truncate_content(content), MAX_BROADCAST_BYTES)
    return string_to_hex(text)


def parse_broadcast(payload: str | None) -> Broadcast | None:
    """Parse a broadcast payload; content may itself contain colons."""
    if not payload:
        return None
    text = _as_text(payload.strip())
    if not text.startswith(BROADCAST_HEADER):
        return None
    return Broadcast(version=BROADCAST_VERSION, content=text[len(BROADCAST_HEADER) :])


def _build_qa(tag: str, reference: str, author_address: str, timestamp: int, content: str) -> str:
    body = truncate_content(content)
    fields = [
        KU_PREFIX,
        KU_VERSION,
        tag,
        reference,
        author_address,
        str(timestamp),
        content_hash(body),
        body,
    ]
    return string_to_hex(ensure_size("qa", DELIM.join(fields), MAX_QA_BYTES))


def build_question(topic_id: str, author_address: str, timestamp: int, content: str) -> str:
    """Build a hex-encoded Q&A question payload.

    Raises:
        ValueError: If ``topic_id`` contains the delimiter.
        PayloadTooLargeError: If the payload exceeds the Q&A ceiling.
    """
    if DELIM in topic_id:
        raise ValueError("Topic id must not contain ':'")
    return _build_qa(QUESTION_TAG, topic_id, author_address, timestamp, content)


def build_answer(question_tx_id: str, author_address: str, timestamp: int, content: str) -> str:
    """Build a hex-encoded Q&A answer payload referencing ``question_tx_id``.

    Raises:
        ValueError: If ``question_tx_id`` contains the delimiter.
        PayloadTooLargeError: If the payload exceeds the Q&A ceiling.
    """
    if DELIM in question_tx_id:
        raise ValueError("Question entry id must not contain ':'")
    return _build_qa(ANSWER_TAG, question_tx_id, author_address, timestamp, content)


def parse_qa(payload: str | None) -> QAPost | None:
    """Parse a Q&A payload.

    Both the author address and the content may contain the delimiter, so the
    hash field is located first: it is the first 16-char lowercase hex field at
    or after index 6. The timestamp precedes it and the author spans the fields
    between the reference and the timestamp.
    """
    if not payload:
        return None
    parts = _as_text(payload.strip()).split(DELIM)
    if len(parts) < 8 or parts[0] != KU_PREFIX or parts[2] not in (QUESTION_TAG, ANSWER_TAG):
        return None

    hash_index = next(
        (index for index in range(_FIRST_HASH_INDEX, len(parts)) if _HASH_FIELD.match(parts[index])),
        None,
    )
    if hash_index is None:
        logger.debug("Q&A payload has no content hash field")
        return None
    try:
        timestamp = int(parts[hash_index - 1])
    except ValueError:
        return None

    return QAPost(
        kind=parts[2],
        version=parts[1],
        reference=parts[3],
        author_address=DELIM.join(parts[4 : hash_index - 1]),
        timestamp=timestamp,
        content_hash=parts[hash_index],
        content=DELIM.join(parts[hash_index + 1 :]),
    )
