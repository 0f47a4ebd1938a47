# src/kasia_courier/models/conversation_key.py
"""Model for persisted conversation keys."""

from datetime import datetime

from sqlalchemy import DateTime, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from kasia_courier.db.session import Base
from kasia_courier.db.time import utcnow


class ConversationKeyRecord(Base):
    """Symmetric key derived for one conversation.

    A conversation has exactly one key for its lifetime; rows are written once
    and only removed by clearing the whole store.
    """

    __tablename__ = "conversation_key"

    conversation_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    key_bytes: Mapped[bytes] = mapped_column(LargeBinary(32), nullable=False)

    # Audit metadata only.
    my_address: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    other_address: Mapped[str] = mapped_column(String(128), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
