# src/kasia_courier/models/identity_keypair.py
"""Model for the wallet's derived identity keypair."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from kasia_courier.db.session import Base
from kasia_courier.db.time import utcnow


class IdentityKeypairRecord(Base):
    """Static secp256k1 keypair that ephemeral-key messages are encrypted to."""

    __tablename__ = "identity_keypair"

    wallet_address: Mapped[str] = mapped_column(String(128), primary_key=True)
    private_key_hex: Mapped[str] = mapped_column(String(64), nullable=False)
    public_key_hex: Mapped[str] = mapped_column(String(66), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
