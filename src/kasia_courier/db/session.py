"""Database session configuration for per-wallet key stores.

Each local wallet identity gets its own SQLite file so switching identities
can never expose another wallet's conversation keys.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from kasia_courier.core.settings import settings

KEY_STORE_PREFIX = "kasia-keys"
WALLET_SUFFIX_LENGTH = 8


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# Ensure model modules are imported so that metadata is populated when create_all runs.
import kasia_courier.models  # noqa: E402,F401


def key_store_name(wallet_address: str) -> str:
    """Return the store namespace for a wallet, built from its address suffix."""
    return f"{KEY_STORE_PREFIX}-{wallet_address.strip()[-WALLET_SUFFIX_LENGTH:]}"


def key_store_path(wallet_address: str, directory: Path | None = None) -> Path:
    """Return the SQLite file backing ``wallet_address``'s key store."""
    base_dir = Path(directory) if directory is not None else settings.key_store_dir
    return base_dir / f"{key_store_name(wallet_address)}.db"


def create_wallet_engine(path: Path) -> Engine:
    """Create an engine for the SQLite file at ``path``, creating its directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(f"sqlite:///{path}", echo=settings.debug)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_tables(engine: Engine) -> None:
    """Create all key store tables if they are missing."""
    Base.metadata.create_all(bind=engine)


def drop_tables(engine: Engine) -> None:
    """Drop all key store tables."""
    Base.metadata.drop_all(bind=engine)
