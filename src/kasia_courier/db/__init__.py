# src/kasia_courier/db/__init__.py
"""Database configuration and utilities."""

from .session import Base, create_tables, create_wallet_engine, key_store_path

__all__ = ["Base", "create_tables", "create_wallet_engine", "key_store_path"]
