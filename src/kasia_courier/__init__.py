"""Kasia Courier: end-to-end encrypted conversations reconstructed from ledger entries."""

__version__ = "0.1.0"
