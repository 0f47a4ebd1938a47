# src/kasia_courier/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .conversations import router as conversations_router
from .payloads import router as payloads_router
from .system import router as system_router

__all__ = [
    "conversations_router",
    "payloads_router",
    "system_router",
]
