# src/kasia_courier/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import conversations_router, payloads_router, system_router

__all__ = [
    "conversations_router",
    "payloads_router",
    "system_router",
]
