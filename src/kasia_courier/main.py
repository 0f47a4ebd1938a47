# src/kasia_courier/main.py
"""Main entry point for the Kasia Courier application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from kasia_courier.api.v1 import conversations_router, payloads_router, system_router
from kasia_courier.core.settings import settings
from kasia_courier.services.conversation_sync import get_conversation_sync_worker
from kasia_courier.services.indexer import get_indexer_client

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Conversation reconciliation and payload codecs for Kasia messaging",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(conversations_router, prefix="/api/v1")
app.include_router(payloads_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    worker = get_conversation_sync_worker()
    for address in settings.sync_addresses:
        worker.track(address)
    if settings.sync_enabled and worker.tracked:
        await worker.start()
        logger.info("Conversation sync started for %d wallets", len(worker.tracked))


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await get_conversation_sync_worker().stop()
    await get_indexer_client().close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Conversation reconciliation and payload codecs for Kasia messaging",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("kasia_courier.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
