"""Application settings and configuration.

This module defines all configuration options for the Kasia Courier service.
Settings are loaded from environment variables with sensible defaults.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Kasia Courier", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Kasia indexer endpoints (mainnet and testnet are separate services)
    indexer_mainnet_url: str = Field(
        default="https://indexer.kasia.fyi",
        alias="KASIA_INDEXER_MAINNET_URL",
    )
    indexer_testnet_url: str = Field(
        default="https://dev-indexer.kasia.fyi",
        alias="KASIA_INDEXER_TESTNET_URL",
    )
    indexer_timeout_seconds: float = Field(
        default=10.0,
        alias="KASIA_INDEXER_TIMEOUT_SECONDS",
    )
    indexer_query_limit: int = Field(default=50, alias="KASIA_INDEXER_QUERY_LIMIT")

    # Background conversation reconciliation
    sync_enabled: bool = Field(default=False, alias="CONVERSATION_SYNC_ENABLED")
    sync_interval_seconds: float = Field(
        default=30.0,
        alias="CONVERSATION_SYNC_INTERVAL_SECONDS",
    )
    sync_addresses: list[str] = Field(default_factory=list, alias="CONVERSATION_SYNC_ADDRESSES")

    # Local key store (one SQLite file per wallet identity)
    key_store_dir: Path = Field(default=Path("./.kasia-keys"), alias="KEY_STORE_DIR")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )


settings = Settings()
