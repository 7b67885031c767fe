"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting has the wrong type, the app fails fast with a
clear error message.

Usage:
    from streampay_escrow.config import get_settings
    settings = get_settings()
    print(settings.stellar_rpc_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

TESTNET_PASSPHRASE = "Test SDF Network ; September 2015"
MAINNET_PASSPHRASE = "Public Global Stellar Network ; September 2015"


class Settings(BaseSettings):
    """Central configuration for the StreamPay escrow coordinator."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    cors_allow_origins: list[str] = ["*"]

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://streampay:streampay_dev"
        "@localhost:5432/streampay"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis (signing-account lock) ---
    redis_url: str = ""
    redis_lock_timeout_seconds: int = 120
    redis_lock_blocking_timeout_seconds: int = 60

    # --- Stellar / Soroban ---
    stellar_rpc_url: str = "https://soroban-testnet.stellar.org"
    stellar_network: Literal["testnet", "mainnet"] = "testnet"
    backend_secret_key: str = ""
    chain_simulate: bool = True
    chain_submit_timeout_seconds: float = 45.0
    chain_tx_timeout_seconds: int = 30
    chain_base_fee: int = 100
    chain_account_fetch_attempts: int = 3

    # --- Coordinator ---
    attestation_claim_ttl_seconds: int = 300
    default_approval_threshold: int = Field(default=1, ge=1)
    dispute_policy: Literal["record_only", "block_quorum", "freeze"] = "block_quorum"
    matcher_strategy: Literal["substring", "label", "regex"] = "substring"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def network_passphrase(self) -> str:
        """Network passphrase the backend signs transactions for."""
        if self.stellar_network == "mainnet":
            return MAINNET_PASSPHRASE
        return TESTNET_PASSPHRASE


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
