"""
Application configuration.
All settings are loaded from environment variables.
Credentials and the store wallet have no defaults.
"""
import re

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # CORS: comma-separated (e.g. http://localhost:3000,http://storefront:80). Empty = default list in main.py.
    cors_origins: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS
    # ===========================================
    redis_url: str  # Required, no default

    # ===========================================
    # PAYMENT NETWORK (Base Sepolia by default)
    # ===========================================
    chain_name: str = "Base Sepolia"
    chain_id: int = 84532
    chain_rpc_url: str = "https://sepolia.base.org"
    chain_rpc_timeout: float = 15.0
    chain_explorer_url: str = "https://base-sepolia.blockscout.com/"
    # USDC on Base Sepolia
    usdc_contract_address: str = "0x036CbD53842c5426634e792954Da7Dfd334fF160"
    store_wallet_address: str  # Required, no default
    # 1 = any mined transaction is accepted
    min_confirmations: int = 1

    # ===========================================
    # PURCHASES
    # ===========================================
    purchase_rate_limit: int = 5
    purchase_rate_window_seconds: int = 60
    video_content_url_ttl_seconds: int = 3600
    # Subscription end dates are computed in calendar days of this zone
    subscription_timezone: str = "UTC"

    # ===========================================
    # AUTH (principal tokens)
    # ===========================================
    auth_token_secret: str  # Required, no default
    auth_token_ttl: int = 86400  # 24h

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    request_id_header: str = "X-Request-Id"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("usdc_contract_address", "store_wallet_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Reject anything that is not a 20-byte hex address."""
        v = v.strip()
        if not _ADDRESS_RE.match(v):
            raise ValueError(f"invalid EVM address: {v!r}")
        return v

    @field_validator("auth_token_secret")
    @classmethod
    def validate_token_secret(cls, v: str) -> str:
        """Ensure token secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("auth_token_secret must be at least 16 characters")
        if v in ("changeme", "secret", "password", "admin"):
            raise ValueError("auth_token_secret is too weak, please change it")
        return v

    @field_validator("min_confirmations")
    @classmethod
    def validate_min_confirmations(cls, v: int) -> int:
        if v < 1:
            raise ValueError("min_confirmations must be >= 1")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # ignore unknown keys from .env
    )


settings = Settings()
