"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # JazzCash Configuration
    jazzcash_merchant_id: str = Field(..., description="JazzCash merchant ID")
    jazzcash_password: str = Field(..., description="JazzCash merchant password")
    jazzcash_integrity_salt: str = Field(
        ..., min_length=1, description="Shared secret used to sign pp_* field sets"
    )
    jazzcash_return_url: str = Field(..., description="Card flow return URL")
    jazzcash_wallet_payment_url: str = Field(..., description="MWallet transaction endpoint")
    jazzcash_card_payment_url: str = Field(..., description="Hosted card payment form URL")
    jazzcash_status_inquiry_url: str = Field(..., description="Payment inquiry endpoint")
    jazzcash_timeout_seconds: float = Field(
        default=45.0, gt=0, description="Per-call timeout for gateway requests"
    )
    jazzcash_timezone: str = Field(
        default="Asia/Karachi", description="Timezone used for pp_TxnDateTime stamps"
    )
    txn_description: str = Field(
        default="GIKI Wallet Top Up", description="pp_Description sent with top-ups"
    )

    # Database Configuration
    database_url: str = Field(..., description="PostgreSQL connection URL (postgresql+asyncpg)")
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Application Configuration
    app_name: str = Field(default="wallet-topup", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)"
    )

    # Reconciliation
    reconciliation_timeout_seconds: int = Field(
        default=120, gt=0, description="Age after which a non-terminal transaction is failed"
    )
    polling_interval_seconds: float = Field(
        default=5.0, gt=0, description="Seconds between inquiry calls in a polling loop"
    )
    polling_deadline_seconds: float = Field(
        default=120.0, gt=0, description="Absolute lifetime of one polling loop"
    )
    gateway_max_concurrent_inquiries: int = Field(
        default=10, gt=0, description="Rate limiter capacity shared by all polling loops"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator(
        "jazzcash_wallet_payment_url",
        "jazzcash_card_payment_url",
        "jazzcash_status_inquiry_url",
    )
    @classmethod
    def validate_gateway_url(cls, v: str) -> str:
        """Gateway endpoints must be absolute http(s) URLs."""
        if not v.startswith(("https://", "http://")):
            raise ValueError("Gateway URLs must start with 'https://' or 'http://'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_sandbox(self) -> bool:
        """Check if pointed at the JazzCash sandbox."""
        return "sandbox" in self.jazzcash_wallet_payment_url.lower()


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
